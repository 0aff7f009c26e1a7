from setuptools import setup, find_packages

setup(
    name="proposal-minutes-tracker",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "requests>=2.31.0",
        "rapidfuzz>=3.5.0",
        "click>=8.1.0",
        "pyyaml>=6.0",
        "python-dateutil>=2.8.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "proposal-minutes=proposal_minutes.cli:cli",
        ],
    },
)
