"""Comment source registry.

Maps source IDs to their classes for CLI and pipeline use.
"""

from proposal_minutes.adapters.base import CommentSource, SourceError
from proposal_minutes.adapters.file import FileCommentSource
from proposal_minutes.adapters.github import GitHubCommentSource

DEFAULT_SOURCE = "github"

SOURCE_REGISTRY: dict[str, type] = {
    "github": GitHubCommentSource,
    "file": FileCommentSource,
}


def get_source(name: str, **kwargs) -> CommentSource:
    """Get a comment source instance by name.

    Args:
        name: Source ID (e.g., "github").
        **kwargs: Additional arguments passed to the source constructor.

    Returns:
        Source instance.

    Raises:
        KeyError: If source name is not found.
    """
    if name not in SOURCE_REGISTRY:
        available = ", ".join(sorted(SOURCE_REGISTRY.keys()))
        raise KeyError(f"Unknown source '{name}'. Available: {available}")
    return SOURCE_REGISTRY[name](**kwargs)


__all__ = [
    "CommentSource",
    "FileCommentSource",
    "GitHubCommentSource",
    "SOURCE_REGISTRY",
    "SourceError",
    "get_source",
]
