"""Configuration for the minutes tracker.

Settings come from an optional YAML file; every key has a default, so a
missing section or key is never an error:

    source:
      repo: golang/go
      issue: 33502
      api_url: https://api.github.com
      token_env: GITHUB_TOKEN
    state:
      path: content/state.json
      reporting_period_days: 7
    output:
      changes_json: changes.json
      changes_csv: null
    parser:
      workers: 4

Relative paths are taken as given, i.e. relative to the working directory.
"""

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

import yaml

from proposal_minutes.adapters.github import GITHUB_API_URL, MINUTES_ISSUE, MINUTES_REPO
from proposal_minutes.pipeline import DEFAULT_WORKERS
from proposal_minutes.state import DEFAULT_REPORTING_PERIOD, DEFAULT_STATE_PATH
from proposal_minutes.export import DEFAULT_CHANGES_PATH

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_ENV = "GITHUB_TOKEN"


class ConfigError(RuntimeError):
    pass


@dataclass
class TrackerConfig:
    repo: str = MINUTES_REPO
    issue: int = MINUTES_ISSUE
    api_url: str = GITHUB_API_URL
    token_env: str = DEFAULT_TOKEN_ENV
    state_path: Path = DEFAULT_STATE_PATH
    reporting_period: timedelta = DEFAULT_REPORTING_PERIOD
    changes_json: Path = DEFAULT_CHANGES_PATH
    changes_csv: Optional[Path] = None
    workers: int = DEFAULT_WORKERS

    @property
    def token(self) -> Optional[str]:
        """GitHub token from the configured environment variable, if set."""
        value = os.environ.get(self.token_env, "").strip()
        return value or None


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return value


def _int(section: dict, key: str, default: int, minimum: int = 1) -> int:
    value = section.get(key, default)
    if isinstance(value, bool):
        raise ConfigError(f"Config key '{key}' must be an integer, got {value!r}")
    try:
        value = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Config key '{key}' must be an integer, got {value!r}") from e
    if value < minimum:
        raise ConfigError(f"Config key '{key}' must be at least {minimum}, got {value}")
    return value


def load_config(path=None) -> TrackerConfig:
    """Load tracker settings.

    Args:
        path: YAML file to read. None means all defaults.

    Raises:
        ConfigError: If an explicit path is missing, the YAML is invalid, or a
            value has the wrong type.
    """
    if path is None:
        return TrackerConfig()

    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Configuration file not found: {p}")

    try:
        with open(p, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {p}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration in {p} must be a mapping")

    src = _section(raw, "source")
    state = _section(raw, "state")
    out = _section(raw, "output")
    parser = _section(raw, "parser")

    repo = str(src.get("repo", MINUTES_REPO))
    if repo.count("/") != 1:
        raise ConfigError(f"source.repo must look like 'owner/name', got {repo!r}")

    period_days = _int(state, "reporting_period_days", DEFAULT_REPORTING_PERIOD.days)
    csv_path = out.get("changes_csv")

    config = TrackerConfig(
        repo=repo,
        issue=_int(src, "issue", MINUTES_ISSUE),
        api_url=str(src.get("api_url", GITHUB_API_URL)),
        token_env=str(src.get("token_env", DEFAULT_TOKEN_ENV)),
        state_path=Path(state.get("path", DEFAULT_STATE_PATH)),
        reporting_period=timedelta(days=period_days),
        changes_json=Path(out.get("changes_json", DEFAULT_CHANGES_PATH)),
        changes_csv=Path(csv_path) if csv_path else None,
        workers=_int(parser, "workers", DEFAULT_WORKERS),
    )
    logger.debug(f"Loaded config from {p}: {config}")
    return config
