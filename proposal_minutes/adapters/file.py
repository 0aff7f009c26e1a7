"""Local JSON file source.

Reads a saved copy of a thread's comments, e.g. the output of
`gh api repos/golang/go/issues/33502/comments --paginate`. Useful offline, for
replaying a week of minutes, and in tests.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from proposal_minutes.adapters.base import CommentSource, SourceError
from proposal_minutes.adapters.github import MINUTES_ISSUE, MINUTES_REPO

logger = logging.getLogger(__name__)


class FileCommentSource(CommentSource):
    """Reads GitHub-shaped comments from a JSON array on disk."""

    source_id = "file"

    def __init__(self, path, repo: str = MINUTES_REPO, issue: int = MINUTES_ISSUE):
        super().__init__(repo, issue)
        self.path = Path(path)
        self.source_name = str(self.path)

    def fetch_source(self, since: Optional[datetime]) -> list[dict]:
        if not self.path.exists():
            raise SourceError(f"Comments file not found: {self.path}")
        logger.info(f"Loading comments from {self.path}")
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SourceError(f"Cannot read comments file {self.path}: {e}") from e
        # A single page saved from the API is a bare list; --paginate --slurp nests pages
        if isinstance(data, list) and data and all(isinstance(p, list) for p in data):
            data = [item for page in data for item in page]
        return data
