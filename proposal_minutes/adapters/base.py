"""Base class for minutes comment sources.

A source knows where the minutes thread lives and how to download its
comments. Adding a new place to read minutes from means writing a new source,
not modifying the pipeline.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional

from proposal_minutes.models import Comment
from proposal_minutes.utils.normalization import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

# How far back to look for the comment preceding the first new one
PREVIOUS_LOOKBACK = timedelta(days=30)


class SourceError(RuntimeError):
    """Comments could not be fetched or the payload could not be read."""


class CommentSource(ABC):
    """Abstract base class for comment sources.

    Each source knows how to:
    - Download the raw comment payload of one thread
    - Turn GitHub-shaped comment objects into Comment records
    """

    # Subclasses must set these
    source_id: str = ""
    source_name: str = ""

    def __init__(self, repo: str, issue: int):
        self.repo = repo
        self.issue = issue

    @abstractmethod
    def fetch_source(self, since: Optional[datetime]) -> list[dict]:
        """Download the raw comments updated at or after since.

        Each item is a GitHub issue comment object with at least "id",
        "body" and "created_at".
        """

    def parse(self, raw_data: list) -> list[Comment]:
        """Convert raw comment objects into Comment records.

        Raises:
            SourceError: If the payload or any comment in it is malformed.
        """
        if not isinstance(raw_data, list):
            raise SourceError(
                f"{self.source_name}: expected a list of comments, got {type(raw_data).__name__}"
            )
        return [self._to_comment(item) for item in raw_data]

    def _to_comment(self, item) -> Comment:
        if not isinstance(item, dict):
            raise SourceError(f"{self.source_name}: comment is not an object: {item!r}")

        comment_id = item.get("id")
        if comment_id is None or isinstance(comment_id, bool) or str(comment_id).strip() == "":
            raise SourceError(f"{self.source_name}: comment without id")

        try:
            created_at = parse_timestamp(item.get("created_at"))
            updated_at = parse_timestamp(item.get("updated_at"))
        except ValueError as e:
            raise SourceError(f"{self.source_name}: comment {comment_id}: {e}") from e
        if created_at is None:
            raise SourceError(f"{self.source_name}: comment {comment_id} has no created_at")

        body = item.get("body")
        if body is None:
            body = ""

        return Comment(
            id=str(comment_id),
            body=body,
            created_at=created_at,
            repo=self.repo,
            thread=self.issue,
            updated_at=updated_at,
        )

    def fetch_comments(self, since: Optional[datetime] = None) -> list[Comment]:
        """Fetch and parse the thread's comments.

        Comments last touched before since are dropped. The tracker applies
        the exact watermark rule afterwards.
        """
        logger.info(
            f"Fetching comments from {self.source_name} "
            f"since {format_timestamp(since) if since else 'the beginning'}"
        )
        raw_data = self.fetch_source(since)
        comments = self.parse(raw_data)
        if since is not None:
            comments = [c for c in comments if (c.updated_at or c.created_at) >= since]
        logger.info(f"Fetched {len(comments)} comments from {self.source_name}")
        return comments

    def fetch_previous(
        self, before: Comment, lookback: timedelta = PREVIOUS_LOOKBACK,
    ) -> Optional[Comment]:
        """Fetch the comment immediately preceding before.

        Only comments touched within lookback of before are considered.

        Returns:
            The latest comment ordered before it, or None if there is none.
        """
        comments = self.fetch_comments(since=before.created_at - lookback)
        earlier = [c for c in comments if c.sort_key < before.sort_key]
        if not earlier:
            return None
        return max(earlier, key=lambda c: c.sort_key)
