"""Shared record types for the minutes tracker.

StatusChange is the unit handed from the parser to downstream rendering.
Comment is what a comment source hands to the tracker and parser.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Iterator, Optional

from proposal_minutes.catalog import Status
from proposal_minutes.utils.normalization import format_timestamp, parse_timestamp

GITHUB_WEB_URL = "https://github.com"


def issue_url(repo: str, number: int, web_url: str = GITHUB_WEB_URL) -> str:
    return f"{web_url.rstrip('/')}/{repo}/issues/{number}"


def comment_url(repo: str, thread: Optional[int], comment_id: str,
                web_url: str = GITHUB_WEB_URL) -> str:
    """Reconstruct the permalink of a comment from its repo and identifier."""
    base = f"{web_url.rstrip('/')}/{repo}/issues"
    if thread is None:
        return f"{base}/comments/{comment_id}"
    return f"{base}/{thread}#issuecomment-{comment_id}"


def comment_id_key(comment_id: str) -> tuple:
    # Numeric ids sort numerically, anything else lexically after them
    if comment_id.isdigit():
        return (0, int(comment_id), "")
    return (1, 0, comment_id)


@dataclass(frozen=True)
class RelatedIssue:
    title: str
    url: str

    def to_dict(self) -> dict:
        return {"title": self.title, "url": self.url}


@dataclass(frozen=True)
class StatusChange:
    """A single proposal status transition reported by one comment.

    previous_status is Status.UNKNOWN when the comment only states the new
    status; the assembling layer backfills it from the last known status.
    changed_at is always the comment's authored time, never a date found in
    the comment body.
    """
    issue_number: int
    title: str
    previous_status: Status
    current_status: Status
    changed_at: datetime
    comment_url: str = ""
    related_issues: tuple[RelatedIssue, ...] = ()

    def __post_init__(self):
        if isinstance(self.issue_number, bool) or not isinstance(self.issue_number, int):
            raise ValueError(f"issue_number must be an int, got {self.issue_number!r}")
        if self.issue_number <= 0:
            raise ValueError(f"issue_number must be positive, got {self.issue_number}")
        if not isinstance(self.previous_status, Status):
            raise ValueError(f"previous_status must be a Status, got {self.previous_status!r}")
        if not isinstance(self.current_status, Status):
            raise ValueError(f"current_status must be a Status, got {self.current_status!r}")
        if self.current_status is Status.UNKNOWN:
            raise ValueError("current_status cannot be unknown")
        if self.previous_status == self.current_status:
            raise ValueError(
                f"#{self.issue_number}: previous and current status are both "
                f"{self.current_status.value}"
            )
        if self.changed_at.tzinfo is None:
            raise ValueError("changed_at must be timezone-aware")
        # Lists are accepted for convenience and frozen here
        if not isinstance(self.related_issues, tuple):
            object.__setattr__(self, "related_issues", tuple(self.related_issues))

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.changed_at, self.issue_number)

    def with_previous(self, status: Status) -> "StatusChange":
        return replace(self, previous_status=status)

    def with_comment_url(self, url: str) -> "StatusChange":
        return replace(self, comment_url=url)

    def to_dict(self) -> dict:
        return {
            "issue_number": self.issue_number,
            "title": self.title,
            "previous_status": self.previous_status.value,
            "current_status": self.current_status.value,
            "changed_at": format_timestamp(self.changed_at),
            "comment_url": self.comment_url,
            "related_issues": [r.to_dict() for r in self.related_issues],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StatusChange":
        previous = data.get("previous_status") or Status.UNKNOWN.value
        return cls(
            issue_number=int(data["issue_number"]),
            title=data.get("title", ""),
            previous_status=Status(previous),
            current_status=Status(data["current_status"]),
            changed_at=parse_timestamp(data["changed_at"]),
            comment_url=data.get("comment_url", ""),
            related_issues=tuple(
                RelatedIssue(title=r["title"], url=r["url"])
                for r in data.get("related_issues") or []
            ),
        )


@dataclass(frozen=True)
class Comment:
    """A candidate minutes comment as supplied by a comment source."""
    id: str
    body: str
    created_at: datetime
    repo: str = ""
    thread: Optional[int] = None
    updated_at: Optional[datetime] = None

    @property
    def url(self) -> str:
        return comment_url(self.repo, self.thread, self.id)

    @property
    def sort_key(self) -> tuple:
        return (self.created_at,) + comment_id_key(self.id)


class SkipReason(str, Enum):
    MISSING_ISSUE_NUMBER = "missing_issue_number"
    AMBIGUOUS_ISSUE_NUMBER = "ambiguous_issue_number"
    UNRECOGNIZED_MARKER = "unrecognized_marker"
    NO_STATUS_MARKER = "no_status_marker"
    UNCHANGED_STATUS = "unchanged_status"
    DUPLICATE_ENTRY = "duplicate_entry"


@dataclass(frozen=True)
class ParseDiagnostic:
    """Why one entry of a comment did not yield a StatusChange."""
    reason: SkipReason
    message: str
    line: int = 0
    issue_number: Optional[int] = None
    severity: str = "warning"  # "warning" or "info"

    def to_dict(self) -> dict:
        return {
            "reason": self.reason.value,
            "message": self.message,
            "line": self.line,
            "issue_number": self.issue_number,
            "severity": self.severity,
        }


@dataclass
class ParseResult:
    """Complete output of parsing one comment body."""
    changes: list[StatusChange] = field(default_factory=list)
    diagnostics: list[ParseDiagnostic] = field(default_factory=list)
    meeting_date: Optional[date] = None

    def __iter__(self) -> Iterator[StatusChange]:
        return iter(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    @property
    def warnings(self) -> list[ParseDiagnostic]:
        return [d for d in self.diagnostics if d.severity == "warning"]
