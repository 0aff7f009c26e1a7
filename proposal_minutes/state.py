"""Incremental state tracking for the minutes thread.

The tracker persists a watermark (the authored time and id of the last
processed comment) so each run only looks at comments that are new since the
previous successful run. It also remembers the last known status of every
proposal, which lets the pipeline fill in the previous status of records whose
comment only states the new one.

State document:

    {
      "lastProcessedAt": "2026-02-04T00:00:00Z",
      "lastCommentId": "1234567890",
      "proposalStatuses": {"100": "active"}
    }

The document is only ever replaced whole, through a temp file and
os.replace(), so a crash during commit leaves the previous state readable.
"""

import contextlib
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional

from proposal_minutes.catalog import Status
from proposal_minutes.models import Comment, comment_id_key
from proposal_minutes.utils.normalization import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_STATE_PATH = Path("content/state.json")
DEFAULT_REPORTING_PERIOD = timedelta(days=7)


class StateError(RuntimeError):
    """Base class for state persistence failures."""


class StateCorruptError(StateError):
    """The state file exists but cannot be interpreted."""


class StateCommitError(StateError):
    """The new state could not be persisted."""


@dataclass(frozen=True)
class State:
    """Watermark plus last known proposal statuses.

    is_fresh is True when no state file existed yet. It is never persisted.
    """
    last_processed_at: datetime
    last_comment_id: str = ""
    proposal_statuses: Mapping[int, Status] = field(default_factory=dict)
    is_fresh: bool = False

    def to_dict(self) -> dict:
        return {
            "lastProcessedAt": format_timestamp(self.last_processed_at),
            "lastCommentId": self.last_comment_id,
            "proposalStatuses": {
                str(number): status.value
                for number, status in sorted(self.proposal_statuses.items())
            },
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateTracker:
    """Loads, filters against, and commits the processing watermark.

    Args:
        path: Location of the state JSON document.
        reporting_period: How far back a first run looks.
        clock: Returns the current time. Only read when no state file exists.
    """

    def __init__(
        self,
        path=DEFAULT_STATE_PATH,
        reporting_period: timedelta = DEFAULT_REPORTING_PERIOD,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.path = Path(path)
        self.reporting_period = reporting_period
        self.clock = clock or _utcnow

    def load(self) -> State:
        """Read the persisted state.

        Returns:
            The stored State, or a fresh one whose watermark is one reporting
            period before now when no state file exists.

        Raises:
            StateCorruptError: If the file exists but is unreadable or invalid.
        """
        if not self.path.exists():
            since = self.clock() - self.reporting_period
            logger.info(
                f"No state at {self.path}; starting from {format_timestamp(since)}"
            )
            return State(last_processed_at=since, is_fresh=True)

        try:
            raw = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StateCorruptError(f"Cannot read state file {self.path}: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StateCorruptError(f"State file {self.path} is not valid JSON: {e}") from e

        state = self._from_dict(data)
        logger.debug(
            f"Loaded state: watermark {format_timestamp(state.last_processed_at)}, "
            f"comment {state.last_comment_id or '-'}, "
            f"{len(state.proposal_statuses)} tracked proposals"
        )
        return state

    def _from_dict(self, data) -> State:
        if not isinstance(data, dict):
            raise StateCorruptError(
                f"State file {self.path} must hold a JSON object, got {type(data).__name__}"
            )

        raw_at = data.get("lastProcessedAt")
        if not isinstance(raw_at, str) or not raw_at.strip():
            raise StateCorruptError(f"State file {self.path} has no lastProcessedAt")
        try:
            last_processed_at = parse_timestamp(raw_at)
        except ValueError as e:
            raise StateCorruptError(f"State file {self.path}: bad lastProcessedAt: {e}") from e

        comment_id = data.get("lastCommentId", "")
        if comment_id is None:
            comment_id = ""
        if isinstance(comment_id, int) and not isinstance(comment_id, bool):
            comment_id = str(comment_id)
        if not isinstance(comment_id, str):
            raise StateCorruptError(
                f"State file {self.path}: lastCommentId must be a string, got {comment_id!r}"
            )

        raw_statuses = data.get("proposalStatuses")
        if raw_statuses is None:
            raw_statuses = {}
        if not isinstance(raw_statuses, dict):
            raise StateCorruptError(f"State file {self.path}: proposalStatuses must be an object")
        statuses: dict[int, Status] = {}
        for key, value in raw_statuses.items():
            try:
                number = int(key)
                status = Status(value)
            except (TypeError, ValueError) as e:
                raise StateCorruptError(
                    f"State file {self.path}: bad proposal status {key!r}: {value!r}"
                ) from e
            if number <= 0 or status is Status.UNKNOWN:
                raise StateCorruptError(
                    f"State file {self.path}: bad proposal status {key!r}: {value!r}"
                )
            statuses[number] = status

        return State(
            last_processed_at=last_processed_at,
            last_comment_id=comment_id,
            proposal_statuses=statuses,
        )

    @staticmethod
    def is_new(comment: Comment, state: State) -> bool:
        """Whether a comment lies beyond the watermark.

        A comment stamped exactly at the watermark is new only if its id
        orders after the comment the watermark was taken from. Ids order
        numerically when both are numeric, the same way comments are sorted
        for processing.
        """
        if comment.created_at != state.last_processed_at:
            return comment.created_at > state.last_processed_at
        if not state.last_comment_id:
            return True
        return comment_id_key(comment.id) > comment_id_key(state.last_comment_id)

    def filter_new(self, candidates: Iterable[Comment], state: State) -> list[Comment]:
        """Return the candidates beyond the watermark, in input order."""
        candidates = list(candidates)
        new = [c for c in candidates if self.is_new(c, state)]
        logger.debug(f"{len(new)} of {len(candidates)} comments are new")
        return new

    def commit(
        self,
        state: State,
        processed_at: datetime,
        comment_id: str,
        statuses: Optional[Mapping[int, Status]] = None,
    ) -> State:
        """Persist a new watermark and return the resulting State.

        Args:
            state: State the run started from. Not modified.
            processed_at: Authored time of the last processed comment.
            comment_id: Id of that comment.
            statuses: Known proposal statuses to store. Defaults to the ones
                already in state.

        Raises:
            StateCommitError: If the watermark would move backwards or the
                file cannot be written.
        """
        try:
            processed_at = parse_timestamp(processed_at)
        except ValueError as e:
            raise StateCommitError(f"Invalid watermark: {e}") from e
        if processed_at is None:
            raise StateCommitError("Watermark timestamp is required")
        if processed_at < state.last_processed_at:
            raise StateCommitError(
                f"Refusing to move watermark backwards from "
                f"{format_timestamp(state.last_processed_at)} to {format_timestamp(processed_at)}"
            )
        if (
            processed_at == state.last_processed_at
            and state.last_comment_id
            and comment_id_key(str(comment_id)) < comment_id_key(state.last_comment_id)
        ):
            raise StateCommitError(
                f"Refusing to move watermark backwards from comment "
                f"{state.last_comment_id} to {comment_id} at {format_timestamp(processed_at)}"
            )

        new_state = State(
            last_processed_at=processed_at,
            last_comment_id=str(comment_id),
            proposal_statuses=dict(state.proposal_statuses if statuses is None else statuses),
        )
        content = json.dumps(new_state.to_dict(), indent=2, ensure_ascii=False) + "\n"

        try:
            write_atomic(self.path, content)
        except OSError as e:
            raise StateCommitError(f"Cannot write state file {self.path}: {e}") from e

        logger.info(
            f"Committed watermark {format_timestamp(processed_at)} (comment {comment_id})"
        )
        return new_state


def write_atomic(path: Path, content: str) -> None:
    """Write content to path atomically via temp file + fsync + os.replace()."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise
