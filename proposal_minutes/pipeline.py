"""Run orchestrator for the minutes tracker.

Coordinates one incremental run: load the watermark, fetch candidate comments,
keep the new ones, parse them, fill in previous statuses, hand the changes to
the sink and finally move the watermark. Previous statuses come from state,
then from the comment just before the first new one.

The watermark is committed last. If anything before the commit fails, the
next run sees the same comments again and produces the same output.
"""

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from proposal_minutes.adapters.base import CommentSource, SourceError
from proposal_minutes.catalog import Status
from proposal_minutes.minutes import MinutesParseError, MinutesParser
from proposal_minutes.models import Comment, ParseResult, SkipReason, StatusChange
from proposal_minutes.state import State, StateCommitError, StateTracker
from proposal_minutes.utils.normalization import format_timestamp

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 4


@dataclass
class RunSummary:
    """What one run saw and did."""
    source: str = ""
    comments_fetched: int = 0
    comments_new: int = 0
    comments_processed: int = 0
    comments_failed: int = 0
    changes: list[StatusChange] = field(default_factory=list)
    skipped: Counter = field(default_factory=Counter)
    failures: list[dict] = field(default_factory=list)
    watermark: Optional[datetime] = None
    last_comment_id: str = ""
    baseline_comment_id: str = ""
    committed: bool = False

    @property
    def changes_count(self) -> int:
        return len(self.changes)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "comments_fetched": self.comments_fetched,
            "comments_new": self.comments_new,
            "comments_processed": self.comments_processed,
            "comments_failed": self.comments_failed,
            "changes_count": self.changes_count,
            "skipped": dict(self.skipped),
            "failures": list(self.failures),
            "watermark": format_timestamp(self.watermark) if self.watermark else None,
            "last_comment_id": self.last_comment_id,
            "baseline_comment_id": self.baseline_comment_id,
            "committed": self.committed,
        }


class RunError(RuntimeError):
    """A run failed after comments were parsed. Carries the partial summary."""

    def __init__(self, message: str, summary: RunSummary):
        super().__init__(message)
        self.summary = summary


class Pipeline:
    """Orchestrates one incremental run over a minutes thread.

    Args:
        source: Where comments come from.
        tracker: Watermark persistence.
        parser: Minutes parser. Defaults to one bound to the source's repo.
        sink: Object with a write(changes) method, called before the commit.
        workers: Number of comments parsed concurrently.
    """

    def __init__(
        self,
        source: CommentSource,
        tracker: StateTracker,
        parser: Optional[MinutesParser] = None,
        sink=None,
        workers: int = DEFAULT_WORKERS,
    ):
        self.source = source
        self.tracker = tracker
        self.parser = parser or MinutesParser(repo=source.repo)
        self.sink = sink
        self.workers = max(1, workers)

    def run(self) -> RunSummary:
        """Run the pipeline once.

        Returns:
            RunSummary of the run.

        Raises:
            StateCorruptError: If the state file cannot be read.
            SourceError: If comments cannot be fetched.
            RunError: If the sink or the commit fails.
        """
        summary = RunSummary(source=self.source.source_name or self.source.source_id)
        logger.info(f"=== Starting run for {summary.source} ===")

        state = self.tracker.load()
        summary.watermark = state.last_processed_at
        summary.last_comment_id = state.last_comment_id

        candidates = self.source.fetch_comments(since=state.last_processed_at)
        summary.comments_fetched = len(candidates)

        new_comments = sorted(
            self.tracker.filter_new(candidates, state), key=lambda c: c.sort_key,
        )
        summary.comments_new = len(new_comments)

        results = self._parse_all(new_comments)
        known = dict(state.proposal_statuses)
        if new_comments:
            self._seed_baseline(new_comments[0], known, summary)
        summary.changes = self._assemble(new_comments, results, known, summary)

        if self.sink is not None:
            try:
                self.sink.write(summary.changes)
            except OSError as e:
                logger.error(f"Failed to write changes: {e}")
                raise RunError(f"Failed to write changes: {e}", summary) from e

        if new_comments:
            last = new_comments[-1]
            self._commit(state, last, known, summary)
        else:
            logger.info("No new comments; watermark unchanged")

        logger.info(
            f"=== Completed {summary.source}: "
            f"{summary.comments_new} new comments, "
            f"{summary.changes_count} changes, "
            f"{sum(summary.skipped.values())} skipped entries, "
            f"{summary.comments_failed} failed ==="
        )
        return summary

    def _parse_one(self, comment: Comment) -> ParseResult:
        return self.parser.parse(comment.body, comment.created_at, comment_url=comment.url)

    def _seed_baseline(
        self,
        first: Comment,
        known: dict[int, Status],
        summary: RunSummary,
    ) -> None:
        """Seed known statuses from the comment preceding the first new one.

        Statuses already known from state win. A failure here only costs the
        baseline, never the run.
        """
        try:
            previous = self.source.fetch_previous(first)
        except SourceError as e:
            logger.warning(f"Failed to fetch previous comment, continuing without baseline: {e}")
            return
        if previous is None:
            logger.debug(f"No comment before {first.id}; no baseline")
            return

        try:
            result = self._parse_one(previous)
        except MinutesParseError as e:
            logger.warning(f"Failed to parse previous comment {previous.id}: {e}")
            return

        seeded = 0
        for change in result.changes:
            if change.issue_number not in known:
                known[change.issue_number] = change.current_status
                seeded += 1
        summary.baseline_comment_id = previous.id
        logger.info(f"Seeded {seeded} baseline statuses from comment {previous.id}")

    def _parse_all(self, comments: list[Comment]) -> list:
        """Parse comments concurrently, keeping input order.

        Each slot holds either a ParseResult or the exception that comment
        raised.
        """
        if not comments:
            return []

        results: list = []
        with ThreadPoolExecutor(max_workers=min(self.workers, len(comments))) as executor:
            futures = [executor.submit(self._parse_one, c) for c in comments]
            for comment, future in zip(comments, futures):
                try:
                    results.append(future.result())
                except Exception as e:
                    logger.warning(f"Failed to parse comment {comment.id}: {e}")
                    results.append(e)
        return results

    def _assemble(
        self,
        comments: list[Comment],
        results: list,
        known: dict[int, Status],
        summary: RunSummary,
    ) -> list[StatusChange]:
        """Fill previous statuses in comment order and drop non-changes.

        known is updated in place with every emitted change.
        """
        changes: list[StatusChange] = []
        for comment, result in zip(comments, results):
            if isinstance(result, Exception):
                summary.comments_failed += 1
                summary.failures.append({
                    "comment_id": comment.id,
                    "comment_url": comment.url,
                    "error": f"{type(result).__name__}: {result}",
                })
                continue

            summary.comments_processed += 1
            for diag in result.diagnostics:
                summary.skipped[diag.reason.value] += 1

            for change in result.changes:
                if not change.comment_url:
                    change = change.with_comment_url(comment.url)

                if change.previous_status is Status.UNKNOWN:
                    prior = known.get(change.issue_number)
                    if prior == change.current_status:
                        logger.debug(
                            f"#{change.issue_number} still {prior.value}; not a change"
                        )
                        summary.skipped[SkipReason.UNCHANGED_STATUS.value] += 1
                        continue
                    if prior is not None:
                        change = change.with_previous(prior)

                changes.append(change)
                known[change.issue_number] = change.current_status

        return changes

    def _commit(
        self,
        state: State,
        last: Comment,
        known: dict[int, Status],
        summary: RunSummary,
    ) -> None:
        try:
            new_state = self.tracker.commit(state, last.created_at, last.id, statuses=known)
        except StateCommitError as e:
            logger.error(f"Failed to commit watermark: {e}")
            raise RunError(f"Failed to commit watermark: {e}", summary) from e

        summary.watermark = new_state.last_processed_at
        summary.last_comment_id = new_state.last_comment_id
        summary.committed = True


def format_summary(summary: RunSummary) -> str:
    """Format a run summary into a human-readable report."""
    lines = []
    lines.append(f"{'=' * 60}")
    lines.append("MINUTES TRACKER RUN")
    lines.append(f"{'=' * 60}")
    lines.append(f"Source:              {summary.source}")
    lines.append(f"Comments fetched:    {summary.comments_fetched}")
    lines.append(f"New comments:        {summary.comments_new}")
    lines.append(f"Processed:           {summary.comments_processed}")
    lines.append(f"Failed:              {summary.comments_failed}")
    lines.append(f"Status changes:      {summary.changes_count}")

    if summary.changes:
        lines.append("")
        for change in summary.changes:
            lines.append(
                f"  #{change.issue_number} {change.title}: "
                f"{change.previous_status.value} -> {change.current_status.value}"
            )

    if summary.skipped:
        lines.append("\nSkipped entries:")
        for reason, count in sorted(summary.skipped.items()):
            lines.append(f"  {reason:<24} {count}")

    if summary.failures:
        lines.append("\nFailed comments:")
        for failure in summary.failures:
            lines.append(f"  {failure['comment_id']}: {failure['error']}")

    watermark = format_timestamp(summary.watermark) if summary.watermark else "-"
    lines.append("")
    lines.append(f"Watermark:           {watermark} ({summary.last_comment_id or '-'})")
    if summary.baseline_comment_id:
        lines.append(f"Baseline comment:    {summary.baseline_comment_id}")
    lines.append(f"Committed:           {'yes' if summary.committed else 'no'}")
    lines.append(f"{'=' * 60}")
    return "\n".join(lines)
