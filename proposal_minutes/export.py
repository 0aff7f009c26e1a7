"""Export module for the minutes tracker.

Writes the changes of one run to changes.json (the input of page and feed
generation) and optionally to a CSV file for spreadsheets.
"""

import csv
import io
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional

from proposal_minutes.models import StatusChange
from proposal_minutes.state import write_atomic
from proposal_minutes.utils.normalization import format_timestamp, iso_week

logger = logging.getLogger(__name__)

DEFAULT_CHANGES_PATH = Path("changes.json")

CSV_FIELDNAMES = [
    "issue_number", "title", "previous_status", "current_status",
    "changed_at", "comment_url", "related_issues",
]


class ChangesExporter:
    """Writes status changes to JSON and, optionally, CSV."""

    def __init__(
        self,
        json_path=DEFAULT_CHANGES_PATH,
        csv_path=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.json_path = Path(json_path)
        self.csv_path = Path(csv_path) if csv_path else None
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def build_document(self, changes: Iterable[StatusChange]) -> dict:
        """Build the changes.json document.

        The week is the ISO week of the latest change, or of the current
        time when there are no changes.
        """
        ordered = sorted(changes, key=lambda c: c.sort_key)
        latest = ordered[-1].changed_at if ordered else self.clock()
        return {
            "week": iso_week(latest),
            "changes": [c.to_dict() for c in ordered],
        }

    def write(self, changes: Iterable[StatusChange]) -> list[Path]:
        """Write changes to every configured output.

        Returns:
            Paths of the written files.
        """
        changes = list(changes)
        document = self.build_document(changes)
        write_atomic(
            self.json_path,
            json.dumps(document, indent=2, ensure_ascii=False) + "\n",
        )
        logger.info(f"Wrote {len(changes)} changes to {self.json_path} (week {document['week']})")
        written = [self.json_path]

        if self.csv_path is not None:
            self.write_csv(changes)
            written.append(self.csv_path)
        return written

    def write_csv(self, changes: Iterable[StatusChange]) -> Path:
        """Write one row per change, related issues joined by "; "."""
        buf = io.StringIO(newline="")
        writer = csv.DictWriter(buf, fieldnames=CSV_FIELDNAMES)
        writer.writeheader()
        count = 0
        for change in sorted(changes, key=lambda c: c.sort_key):
            writer.writerow({
                "issue_number": change.issue_number,
                "title": change.title,
                "previous_status": change.previous_status.value,
                "current_status": change.current_status.value,
                "changed_at": format_timestamp(change.changed_at),
                "comment_url": change.comment_url,
                "related_issues": "; ".join(r.url for r in change.related_issues),
            })
            count += 1

        write_atomic(self.csv_path, buf.getvalue())
        logger.info(f"Exported {count} changes to {self.csv_path}")
        return self.csv_path


def load_changes(path) -> list[StatusChange]:
    """Read the changes back from a changes.json document."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return [StatusChange.from_dict(item) for item in data.get("changes", [])]
