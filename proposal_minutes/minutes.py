"""Rule-based extraction of proposal status changes from review minutes.

A minutes comment is a semi-structured markdown list: optional date headers,
optional section headers, then one entry per proposal naming the issue and
describing what the meeting did with it:

    **2020-04-08 / @rsc, @griesemer**

    - #34527 **cmd/go: add GOMODCACHE**
      - no change in consensus; **accepted** 🎉
    - #37112 **runtime: API for unstable metrics**
      - **likely accept**; last call for comments ⏳

Parsing is two-pass. The body is first segmented into entry blocks, using
issue references at the start of unindented lines as boundaries. Each block
is then examined on its own for the issue number, the plain title, the status
marker and related issue references. A malformed entry is dropped with a
diagnostic and never stops the rest of the comment from being parsed.

The parser is a pure function of its inputs: no I/O, no clock reads.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from proposal_minutes.catalog import (
    STATUS_MARKERS,
    TRANSITION_RE,
    Status,
    match_marker,
    match_section_header,
    status_from_alias,
    suggest_marker,
)
from proposal_minutes.models import (
    GITHUB_WEB_URL,
    ParseDiagnostic,
    ParseResult,
    RelatedIssue,
    SkipReason,
    StatusChange,
    issue_url,
)
from proposal_minutes.utils.normalization import parse_timestamp, strip_markdown, truncate

logger = logging.getLogger(__name__)

DEFAULT_REPO = "golang/go"


class MinutesParseError(ValueError):
    """The comment body as a whole could not be parsed."""


# ── Line classification ──────────────────────────────────────────────────

# "**2019-08-20** / @rsc" or "**2020-04-08 / @rsc ...**"
# "2019-08-20 / **@rsc**"
DATE_HEADER_RES = (
    re.compile(r"^\*\*(\d{4}-\d{2}-\d{2})"),
    re.compile(r"^(\d{4}-\d{2}-\d{2})\s*/"),
)

BULLET_RE = re.compile(r"^[-*+]\s+")

# [#123: Title](url) rest
HEAD_LINK_TITLE_RE = re.compile(r"^\[#(\d+)\s*[:\-–—]\s*(.+?)\]\(([^)\s]*)\)(.*)$")
# [#123](url) rest
HEAD_LINK_RE = re.compile(r"^\[#(\d+)\]\(([^)\s]*)\)(.*)$")
# **#123** rest  /  **#123:** rest
HEAD_BOLD_NUMBER_RE = re.compile(r"^\*\*#(\d+)\s*:?\s*\*\*(.*)$")
# **#123 Title** rest  /  **#123: Title** rest
HEAD_BOLD_ENTRY_RE = re.compile(r"^\*\*#(\d+)\s*:?\s+(.+?)\*\*(.*)$")
# #123 rest
HEAD_PLAIN_RE = re.compile(r"^#(\d+)\b(.*)$")
# **Title** [#123](url) rest
HEAD_TITLE_FIRST_RE = re.compile(r"^\*\*(.+?)\*\*\s*\(?\[#(\d+)\]\(([^)\s]*)\)\)?(.*)$")

# Lines that look like they should open an entry even when no number parses
BULLETED_HEAD_CANDIDATE_RE = re.compile(r"^(?:\*\*|\[|#)")
BARE_HEAD_CANDIDATE_RE = re.compile(r"^(?:#\w|\[#|\*\*#|\*\*[^*\n]+\*\*\s*\(?\[#)")

# Title-bearing prefixes of the text that follows the issue reference
TITLE_BOLD_RE = re.compile(r"^\*\*(.+?)\*\*(.*)$")
TITLE_QUOTED_RE = re.compile(r'^["“](.+?)["”](.*)$')
TITLE_LINK_RE = re.compile(r"^\[([^\]]+)\]\([^)]*\)(.*)$")

URL_ISSUE_NUMBER_RE = re.compile(r"/(?:issues|pull|issue)/(\d+)")
URL_REPO_RE = re.compile(r"github\.com/([\w.-]+/[\w.-]+)/(?:issues|pull)/")

# ── Related issue references ─────────────────────────────────────────────

LINK_REF_RE = re.compile(
    r"\[([^\]]+)\]\((https?://[^)\s]+?/(?:issues|pull|issue)/(\d+)[^)\s]*)\)"
)
CROSS_REF_RE = re.compile(r"(?<![\w/.#])([A-Za-z0-9][\w.-]*/[\w.-]+)#(\d+)\b")
BARE_REF_RE = re.compile(r"(?<![\w/#&])#(\d+)\b")

BOLD_PHRASE_RE = re.compile(r"\*\*([^*\n]+?)\*\*")

_TITLE_TRAILING = " \t:;,-–—"


@dataclass
class _Block:
    """Raw text of one entry, before interpretation."""
    line: int
    head: str
    section_status: Optional[Status]
    continuation: list[str] = field(default_factory=list)


@dataclass
class _Head:
    """Issue reference, title and trailing text parsed out of an entry head."""
    issue_number: Optional[int]
    title: str
    tail: str
    problem: Optional[SkipReason] = None
    detail: str = ""


def _strip_bullet(line: str) -> tuple[str, bool]:
    m = BULLET_RE.match(line)
    if m:
        return line[m.end():], True
    return line, False


def _is_indented(line: str) -> bool:
    return line[:1] in (" ", "\t")


def _date_header(line: str) -> Optional[str]:
    for pattern in DATE_HEADER_RES:
        m = pattern.match(line)
        if m:
            return m.group(1)
    return None


def _looks_like_head(line: str) -> bool:
    if not line or _is_indented(line):
        return False
    rest, bulleted = _strip_bullet(line)
    if bulleted:
        return bool(BULLETED_HEAD_CANDIDATE_RE.match(rest))
    return bool(BARE_HEAD_CANDIDATE_RE.match(rest))


def _first_marker_position(text: str) -> Optional[int]:
    """Earliest offset in text where any marker or transition starts."""
    positions = []
    for marker in STATUS_MARKERS:
        m = marker.pattern.search(text)
        if m:
            positions.append(m.start())
    m = TRANSITION_RE.search(text)
    if m:
        positions.append(m.start())
    return min(positions) if positions else None


def _split_title(rest: str) -> tuple[str, str]:
    """Split the text after an issue reference into (title, tail)."""
    rest = rest.strip().lstrip(":-–—").strip()
    for pattern in (TITLE_BOLD_RE, TITLE_QUOTED_RE, TITLE_LINK_RE):
        m = pattern.match(rest)
        if m:
            return strip_markdown(m.group(1)), m.group(2)

    pos = _first_marker_position(rest)
    if pos is None:
        return strip_markdown(rest), ""
    return strip_markdown(rest[:pos].rstrip(_TITLE_TRAILING)), rest[pos:]


def _url_conflict(number: int, url: str) -> Optional[int]:
    """Return the URL's issue number if it disagrees with number."""
    m = URL_ISSUE_NUMBER_RE.search(url)
    if m and int(m.group(1)) != number:
        return int(m.group(1))
    return None


def _match_head(rest: str) -> Optional[tuple[int, str, str, str]]:
    """Return (number, url, title, tail) for the first head form that matches."""
    m = HEAD_LINK_TITLE_RE.match(rest)
    if m:
        return int(m.group(1)), m.group(3), strip_markdown(m.group(2)), m.group(4)
    m = HEAD_LINK_RE.match(rest)
    if m:
        return (int(m.group(1)), m.group(2), *_split_title(m.group(3)))
    for pattern in (HEAD_BOLD_NUMBER_RE, HEAD_PLAIN_RE):
        m = pattern.match(rest)
        if m:
            return (int(m.group(1)), "", *_split_title(m.group(2)))
    m = HEAD_BOLD_ENTRY_RE.match(rest)
    if m:
        return int(m.group(1)), "", strip_markdown(m.group(2)), m.group(3)
    m = HEAD_TITLE_FIRST_RE.match(rest)
    if m:
        return int(m.group(2)), m.group(3), strip_markdown(m.group(1)), m.group(4)
    return None


def _parse_head(line: str) -> _Head:
    rest, _ = _strip_bullet(line)

    matched = _match_head(rest)
    if matched is None:
        return _Head(
            issue_number=None, title="", tail=rest,
            problem=SkipReason.MISSING_ISSUE_NUMBER,
            detail=f"no issue number in entry {truncate(line.strip(), 60)!r}",
        )
    number, url, title, tail = matched

    if number <= 0:
        return _Head(
            issue_number=None, title=title, tail=tail,
            problem=SkipReason.MISSING_ISSUE_NUMBER,
            detail=f"#{number} is not a valid issue number",
        )

    if url:
        other = _url_conflict(number, url)
        if other is not None:
            return _Head(
                issue_number=None, title=title, tail=tail,
                problem=SkipReason.AMBIGUOUS_ISSUE_NUMBER,
                detail=f"entry says #{number} but links to #{other}",
            )

    return _Head(issue_number=number, title=title, tail=tail)


class MinutesParser:
    """Parses proposal review minutes comments into StatusChange records.

    Args:
        repo: "owner/name" of the repository the minutes refer to. Bare
            "#123" references found in entries are resolved against it.
        web_url: Base URL used to build related issue links.
    """

    def __init__(self, repo: str = DEFAULT_REPO, web_url: str = GITHUB_WEB_URL):
        self.repo = repo
        self.web_url = web_url

    def parse(self, body, commented_at, comment_url: str = "") -> ParseResult:
        """Extract status changes from one comment body.

        Args:
            body: Comment text (str, or UTF-8 bytes).
            commented_at: The comment's authored timestamp. Every record takes
                its changed_at from here.
            comment_url: Permalink stamped on every record.

        Returns:
            ParseResult with changes in comment order and a diagnostic for
            every entry that was skipped.

        Raises:
            MinutesParseError: If the body is not text.
        """
        text = self._coerce_body(body)
        try:
            changed_at = parse_timestamp(commented_at)
        except ValueError as e:
            raise MinutesParseError(f"Invalid comment timestamp: {e}") from e
        if changed_at is None:
            raise MinutesParseError("Comment timestamp is required")

        result = ParseResult()
        if not text.strip():
            return result

        blocks = self._segment(text, result)

        seen: dict[int, StatusChange] = {}
        for block in blocks:
            change = self._interpret(block, changed_at, comment_url, result)
            if change is None:
                continue

            previous = seen.get(change.issue_number)
            if previous is not None:
                same = (previous.previous_status, previous.current_status) == (
                    change.previous_status, change.current_status
                )
                result.diagnostics.append(ParseDiagnostic(
                    reason=SkipReason.DUPLICATE_ENTRY,
                    message=(
                        f"#{change.issue_number} repeated"
                        if same else
                        f"#{change.issue_number} reported as {change.current_status.value} "
                        f"after {previous.current_status.value}; keeping the first"
                    ),
                    line=block.line,
                    issue_number=change.issue_number,
                    severity="info" if same else "warning",
                ))
                continue

            seen[change.issue_number] = change
            result.changes.append(change)

        for diag in result.warnings:
            logger.warning(f"Skipped entry at line {diag.line}: {diag.message}")
        logger.debug(
            f"Parsed {len(result.changes)} changes, "
            f"{len(result.diagnostics)} skipped entries"
        )
        return result

    # ── Pass 1: segmentation ─────────────────────────────────────────────

    @staticmethod
    def _coerce_body(body) -> str:
        if isinstance(body, (bytes, bytearray)):
            try:
                body = bytes(body).decode("utf-8")
            except UnicodeDecodeError as e:
                raise MinutesParseError(f"Comment body is not valid UTF-8: {e}") from e
        if not isinstance(body, str):
            raise MinutesParseError(f"Comment body must be text, got {type(body).__name__}")
        if "\x00" in body:
            raise MinutesParseError("Comment body contains NUL characters")
        return body.replace("\r\n", "\n").replace("\r", "\n")

    def _segment(self, text: str, result: ParseResult) -> list[_Block]:
        blocks: list[_Block] = []
        current: Optional[_Block] = None
        section_status: Optional[Status] = None
        after_blank = False

        for lineno, line in enumerate(text.split("\n"), start=1):
            date_str = _date_header(line)
            if date_str is not None:
                current = None
                if result.meeting_date is None:
                    result.meeting_date = self._parse_meeting_date(date_str, line)
                continue

            header_status = match_section_header(line)
            if header_status is not None:
                current = None
                section_status = header_status
                continue

            if _looks_like_head(line):
                current = _Block(line=lineno, head=line, section_status=section_status)
                blocks.append(current)
                after_blank = False
                continue

            if not line.strip():
                after_blank = True
                continue

            if current is None:
                continue
            # A new unindented paragraph is commentary, not part of the entry
            if after_blank and not _is_indented(line):
                current = None
                continue
            current.continuation.append(line)
            after_blank = False

        return blocks

    @staticmethod
    def _parse_meeting_date(date_str: str, line: str) -> Optional[date]:
        try:
            return datetime.strptime(date_str, "%Y-%m-%d").date()
        except ValueError as e:
            logger.warning(f"Invalid date in minutes header {line!r}: {e}")
            return None

    # ── Pass 2: per-block interpretation ─────────────────────────────────

    def _interpret(
        self,
        block: _Block,
        changed_at: datetime,
        comment_url: str,
        result: ParseResult,
    ) -> Optional[StatusChange]:
        head = _parse_head(block.head)
        if head.problem is not None:
            result.diagnostics.append(ParseDiagnostic(
                reason=head.problem,
                message=head.detail,
                line=block.line,
                severity="warning",
            ))
            return None

        number = head.issue_number
        body_text = "\n".join([head.tail, *block.continuation])

        previous = Status.UNKNOWN
        current: Optional[Status] = None

        transition = TRANSITION_RE.search(body_text)
        if transition:
            previous = status_from_alias(transition.group("prev"))
            current = status_from_alias(transition.group("cur"))
            if previous == current:
                result.diagnostics.append(ParseDiagnostic(
                    reason=SkipReason.UNCHANGED_STATUS,
                    message=f"#{number} stays {current.value}",
                    line=block.line,
                    issue_number=number,
                    severity="info",
                ))
                return None
        else:
            marker = match_marker(body_text)
            if marker is not None:
                current = marker.status
            elif block.section_status is not None:
                current = block.section_status

        if current is None:
            result.diagnostics.append(self._no_marker_diagnostic(number, body_text, block.line))
            return None

        return StatusChange(
            issue_number=number,
            title=head.title,
            previous_status=previous,
            current_status=current,
            changed_at=changed_at,
            comment_url=comment_url,
            related_issues=tuple(self._related_issues(body_text, number)),
        )

    @staticmethod
    def _no_marker_diagnostic(number: int, body_text: str, line: int) -> ParseDiagnostic:
        for m in BOLD_PHRASE_RE.finditer(body_text):
            phrase = m.group(1).strip()
            suggestion = suggest_marker(phrase)
            if suggestion is None:
                continue
            closest, score = suggestion
            return ParseDiagnostic(
                reason=SkipReason.UNRECOGNIZED_MARKER,
                message=(
                    f"#{number}: unrecognized marker {phrase!r} "
                    f"(closest: {closest!r}, score {score:.0f})"
                ),
                line=line,
                issue_number=number,
                severity="warning",
            )
        return ParseDiagnostic(
            reason=SkipReason.NO_STATUS_MARKER,
            message=f"#{number}: no status marker",
            line=line,
            issue_number=number,
            severity="info",
        )

    def _related_issues(self, text: str, own_number: int) -> list[RelatedIssue]:
        found: list[tuple[int, RelatedIssue]] = []
        spans: list[tuple[int, int]] = []

        def inside(pos: int) -> bool:
            return any(start <= pos < end for start, end in spans)

        for m in LINK_REF_RE.finditer(text):
            spans.append(m.span())
            url = m.group(2)
            repo_m = URL_REPO_RE.search(url)
            same_repo = repo_m is None or repo_m.group(1).lower() == self.repo.lower()
            if same_repo and int(m.group(3)) == own_number:
                continue
            found.append((m.start(), RelatedIssue(title=strip_markdown(m.group(1)), url=url)))

        for m in CROSS_REF_RE.finditer(text):
            if inside(m.start()):
                continue
            spans.append(m.span())
            repo, number = m.group(1), int(m.group(2))
            if repo.lower() == self.repo.lower() and number == own_number:
                continue
            found.append((m.start(), RelatedIssue(
                title=f"{repo}#{number}",
                url=issue_url(repo, number, self.web_url),
            )))

        for m in BARE_REF_RE.finditer(text):
            if inside(m.start()):
                continue
            number = int(m.group(1))
            if number == own_number or number <= 0:
                continue
            found.append((m.start(), RelatedIssue(
                title=f"#{number}",
                url=issue_url(self.repo, number, self.web_url),
            )))

        found.sort(key=lambda item: item[0])
        return [issue for _, issue in found]


def parse_minutes(body, commented_at, comment_url: str = "", repo: str = DEFAULT_REPO) -> ParseResult:
    """Parse one minutes comment with a default MinutesParser."""
    return MinutesParser(repo=repo).parse(body, commented_at, comment_url=comment_url)


# ── Human-readable report ────────────────────────────────────────────────

def format_report(result: ParseResult, source: str = "") -> str:
    """Format a parse result into a human-readable report."""
    lines = []
    lines.append(f"{'=' * 70}")
    lines.append("PROPOSAL REVIEW MINUTES")
    lines.append(f"{'=' * 70}")
    if source:
        lines.append(f"Source:        {source}")
    meeting = result.meeting_date.isoformat() if result.meeting_date else "(no date header)"
    lines.append(f"Meeting Date:  {meeting}")
    lines.append(f"{'─' * 70}")

    if result.changes:
        lines.append(f"\nSTATUS CHANGES ({len(result.changes)})")
        for change in result.changes:
            previous = change.previous_status.value
            lines.append(
                f"  * #{change.issue_number} {change.title}: "
                f"{previous} -> {change.current_status.value}"
            )
            for related in change.related_issues:
                lines.append(f"      related: {related.title} <{related.url}>")
    else:
        lines.append("\nNo status changes.")

    if result.diagnostics:
        lines.append(f"\nSKIPPED ENTRIES ({len(result.diagnostics)})")
        for diag in result.diagnostics:
            lines.append(f"  - line {diag.line} [{diag.reason.value}] {diag.message}")

    lines.append(f"\n{'=' * 70}")
    return "\n".join(lines)
