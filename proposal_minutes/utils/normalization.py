"""Normalization utilities for timestamps and markdown-decorated text.

Timestamp helpers handle None and empty strings by returning None instead of
raising. Naive timestamps are treated as UTC.
"""

import re
from datetime import datetime, timezone
from typing import Optional

from dateutil import parser as dateutil_parser


_EMPTY_VALUES = {None, "", "null", "None", "none"}

# [text](url) -> text
_LINK_RE = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")
# **bold** / __bold__
_STRONG_RE = re.compile(r"(\*\*|__)(.+?)\1")
# *em* (single asterisks only; underscores show up inside identifiers)
_EM_RE = re.compile(r"(?<![\w*])\*(?!\s)(.+?)(?<!\s)\*(?![\w*])")
_CODE_RE = re.compile(r"`+([^`]*)`+")
_HTML_TAG_RE = re.compile(r"</?[A-Za-z][^>]*>")
_WS_RE = re.compile(r"\s+")

_QUOTE_PAIRS = [('"', '"'), ("“", "”")]


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp into a tz-aware datetime.

    Handles:
    - "2026-02-04T00:00:00Z" -> 2026-02-04 00:00:00+00:00
    - "2026-02-04T09:00:00+09:00" -> kept in its offset
    - "2026-02-04" -> midnight UTC
    - datetime instances (naive ones are assumed UTC)

    Returns:
        Aware datetime, or None for empty input.

    Raises:
        ValueError: If the value is not a recognizable timestamp.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        value = value.strip()
    if value in _EMPTY_VALUES:
        return None
    if not isinstance(value, str):
        raise ValueError(f"Unsupported timestamp value: {value!r}")

    try:
        parsed = dateutil_parser.isoparse(value)
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Invalid timestamp {value!r}: {e}") from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Format an aware datetime as RFC 3339 in UTC with a trailing Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc = value.astimezone(timezone.utc)
    if utc.microsecond:
        return utc.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return utc.strftime("%Y-%m-%dT%H:%M:%SZ")


def iso_week(value: datetime) -> str:
    """Return the ISO week label, e.g. "2026-W06"."""
    year, week, _ = value.isocalendar()
    return f"{year}-W{week:02d}"


def strip_markdown(text: Optional[str]) -> str:
    """Reduce markdown-decorated inline text to plain text.

    Links keep their label, bold/italic markers and code ticks are dropped,
    inline HTML tags are removed and whitespace is collapsed. Surrounding
    quotes are removed when they wrap the whole string.

    Examples:
        "**cmd/go: add GOMODCACHE**" -> "cmd/go: add GOMODCACHE"
        "[`io/fs`: add FS](https://...)" -> "io/fs: add FS"
        '"Foo"' -> "Foo"
    """
    if not text:
        return ""

    s = _LINK_RE.sub(r"\1", text)
    s = _CODE_RE.sub(r"\1", s)
    # Nested emphasis needs more than one pass
    for _ in range(3):
        stripped = _STRONG_RE.sub(r"\2", s)
        stripped = _EM_RE.sub(r"\1", stripped)
        if stripped == s:
            break
        s = stripped
    s = _HTML_TAG_RE.sub("", s)
    s = _WS_RE.sub(" ", s).strip()

    for open_q, close_q in _QUOTE_PAIRS:
        if len(s) >= 2 and s.startswith(open_q) and s.endswith(close_q):
            s = s[1:-1].strip()
            break

    return s


def truncate(text: str, length: int = 100) -> str:
    """Return the first `length` characters of text, with "..." if cut."""
    if len(text) <= length:
        return text
    return text[:length] + "..."
