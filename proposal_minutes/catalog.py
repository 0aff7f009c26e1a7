"""Status marker catalog for proposal review minutes.

A fixed, priority-ordered table of the phrases moderators use to report a
proposal's review state, each mapped to a canonical status code. The table is
evaluated top to bottom and the first match wins, so compound markers
("no final comments; accepted") sit above the bare words they contain.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from rapidfuzz import fuzz, process


class Status(str, Enum):
    DISCUSSIONS = "discussions"
    ACTIVE = "active"
    LIKELY_ACCEPT = "likely_accept"
    LIKELY_DECLINE = "likely_decline"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    HOLD = "hold"
    # Previous status not stated in the text; resolved from prior known state
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class StatusMarker:
    """One recognized marker phrase and the status it reports."""
    phrase: str
    status: Status
    pattern: re.Pattern


def _marker(phrase: str, status: Status, pattern: str) -> StatusMarker:
    return StatusMarker(phrase, status, re.compile(pattern, re.IGNORECASE | re.MULTILINE))


# Separator between the halves of a compound marker: "; " but also ":", ",",
# "-" and any markdown bold that moderators wrap around the second half.
_SEP = r"\s*[;:,.\-–—]?\s*\**\s*"

# Celebration emoji moderators put after a final decision: 🎉, ✅, ✔️, 👍
_EMOJI = "[\u2600-\u27bf\U0001f300-\U0001faff]"

STATUS_MARKERS: tuple[StatusMarker, ...] = (
    # Accepted
    _marker("no final comments; accepted", Status.ACCEPTED,
            rf"no\s+final\s+comments{_SEP}accepted\b"),
    _marker("no change in consensus; accepted", Status.ACCEPTED,
            rf"no\s+change\s+in\s+consensus{_SEP}accepted\b"),
    _marker("accepted 🎉", Status.ACCEPTED, rf"\baccepted\s*\**\s*{_EMOJI}"),
    _marker("**accepted**", Status.ACCEPTED, r"\*\*\s*accepted\s*\*\*"),
    _marker("; accepted", Status.ACCEPTED, r";\s*\**\s*accepted\b"),

    # Declined
    _marker("no final comments; declined", Status.DECLINED,
            rf"no\s+final\s+comments{_SEP}declined\b"),
    _marker("no change in consensus; declined", Status.DECLINED,
            rf"no\s+change\s+in\s+consensus{_SEP}declined\b"),
    _marker("retracted; declined", Status.DECLINED, r"\bretracted\b.*?\bdeclined\b"),
    _marker("**declined**", Status.DECLINED, r"\*\*\s*declined\s*\*\*"),
    _marker("; declined", Status.DECLINED, r";\s*\**\s*declined\b"),
    _marker("**closed**", Status.DECLINED, r"\*\*\s*closed\s*\*\*"),

    # Likely accept / decline (closing ** optional)
    _marker("likely accept", Status.LIKELY_ACCEPT, r"\blikely\s+accept"),
    _marker("likely decline", Status.LIKELY_DECLINE, r"\blikely\s+decline"),

    # Hold
    _marker("put on hold", Status.HOLD, r"\bput\s+on\s+hold\b"),
    _marker("on hold", Status.HOLD, r"\bon\s+hold\s*\**\s*$"),

    # Active
    _marker("**active**", Status.ACTIVE, r"\*\*\s*active\s*\*\*"),
    _marker("added to active", Status.ACTIVE, r"\b(?:added|moved)\s+to\s+(?:the\s+)?active\b"),
    _marker("discussion ongoing", Status.ACTIVE, r"\bdiscussion\s+ongoing\b"),

    # Bare "last call" without a likely accept/decline in front of it
    _marker("last call for comments", Status.LIKELY_ACCEPT, r"\blast\s+call\s+for\s+comments\b"),
)


# Unindented bold headers that set the default status for the entries below them
SECTION_HEADERS: tuple[tuple[re.Pattern, Status], ...] = (
    (re.compile(r"^\*\*Accepted\*\*", re.IGNORECASE), Status.ACCEPTED),
    (re.compile(r"^\*\*Declined\*\*", re.IGNORECASE), Status.DECLINED),
    (re.compile(r"^\*\*Likely Accept\*\*", re.IGNORECASE), Status.LIKELY_ACCEPT),
    (re.compile(r"^\*\*Likely Decline\*\*", re.IGNORECASE), Status.LIKELY_DECLINE),
    (re.compile(r"^\*\*Active\*\*", re.IGNORECASE), Status.ACTIVE),
    (re.compile(r"^\*\*(?:On )?Hold\*\*", re.IGNORECASE), Status.HOLD),
    (re.compile(r"^\*\*Discussions?\*\*", re.IGNORECASE), Status.DISCUSSIONS),
)


# Words allowed on either side of an explicit "A -> B" transition
STATUS_ALIASES: dict[str, Status] = {
    "discussions": Status.DISCUSSIONS,
    "discussion": Status.DISCUSSIONS,
    "active": Status.ACTIVE,
    "likely accept": Status.LIKELY_ACCEPT,
    "likely_accept": Status.LIKELY_ACCEPT,
    "likely decline": Status.LIKELY_DECLINE,
    "likely_decline": Status.LIKELY_DECLINE,
    "accepted": Status.ACCEPTED,
    "declined": Status.DECLINED,
    "hold": Status.HOLD,
    "on hold": Status.HOLD,
}

_ALIAS_ALT = "|".join(
    re.escape(alias).replace(r"\ ", r"\s+").replace("_", r"[_\s]")
    for alias in sorted(STATUS_ALIASES, key=len, reverse=True)
)

TRANSITION_RE = re.compile(
    rf"\b(?P<prev>{_ALIAS_ALT})\**\s*(?:→|->|=>|⟶)\s*\**(?P<cur>{_ALIAS_ALT})\b",
    re.IGNORECASE,
)

# Suggestions below this score are not worth reporting
SUGGESTION_CUTOFF = 75


def status_from_alias(text: str) -> Optional[Status]:
    """Map a transition-side word ("likely accept", "on hold") to a Status."""
    key = re.sub(r"[\s_]+", " ", text.strip().lower())
    if key in STATUS_ALIASES:
        return STATUS_ALIASES[key]
    return STATUS_ALIASES.get(key.replace(" ", "_"))


def match_marker(text: str) -> Optional[StatusMarker]:
    """Return the highest-priority marker found anywhere in text."""
    for marker in STATUS_MARKERS:
        if marker.pattern.search(text):
            return marker
    return None


def match_section_header(line: str) -> Optional[Status]:
    """Return the default status if line is a section header."""
    for pattern, status in SECTION_HEADERS:
        if pattern.match(line):
            return status
    return None


def suggest_marker(phrase: str) -> Optional[tuple[str, float]]:
    """Find the catalog phrase closest to an unrecognized marker.

    Returns:
        (phrase, score) for the best match scoring at least
        SUGGESTION_CUTOFF, otherwise None.
    """
    if not phrase or not phrase.strip():
        return None
    choices = [m.phrase.strip("*; ") for m in STATUS_MARKERS]
    best = process.extractOne(
        phrase.lower().strip(),
        choices,
        scorer=fuzz.ratio,
        score_cutoff=SUGGESTION_CUTOFF,
    )
    if best is None:
        return None
    return best[0], float(best[1])
