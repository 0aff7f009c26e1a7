"""Tests for the minutes parser."""

import pytest
from datetime import date, datetime, timezone
from pathlib import Path

from proposal_minutes.catalog import Status
from proposal_minutes.minutes import (
    MinutesParseError,
    MinutesParser,
    format_report,
    parse_minutes,
)
from proposal_minutes.models import SkipReason


DATA_DIR = Path(__file__).parent / "data"
AT = datetime(2026, 2, 4, tzinfo=timezone.utc)


@pytest.fixture
def parser():
    return MinutesParser(repo="golang/go")


def by_number(result):
    return {c.issue_number: c for c in result.changes}


def reasons(result):
    return [d.reason for d in result.diagnostics]


class TestBasicEntries:
    """Entry formats and the two-entry example."""

    def test_two_entry_example(self, parser):
        body = '#100 "Foo": discussion ongoing\n#200 "Bar": no final comments; accepted 🎉\n'
        result = parser.parse(body, "2026-02-04T00:00:00Z")

        assert len(result) == 2
        first, second = result.changes
        assert first.issue_number == 100
        assert first.title == "Foo"
        assert first.current_status == Status.ACTIVE
        assert first.previous_status == Status.UNKNOWN
        assert second.issue_number == 200
        assert second.title == "Bar"
        assert second.current_status == Status.ACCEPTED
        assert second.changed_at == AT

    def test_bulleted_entry_with_sub_bullets(self, parser):
        body = (
            "**2019-08-13** / @rsc, @griesemer\n"
            "\n"
            "- #32456 **net/url: add FromFilePath and ToFilePath**\n"
            "  - asked for design doc\n"
            "  - put on hold for design doc\n"
        )
        result = parser.parse(body, AT)
        assert len(result) == 1
        change = result.changes[0]
        assert change.issue_number == 32456
        assert change.title == "net/url: add FromFilePath and ToFilePath"
        assert change.current_status == Status.HOLD

    def test_changed_at_is_comment_time_not_header_date(self, parser):
        body = "**2019-08-20** / @rsc\n\n- #25530 **x**\n  - **no final comments; accepted 🎉**\n"
        at = datetime(2019, 8, 21, 9, 30, tzinfo=timezone.utc)
        result = parser.parse(body, at)
        assert result.changes[0].changed_at == at
        assert result.meeting_date == date(2019, 8, 20)

    def test_comment_url_is_stamped(self, parser):
        url = "https://github.com/golang/go/issues/33502#issuecomment-1"
        result = parser.parse("#100 **foo**: **accepted**", AT, comment_url=url)
        assert result.changes[0].comment_url == url

    def test_crlf_line_endings(self, parser):
        body = "- #1 **a**\r\n  - **declined**\r\n- #2 **b**\r\n  - **likely accept**\r\n"
        result = parser.parse(body, AT)
        assert [(c.issue_number, c.current_status) for c in result] == [
            (1, Status.DECLINED),
            (2, Status.LIKELY_ACCEPT),
        ]

    def test_module_level_parse_minutes(self):
        result = parse_minutes("#100 **foo**: put on hold", AT)
        assert result.changes[0].current_status == Status.HOLD


class TestRealComment:
    """Recorded comment from golang/go#33502."""

    @pytest.fixture
    def result(self, parser):
        body = (DATA_DIR / "minutes_2020-04-08.md").read_text(encoding="utf-8")
        return parser.parse(body, datetime(2020, 4, 8, 18, 26, 15, tzinfo=timezone.utc))

    def test_statuses(self, result):
        expected = {
            34527: Status.ACCEPTED,
            25348: Status.HOLD,
            37641: Status.ACTIVE,
            37475: Status.ACCEPTED,
            37168: Status.ACTIVE,
            24171: Status.DECLINED,
            32779: Status.ACCEPTED,
            36450: Status.ACTIVE,
            37776: Status.ACCEPTED,
            37112: Status.LIKELY_ACCEPT,
            36771: Status.ACCEPTED,
            31107: Status.DECLINED,
            38017: Status.ACCEPTED,
            29390: Status.ACTIVE,
        }
        actual = {n: c.current_status for n, c in by_number(result).items()}
        assert actual == expected

    def test_comment_order_preserved(self, result):
        numbers = [c.issue_number for c in result.changes]
        assert numbers[:3] == [34527, 25348, 37641]
        assert numbers[-1] == 29390

    def test_titles_are_plain_text(self, result):
        changes = by_number(result)
        assert changes[34527].title == "cmd/go: add GOMODCACHE"
        assert changes[25348].title == (
            "cmd/go: allow && and || operators and parentheses in build tags"
        )

    def test_entries_without_status_are_info(self, result):
        assert result.warnings == []
        assert reasons(result).count(SkipReason.NO_STATUS_MARKER) == 11

    def test_meeting_date_and_timestamps(self, result):
        assert result.meeting_date == date(2020, 4, 8)
        at = datetime(2020, 4, 8, 18, 26, 15, tzinfo=timezone.utc)
        assert all(c.changed_at == at for c in result)

    def test_no_related_issues(self, result):
        assert all(c.related_issues == () for c in result)


class TestSpecificity:
    """Most specific marker wins."""

    def test_compound_accepted(self, parser):
        result = parser.parse("- #1 **x**\n  - **no final comments; accepted 🎉**\n", AT)
        assert result.changes[0].current_status == Status.ACCEPTED

    def test_accepted_after_likely_accept_in_one_block(self, parser):
        body = (
            "- #1 **x**\n"
            "  - **likely accept**; last call for comments\n"
            "  - no final comments; **accepted** 🎉\n"
        )
        result = parser.parse(body, AT)
        assert [(c.issue_number, c.title, c.current_status) for c in result.changes] == [
            (1, "x", Status.ACCEPTED),
        ]

    def test_accepted_with_other_emoji(self, parser):
        result = parser.parse('#200 "Bar": accepted ✅\n', AT)
        assert result.changes[0].current_status == Status.ACCEPTED

    def test_likely_decline_with_last_call(self, parser):
        result = parser.parse("- #1 **x**\n  - **likely decline**; last call for comments ⏳\n", AT)
        assert result.changes[0].current_status == Status.LIKELY_DECLINE

    def test_likely_accept_with_last_call(self, parser):
        result = parser.parse("- #1 **x**\n  - **likely accept; last call for comments**\n", AT)
        assert result.changes[0].current_status == Status.LIKELY_ACCEPT

    def test_retracted(self, parser):
        result = parser.parse("- #37642 **x**\n  - proposal retracted by author; **declined**\n", AT)
        assert result.changes[0].current_status == Status.DECLINED

    def test_closed(self, parser):
        result = parser.parse("- #33454 **log: modify Logger struct**\n  - **closed** (backwards-incompatible change)\n", AT)
        assert result.changes[0].current_status == Status.DECLINED


class TestDecoratedReferences:
    """Issue references wrapped in markdown."""

    def test_link_with_title(self, parser):
        body = "[#123: cmd/go: add thing](https://github.com/golang/go/issues/123) likely accept"
        change = parser.parse(body, AT).changes[0]
        assert change.issue_number == 123
        assert change.title == "cmd/go: add thing"
        assert change.current_status == Status.LIKELY_ACCEPT

    def test_bold_number(self, parser):
        body = "**#456** Some Title\n  - **declined**\n"
        change = parser.parse(body, AT).changes[0]
        assert change.issue_number == 456
        assert change.title == "Some Title"
        assert change.current_status == Status.DECLINED

    def test_link_then_bold_title(self, parser):
        body = "- [#789](https://github.com/golang/go/issues/789) **io/fs: add `FS`**\n  - **likely accept**\n"
        change = parser.parse(body, AT).changes[0]
        assert change.issue_number == 789
        assert change.title == "io/fs: add FS"

    def test_title_before_link(self, parser):
        body = "- **net/http: foo** [#321](https://github.com/golang/go/issues/321) put on hold\n"
        change = parser.parse(body, AT).changes[0]
        assert change.issue_number == 321
        assert change.title == "net/http: foo"
        assert change.current_status == Status.HOLD

    def test_title_before_link_without_bullet(self, parser):
        body = "**net/http: foo** [#321](https://github.com/golang/go/issues/321) put on hold\n"
        result = parser.parse(body, AT)
        assert result.diagnostics == []
        change = result.changes[0]
        assert change.issue_number == 321
        assert change.title == "net/http: foo"
        assert change.current_status == Status.HOLD

    def test_bold_number_and_title(self, parser):
        body = "- **#123 Some title**\n  - **accepted**\n"
        change = parser.parse(body, AT).changes[0]
        assert change.issue_number == 123
        assert change.title == "Some title"
        assert change.current_status == Status.ACCEPTED

    def test_bold_number_colon_title_without_bullet(self, parser):
        body = "**#124: Other title** likely decline\n"
        change = parser.parse(body, AT).changes[0]
        assert change.issue_number == 124
        assert change.title == "Other title"
        assert change.current_status == Status.LIKELY_DECLINE

    def test_link_number_disagrees_with_url(self, parser):
        body = (
            "- [#123](https://github.com/golang/go/issues/124) **x**\n"
            "  - **accepted**\n"
            "- #5 **ok**\n"
            "  - **declined**\n"
        )
        result = parser.parse(body, AT)
        assert [c.issue_number for c in result] == [5]
        assert result.diagnostics[0].reason == SkipReason.AMBIGUOUS_ISSUE_NUMBER
        assert result.diagnostics[0].severity == "warning"


class TestMalformedEntries:
    """Bad entries are skipped with a diagnostic, the rest still parse."""

    def test_missing_number_does_not_leak(self, parser):
        body = (
            "- #4 **first**\n"
            "  - commented\n"
            "- **Some title without number**\n"
            "  - **accepted**\n"
            "- #5 **ok**\n"
            "  - **declined**\n"
        )
        result = parser.parse(body, AT)
        assert [(c.issue_number, c.current_status) for c in result] == [(5, Status.DECLINED)]
        assert SkipReason.MISSING_ISSUE_NUMBER in reasons(result)

    def test_zero_issue_number(self, parser):
        result = parser.parse("- #0 **zero**\n  - **accepted**\n", AT)
        assert len(result) == 0
        assert reasons(result) == [SkipReason.MISSING_ISSUE_NUMBER]

    def test_unrecognized_marker_suggests(self, parser):
        result = parser.parse("- #42 **foo**\n  - **likely acept**\n", AT)
        assert len(result) == 0
        diag = result.diagnostics[0]
        assert diag.reason == SkipReason.UNRECOGNIZED_MARKER
        assert diag.issue_number == 42
        assert "likely accept" in diag.message

    def test_no_marker_is_info(self, parser):
        result = parser.parse("- #42 **foo**\n  - retitled, commented\n", AT)
        assert len(result) == 0
        assert result.diagnostics[0].reason == SkipReason.NO_STATUS_MARKER
        assert result.diagnostics[0].severity == "info"
        assert result.warnings == []

    def test_trailing_paragraph_is_not_part_of_entry(self, parser):
        body = (
            "- #1 **a**\n"
            "  - commented\n"
            "\n"
            "Note: **declined** proposals are closed after a week.\n"
        )
        result = parser.parse(body, AT)
        assert len(result) == 0

    def test_duplicate_entry_keeps_first(self, parser):
        body = "- #9 **x**\n  - **accepted**\n- #9 **x**\n  - **declined**\n"
        result = parser.parse(body, AT)
        assert [(c.issue_number, c.current_status) for c in result] == [(9, Status.ACCEPTED)]
        assert result.diagnostics[0].reason == SkipReason.DUPLICATE_ENTRY
        assert result.diagnostics[0].severity == "warning"

    def test_identical_duplicate_is_info(self, parser):
        body = "- #9 **x**\n  - **accepted**\n- #9 **x**\n  - **accepted**\n"
        result = parser.parse(body, AT)
        assert len(result) == 1
        assert result.diagnostics[0].severity == "info"


class TestTransitions:
    """Explicit "A -> B" transitions."""

    def test_arrow_transition(self, parser):
        change = parser.parse("#77 **foo**: active → likely accept", AT).changes[0]
        assert change.previous_status == Status.ACTIVE
        assert change.current_status == Status.LIKELY_ACCEPT

    def test_ascii_arrow_with_codes(self, parser):
        change = parser.parse("#77 **foo**: likely_accept -> accepted", AT).changes[0]
        assert change.previous_status == Status.LIKELY_ACCEPT
        assert change.current_status == Status.ACCEPTED

    def test_unchanged_transition_is_skipped(self, parser):
        result = parser.parse("#78 **foo**: active -> active", AT)
        assert len(result) == 0
        assert result.diagnostics[0].reason == SkipReason.UNCHANGED_STATUS


class TestSections:
    """Section headers give a default status."""

    def test_section_defaults(self, parser):
        body = (
            "**Accepted**\n"
            "\n"
            "- #10 **foo**\n"
            "- #11 **bar**\n"
            "\n"
            "**Declined**\n"
            "\n"
            "- #12 **baz**\n"
        )
        result = parser.parse(body, AT)
        assert [(c.issue_number, c.current_status) for c in result] == [
            (10, Status.ACCEPTED),
            (11, Status.ACCEPTED),
            (12, Status.DECLINED),
        ]

    def test_entry_marker_overrides_section(self, parser):
        body = "**Active**\n\n- #10 **foo**\n  - put on hold\n"
        assert parser.parse(body, AT).changes[0].current_status == Status.HOLD


class TestRelatedIssues:

    def test_related_issue_forms_in_text_order(self, parser):
        body = (
            "- #100 **foo**\n"
            "  - duplicate of #200, see golang/tools#55 and "
            "[#300](https://github.com/golang/go/issues/300); follows #100\n"
            "  - **declined**\n"
        )
        change = parser.parse(body, AT).changes[0]
        assert [r.url for r in change.related_issues] == [
            "https://github.com/golang/go/issues/200",
            "https://github.com/golang/tools/issues/55",
            "https://github.com/golang/go/issues/300",
        ]
        assert change.related_issues[1].title == "golang/tools#55"

    def test_bare_refs_use_parser_repo(self):
        parser = MinutesParser(repo="example/proj")
        change = parser.parse("#1 **a**: **accepted**, see #2", AT).changes[0]
        assert change.related_issues[0].url == "https://github.com/example/proj/issues/2"


class TestWholeBody:

    def test_empty_body(self, parser):
        result = parser.parse("", AT)
        assert result.changes == []
        assert result.diagnostics == []

    def test_prose_only(self, parser):
        result = parser.parse("This is not a valid minutes format\nJust some random text\n", AT)
        assert len(result) == 0
        assert result.diagnostics == []

    def test_bytes_body(self, parser):
        result = parser.parse("#1 **a**: **accepted** 🎉".encode("utf-8"), AT)
        assert result.changes[0].current_status == Status.ACCEPTED

    def test_invalid_utf8(self, parser):
        with pytest.raises(MinutesParseError):
            parser.parse(b"#1 \xff\xfe **accepted**", AT)

    def test_not_text(self, parser):
        with pytest.raises(MinutesParseError):
            parser.parse(12345, AT)

    def test_missing_timestamp(self, parser):
        with pytest.raises(MinutesParseError):
            parser.parse("#1 **a**: **accepted**", None)

    def test_invalid_header_date(self, parser):
        result = parser.parse("**2020-13-45** / @rsc\n\n- #1 **a**\n  - **accepted**\n", AT)
        assert result.meeting_date is None
        assert len(result) == 1

    def test_idempotent(self, parser):
        body = (DATA_DIR / "minutes_2020-04-08.md").read_text(encoding="utf-8")
        assert parser.parse(body, AT) == parser.parse(body, AT)


class TestFormatReport:

    def test_report_lists_changes_and_skips(self, parser):
        result = parser.parse("- #1 **alpha**\n  - **accepted**\n- #2 **beta**\n  - commented\n", AT)
        report = format_report(result, source="minutes.md")
        assert "#1 alpha: unknown -> accepted" in report
        assert "no_status_marker" in report
        assert "minutes.md" in report

    def test_report_without_changes(self, parser):
        report = format_report(parser.parse("", AT))
        assert "No status changes." in report
