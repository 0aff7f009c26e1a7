"""Tests for the GitHub comment source using a fake HTTP session."""

import pytest
import requests
from datetime import datetime, timezone

from proposal_minutes.adapters import SOURCE_REGISTRY, get_source
from proposal_minutes.adapters.base import SourceError
from proposal_minutes.adapters.github import PER_PAGE, GitHubCommentSource


SINCE = datetime(2026, 2, 1, 12, 30, 45, 123456, tzinfo=timezone.utc)


def make_item(i):
    return {
        "id": 1000 + i,
        "body": f"- #{i} **proposal {i}**\n  - **accepted**\n",
        "created_at": "2026-02-04T00:00:00Z",
        "updated_at": "2026-02-04T00:00:00Z",
    }


class FakeResponse:

    def __init__(self, status_code=200, payload=None, headers=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = text if text is not None else ""

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Stands in for requests.Session, replaying queued responses."""

    def __init__(self, responses):
        self.headers = {}
        self._responses = list(responses)
        self.requests = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.requests.append({"url": url, "params": dict(params or {}), "headers": dict(headers or {}),
                              "timeout": timeout})
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_source(responses, **kwargs):
    session = FakeSession(responses)
    return GitHubCommentSource(session=session, **kwargs), session


class TestRequests:

    def test_headers_and_params(self):
        source, session = make_source([FakeResponse(payload=[make_item(1)])], token="ghp_x")
        comments = source.fetch_comments(since=SINCE)

        assert len(comments) == 1
        assert session.headers["Accept"] == "application/vnd.github+json"
        assert session.headers["X-GitHub-Api-Version"] == "2022-11-28"
        assert session.headers["Authorization"] == "Bearer ghp_x"
        req = session.requests[0]
        assert req["url"] == "https://api.github.com/repos/golang/go/issues/33502/comments"
        assert req["params"] == {"per_page": 100, "page": 1, "since": "2026-02-01T12:30:45Z"}
        assert req["timeout"] == 30

    def test_no_token_no_auth_header(self):
        source, session = make_source([FakeResponse(payload=[])])
        source.fetch_comments()
        assert "Authorization" not in session.headers
        assert "since" not in session.requests[0]["params"]

    def test_pagination(self):
        first = [make_item(i) for i in range(PER_PAGE)]
        second = [make_item(PER_PAGE)]
        source, session = make_source([FakeResponse(payload=first), FakeResponse(payload=second)])

        comments = source.fetch_comments()
        assert len(comments) == PER_PAGE + 1
        assert [r["params"]["page"] for r in session.requests] == [1, 2]

    def test_comment_records(self):
        source, _ = make_source([FakeResponse(payload=[make_item(7)])])
        comment = source.fetch_comments()[0]
        assert comment.id == "1007"
        assert comment.repo == "golang/go"
        assert comment.thread == 33502
        assert comment.created_at == datetime(2026, 2, 4, tzinfo=timezone.utc)
        assert comment.url == "https://github.com/golang/go/issues/33502#issuecomment-1007"


class TestETag:

    def test_not_modified(self):
        source, session = make_source([
            FakeResponse(payload=[make_item(1)], headers={"ETag": '"abc"'}),
            FakeResponse(status_code=304),
        ])
        assert len(source.fetch_comments()) == 1
        assert source.fetch_comments() == []
        assert session.requests[1]["headers"] == {"If-None-Match": '"abc"'}


class TestPreviousComment:

    def test_fetch_previous(self):
        items = [make_item(1), make_item(2)]
        source, session = make_source([FakeResponse(payload=items), FakeResponse(payload=items)])
        _, latest = source.fetch_comments()

        previous = source.fetch_previous(latest)
        assert previous.id == "1001"
        assert session.requests[1]["params"]["since"] == "2026-01-05T00:00:00Z"

    def test_no_previous(self):
        source, _ = make_source([FakeResponse(payload=[make_item(1)]), FakeResponse(payload=[make_item(1)])])
        only = source.fetch_comments()[0]
        assert source.fetch_previous(only) is None


class TestErrors:

    def test_http_error(self):
        source, _ = make_source([FakeResponse(status_code=403, text="rate limited")])
        with pytest.raises(SourceError, match="403"):
            source.fetch_comments()

    def test_network_error(self):
        source, _ = make_source([requests.ConnectionError("boom")])
        with pytest.raises(SourceError):
            source.fetch_comments()

    def test_invalid_json(self):
        source, _ = make_source([FakeResponse(payload=ValueError("bad json"))])
        with pytest.raises(SourceError):
            source.fetch_comments()

    def test_not_a_list(self):
        source, _ = make_source([FakeResponse(payload={"message": "Not Found"})])
        with pytest.raises(SourceError):
            source.fetch_comments()

    def test_comment_without_created_at(self):
        item = make_item(1)
        del item["created_at"]
        source, _ = make_source([FakeResponse(payload=[item])])
        with pytest.raises(SourceError):
            source.fetch_comments()


class TestRegistry:

    def test_registry(self):
        assert SOURCE_REGISTRY["github"] is GitHubCommentSource
        source = get_source("github", repo="example/proj", issue=5, session=FakeSession([]))
        assert source.comments_url.endswith("/repos/example/proj/issues/5/comments")

    def test_unknown_source(self):
        with pytest.raises(KeyError):
            get_source("gitlab")
