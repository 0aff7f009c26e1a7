"""GitHub issue comments source.

Data source: the proposal review minutes are posted as comments on a single
tracking issue (golang/go#33502). The REST API lists an issue's comments in
ascending order, 100 per page at most, and the since parameter filters on
updated_at.

Requests carry the versioned JSON media type, and a bearer token when one is
configured (unauthenticated requests are limited to 60 per hour). The ETag of
the first page is kept so that a repeated fetch of an unchanged thread costs a
304 instead of a full download.
"""

import logging
from datetime import datetime
from typing import Optional

import requests

from proposal_minutes.adapters.base import CommentSource, SourceError
from proposal_minutes.utils.normalization import format_timestamp, truncate

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
MINUTES_REPO = "golang/go"
MINUTES_ISSUE = 33502
PER_PAGE = 100
DEFAULT_TIMEOUT = 30
API_VERSION = "2022-11-28"


class GitHubCommentSource(CommentSource):
    """Reads minutes comments from a GitHub issue through the REST API."""

    source_id = "github"

    def __init__(
        self,
        repo: str = MINUTES_REPO,
        issue: int = MINUTES_ISSUE,
        token: Optional[str] = None,
        api_url: str = GITHUB_API_URL,
        timeout: int = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(repo, issue)
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.etag: Optional[str] = None
        self.source_name = f"{repo}#{issue}"

        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": "proposal-minutes-tracker",
        })
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    @property
    def comments_url(self) -> str:
        return f"{self.api_url}/repos/{self.repo}/issues/{self.issue}/comments"

    def fetch_source(self, since: Optional[datetime]) -> list[dict]:
        """Download every page of comments updated at or after since.

        Returns:
            GitHub comment objects in API order. Empty when the first page
            answers 304 Not Modified.

        Raises:
            SourceError: On network failure, a non-200 status or a body that
                is not a JSON array.
        """
        comments: list[dict] = []
        page = 1
        while True:
            batch, has_more = self._fetch_page(since, page)
            if batch is None:
                logger.info(f"{self.source_name}: not modified since last fetch")
                return []
            comments.extend(batch)
            if not has_more:
                break
            page += 1
        logger.debug(f"{self.source_name}: {len(comments)} comments in {page} page(s)")
        return comments

    def _fetch_page(self, since: Optional[datetime], page: int) -> tuple[Optional[list], bool]:
        params = {"per_page": PER_PAGE, "page": page}
        if since is not None:
            params["since"] = format_timestamp(since.replace(microsecond=0))

        headers = {}
        if page == 1 and self.etag:
            headers["If-None-Match"] = self.etag

        try:
            resp = self.session.get(
                self.comments_url, params=params, headers=headers, timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise SourceError(f"GitHub request failed for {self.source_name}: {e}") from e

        if resp.status_code == 304:
            return None, False
        if resp.status_code != 200:
            raise SourceError(
                f"GitHub API error for {self.source_name}: "
                f"status={resp.status_code} body={truncate(resp.text, 200)}"
            )

        if page == 1 and resp.headers.get("ETag"):
            self.etag = resp.headers["ETag"]

        try:
            data = resp.json()
        except ValueError as e:
            raise SourceError(f"GitHub returned invalid JSON for {self.source_name}: {e}") from e
        if not isinstance(data, list):
            raise SourceError(
                f"GitHub returned {type(data).__name__} instead of a comment list "
                f"for {self.source_name}"
            )

        return data, len(data) == PER_PAGE
