"""
GitHub REST client used by the sync engine.

Only the two calls the engine needs are implemented:
- fetch_metadata: GET /repos/{owner}/{repo}
- fetch_commits:  GET /repos/{owner}/{repo}/commits (paged)

Every response feeds the shared RateLimitTracker.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import requests

from app.errors import (
    MetadataUnavailableError,
    NotFoundError,
    RateLimitedError,
    TransportError,
)
from app.services.rate_limit import RateLimitTracker

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUSES = (403, 429)
UNREACHABLE_CURSOR_STATUSES = (404, 422)


@dataclass
class RepositoryMetadata:
    """Fields copied from GitHub when a repository is registered."""
    name: str
    description: str = ""
    url: str = ""
    language: str = ""
    forks_count: int = 0
    stars_count: int = 0
    open_issues_count: int = 0
    watchers_count: int = 0


@dataclass
class CommitData:
    """Structural fields of one commit as returned by GitHub."""
    commit_id: str
    message: str
    author: str
    date: Optional[datetime]
    url: str
    repository_name: str


@dataclass
class CommitPage:
    """One page of commits plus whether GitHub advertised a next page."""
    commits: list[CommitData] = field(default_factory=list)
    has_more: bool = False


def format_rfc3339(moment: datetime) -> str:
    """Format a datetime the way the GitHub API expects (UTC, Z suffix)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_github_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable commit date from GitHub: %r", value)
        return None


class GitHubClient:
    """Client for the GitHub REST API."""

    def __init__(
        self,
        base_url: str = "https://api.github.com",
        token: Optional[str] = None,
        tracker: Optional[RateLimitTracker] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.tracker = tracker or RateLimitTracker()
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "commit-sync-service",
        }
        # No token - unauthenticated calls, stricter limits
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get(self, path: str, params: Optional[dict] = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(
                url,
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.warning("Request to %s failed: %s", url, e)
            raise TransportError(f"request to {url} failed: {e}") from e

        self.tracker.update(response.headers)
        logger.debug("GET %s -> %s", response.url, response.status_code)
        return response

    def _json(self, response: requests.Response, what: str):
        try:
            return response.json()
        except ValueError as e:
            logger.error("Could not decode %s response: %s", what, e)
            raise TransportError(f"could not decode {what} response") from e

    def fetch_metadata(self, repository_name: str) -> RepositoryMetadata:
        """
        Fetch repository metadata.

        Raises:
            RateLimitedError: on 403/429
            NotFoundError: on 404
            MetadataUnavailableError: on any other non-success status
            TransportError: on network or decoding failure
        """
        response = self._get(f"/repos/{repository_name}")

        if response.status_code in RATE_LIMIT_STATUSES:
            logger.error(
                "Failed to fetch repository metadata; status code: %s, body: %s",
                response.status_code, response.text[:200]
            )
            raise RateLimitedError("rate limit exceeded")

        if response.status_code == 404:
            raise NotFoundError(f"repository '{repository_name}' not found on GitHub")

        if response.status_code != 200:
            logger.error(
                "Failed to fetch repository metadata; status code: %s, body: %s",
                response.status_code, response.text[:200]
            )
            raise MetadataUnavailableError(
                "repository metadata not fetched, ensure repository is valid and public"
            )

        body = self._json(response, "repository metadata")
        if not isinstance(body, dict) or not body.get("full_name"):
            raise TransportError("repository metadata response has no full_name")

        return RepositoryMetadata(
            name=body["full_name"],
            description=body.get("description") or "",
            url=body.get("html_url") or body.get("url") or "",
            language=body.get("language") or "",
            forks_count=body.get("forks_count") or 0,
            stars_count=body.get("stargazers_count") or 0,
            open_issues_count=body.get("open_issues_count", body.get("open_issues")) or 0,
            watchers_count=body.get("watchers_count") or 0,
        )

    def fetch_commits(
        self,
        repository_name: str,
        since: Optional[datetime],
        until: Optional[datetime],
        cursor_commit_id: str,
        page: int,
        per_page: int,
    ) -> CommitPage:
        """
        Fetch one page of commits.

        A non-empty cursor_commit_id lists history reachable from that sha
        and the since/until window is not sent. An unreachable cursor
        (404/422) yields an empty page.

        Raises:
            RateLimitedError: on 403/429
            TransportError: on any other non-success, network or decoding failure
        """
        params = {"per_page": per_page, "page": page}
        if cursor_commit_id:
            params["sha"] = cursor_commit_id
        else:
            if since is not None:
                params["since"] = format_rfc3339(since)
            if until is not None:
                params["until"] = format_rfc3339(until)

        response = self._get(f"/repos/{repository_name}/commits", params=params)

        if response.status_code in RATE_LIMIT_STATUSES:
            logger.error(
                "Failed to fetch commits for %s; status code: %s",
                repository_name, response.status_code
            )
            raise RateLimitedError("rate limit exceeded")

        if cursor_commit_id and response.status_code in UNREACHABLE_CURSOR_STATUSES:
            # History was rewritten and the cursor sha is gone
            logger.warning(
                "Cursor %s of %s is no longer reachable (status %s)",
                cursor_commit_id, repository_name, response.status_code
            )
            return CommitPage()

        if response.status_code != 200:
            raise TransportError(
                f"failed to fetch commits; status code: {response.status_code}, "
                f"body: {response.text[:200]}"
            )

        body = self._json(response, "commits")
        if not isinstance(body, list):
            raise TransportError("commits response is not a list")

        commits = []
        for item in body:
            details = item.get("commit") or {}
            author = details.get("author") or {}
            commits.append(CommitData(
                commit_id=item.get("sha", ""),
                message=details.get("message", ""),
                author=author.get("name", ""),
                date=parse_github_date(author.get("date")),
                url=item.get("html_url", ""),
                repository_name=repository_name,
            ))

        # requests parses the Link header into response.links
        has_more = "next" in response.links

        return CommitPage(commits=commits, has_more=has_more)
