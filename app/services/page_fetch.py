"""
Page fetching with rate-limit waits and bounded retry.

Used by both the backfill and the reconciliation loops. Every wait
goes through the shared stop event so shutdown interrupts it.
"""

import logging
import threading
from datetime import datetime
from typing import Optional, Protocol

from app.errors import CancelledError, RateLimitedError, TransportError
from app.services.github_client import CommitPage, RepositoryMetadata
from app.services.rate_limit import RateLimitTracker
from app.services.sync_state import RetryPolicy

logger = logging.getLogger(__name__)


class RemoteProvider(Protocol):
    """What the engine needs from GitHub (GitHubClient implements it)."""

    tracker: RateLimitTracker

    def fetch_metadata(self, repository_name: str) -> RepositoryMetadata:
        ...

    def fetch_commits(
        self,
        repository_name: str,
        since: Optional[datetime],
        until: Optional[datetime],
        cursor_commit_id: str,
        page: int,
        per_page: int,
    ) -> CommitPage:
        ...


class PageFetcher:
    """Fetch one page, sleeping through throttles and retrying failures."""

    def __init__(
        self,
        provider: RemoteProvider,
        stop_event: threading.Event,
        retry_policy: RetryPolicy,
    ):
        self.provider = provider
        self.stop_event = stop_event
        self.retry_policy = retry_policy

    def wait(self, seconds: float) -> None:
        """Sleep, raising CancelledError if the stop event fires first."""
        if seconds > 0:
            if self.stop_event.wait(seconds):
                raise CancelledError("stop requested while waiting")
        elif self.stop_event.is_set():
            raise CancelledError("stop requested")

    def fetch(
        self,
        repository_name: str,
        since: Optional[datetime],
        until: Optional[datetime],
        cursor_commit_id: str,
        page: int,
        per_page: int,
    ) -> CommitPage:
        """
        Fetch one page of commits for repository_name.

        Raises:
            CancelledError: stop requested before or between attempts
            RateLimitedError / TransportError: the last failure once
                retries are exhausted
        """
        attempt = 0
        while True:
            if self.stop_event.is_set():
                raise CancelledError("stop requested")

            # Soft throttle: budget spent, wait for the reset
            throttle = self.provider.tracker.wait_seconds()
            if throttle > 0:
                logger.info(
                    "Rate limit exhausted, waiting %.0fs before fetching %s page %d",
                    throttle, repository_name, page
                )
                self.wait(throttle)

            try:
                return self.provider.fetch_commits(
                    repository_name, since, until, cursor_commit_id, page, per_page
                )
            except (RateLimitedError, TransportError) as e:
                attempt += 1
                if self.retry_policy.exhausted(attempt):
                    logger.error(
                        "Giving up on %s page %d after %d attempts: %s",
                        repository_name, page, attempt, e
                    )
                    raise

                delay = self.retry_policy.delay(attempt)
                if isinstance(e, RateLimitedError):
                    delay = max(delay, self.provider.tracker.seconds_until_reset())
                logger.warning(
                    "Failed to fetch commits for %s page %d (attempt %d/%d): %s; retrying in %.1fs",
                    repository_name, page, attempt, self.retry_policy.max_retries, e, delay
                )
                self.wait(delay)
