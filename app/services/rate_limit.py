"""
GitHub rate-limit tracking.

GitHub reports its budget on every response through the
X-RateLimit-Limit / -Remaining / -Reset / -Used headers. The tracker
keeps the last values seen and turns them into a wait duration once
the budget is spent.
"""

import logging
import threading
import time
from typing import Mapping, Optional

logger = logging.getLogger(__name__)


def _header_int(headers: Mapping[str, str], name: str) -> Optional[int]:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring malformed %s header: %r", name, value)
        return None


class RateLimitTracker:
    """
    Last-observed GitHub rate-limit state, shared by all sync threads.

    remaining == 0 with a future reset is a soft throttle that callers
    sleep through; an outright 403 is a separate, hard error.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.limit: Optional[int] = None
        self.remaining: Optional[int] = None
        self.reset_epoch: Optional[int] = None
        self.used: Optional[int] = None

    def update(self, headers: Mapping[str, str]) -> None:
        """Record the rate-limit headers of one response (case-insensitive mapping)."""
        limit = _header_int(headers, "X-RateLimit-Limit")
        remaining = _header_int(headers, "X-RateLimit-Remaining")
        reset = _header_int(headers, "X-RateLimit-Reset")
        used = _header_int(headers, "X-RateLimit-Used")

        with self._lock:
            if limit is not None:
                self.limit = limit
            if remaining is not None:
                self.remaining = remaining
            if reset is not None:
                self.reset_epoch = reset
            if used is not None:
                self.used = used

        if remaining is not None:
            logger.debug("Rate limit remaining: %s/%s", remaining, self.limit)
            if remaining == 0:
                logger.warning(
                    "Rate limit exhausted, resets at epoch %s", self.reset_epoch
                )

    def wait_seconds(self, now: Optional[float] = None) -> float:
        """
        Seconds to wait before the next request.

        Zero unless the budget is exhausted; then reset_epoch - now,
        clamped to zero when the reset is already in the past.
        """
        current = time.time() if now is None else now
        with self._lock:
            if self.remaining is None or self.remaining > 0 or self.reset_epoch is None:
                return 0.0
            return max(0.0, self.reset_epoch - current)

    def seconds_until_reset(self, now: Optional[float] = None) -> float:
        """Seconds until the reported reset, regardless of the remaining budget."""
        current = time.time() if now is None else now
        with self._lock:
            if self.reset_epoch is None:
                return 0.0
            return max(0.0, self.reset_epoch - current)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "limit": self.limit,
                "remaining": self.remaining,
                "reset_epoch": self.reset_epoch,
                "used": self.used,
            }
