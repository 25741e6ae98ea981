"""
Shared state types for the backfill and reconciliation loops.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


class SyncStatus(str, enum.Enum):
    """Lifecycle of a repository's synchronization."""
    BACKFILLING = "backfilling"
    SYNCED = "synced"
    STUCK = "stuck"


class TaskRole(str, enum.Enum):
    """Kind of background task owning a repository."""
    BACKFILL = "backfill"
    RECONCILE = "reconcile"


class PassOutcome(str, enum.Enum):
    """How a backfill run or a reconciliation tick ended."""
    DONE = "done"
    EMPTY = "empty"  # reconciliation got zero commits, cursor was reset
    SKIPPED = "skipped"  # another task owned the repository
    CANCELLED = "cancelled"
    FAILED = "failed"  # retries exhausted for this tick
    STUCK = "stuck"  # backfill gave up, terminal


@dataclass(frozen=True)
class SyncCursor:
    """
    Persisted fetch progress: (page, last commit id).

    An empty commit_id means no cursor yet.
    """
    page: int = 1
    commit_id: str = ""

    @property
    def has_commit(self) -> bool:
        return bool(self.commit_id)

    def next_backfill_page(self) -> int:
        """
        First page a (re)started backfill should request.

        A non-empty commit id means `page` was fully persisted already.
        """
        return self.page + 1 if self.has_commit else self.page

    @classmethod
    def reset(cls) -> "SyncCursor":
        return cls(page=1, commit_id="")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for provider failures."""
    max_retries: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0

    def delay(self, attempt: int) -> float:
        """Delay in seconds before retry number `attempt` (1-based)."""
        if attempt < 1:
            return 0.0
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))

    def exhausted(self, attempt: int) -> bool:
        return attempt > self.max_retries


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as SQLite returns them) as UTC."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
