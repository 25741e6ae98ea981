"""
Periodic reconciliation of an already backfilled repository.

One long-lived task per repository. Each tick claims the repository
(compare-and-swap on is_fetching), pages forward from the persisted
cursor and stores commits it has not seen yet, then releases it.
"""

import logging
from contextlib import nullcontext
from datetime import datetime, timedelta
from typing import Callable, ContextManager, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.errors import CancelledError, RateLimitedError, TransportError
from app.services import db_service
from app.services.page_fetch import PageFetcher
from app.services.sync_state import PassOutcome, SyncCursor, utcnow

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """Runs IncrementalFetch for one repository on a fixed interval."""

    def __init__(
        self,
        public_id: str,
        session_factory: sessionmaker,
        page_fetcher: PageFetcher,
        per_page: int,
        interval: timedelta,
        default_since: datetime,
        default_until: datetime,
        pass_slot: Optional[Callable[[], ContextManager[bool]]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.public_id = public_id
        self.session_factory = session_factory
        self.page_fetcher = page_fetcher
        self.per_page = per_page
        self.interval = interval
        self.default_since = default_since
        self.default_until = default_until
        self.pass_slot = pass_slot or (lambda: nullcontext(True))
        self.clock = clock

    @property
    def stop_event(self):
        return self.page_fetcher.stop_event

    def run(self) -> None:
        """Tick every interval until the stop event fires or the repository is gone."""
        logger.info(
            "Commit monitoring started for %s every %ss",
            self.public_id, int(self.interval.total_seconds())
        )
        while not self.stop_event.wait(self.interval.total_seconds()):
            with self.pass_slot() as acquired:
                if not acquired:
                    break
                try:
                    outcome = self.run_tick()
                except SQLAlchemyError as e:
                    # Storage hiccup: log and try again next tick
                    logger.error("Reconciliation tick for %s failed: %s", self.public_id, e)
                    continue

            if outcome is None:
                return
            if outcome == PassOutcome.CANCELLED:
                break

        logger.warning("Commit monitoring for %s stopped", self.public_id)

    def run_tick(self) -> Optional[PassOutcome]:
        """
        Run one reconciliation tick.

        Returns:
            The tick outcome, or None if the repository no longer exists
        """
        with self.session_factory() as db:
            repository = db_service.get_repository_by_public_id(db, self.public_id)
            if repository is None:
                logger.warning("Repository %s no longer exists, stopping monitoring", self.public_id)
                return None

            # A backfill or another pass owns the cursor
            if repository.is_fetching or not db_service.claim_fetching(db, self.public_id):
                logger.info("Repository %s is being fetched, skipping this tick", repository.name)
                return PassOutcome.SKIPPED

        try:
            return self._incremental_fetch(repository.name)
        finally:
            with self.session_factory() as db:
                db_service.release_fetching(db, self.public_id)

    def _incremental_fetch(self, name: str) -> PassOutcome:
        with self.session_factory() as db:
            cursor = db_service.get_cursor(db, self.public_id) or SyncCursor()

        page = cursor.page
        last_commit = cursor.commit_id
        until = self.default_until

        logger.info("Reconciling commits for repo: %s from page %d", name, page)

        while True:
            try:
                result = self.page_fetcher.fetch(
                    name, self.default_since, until, last_commit, page, self.per_page
                )
            except CancelledError:
                logger.warning("Reconciliation of %s stopped", name)
                return PassOutcome.CANCELLED
            except (RateLimitedError, TransportError) as e:
                logger.error("Error fetching commits for repo %s: %s", name, e)
                with self.session_factory() as db:
                    db_service.record_error(db, self.public_id, f"reconciliation failed: {e}")
                return PassOutcome.FAILED

            if not result.commits:
                # Cursor may be unreachable after a history rewrite
                logger.warning("No new commits for repo %s, resetting cursor", name)
                with self.session_factory() as db:
                    db_service.update_cursor(db, self.public_id, SyncCursor.reset())
                return PassOutcome.EMPTY

            inserted = 0
            with self.session_factory() as db:
                for commit in result.commits:
                    try:
                        if db_service.commit_exists(db, commit.commit_id):
                            last_commit = commit.commit_id
                            continue
                        _, created = db_service.save_commit(
                            db=db,
                            commit_id=commit.commit_id,
                            repository_name=commit.repository_name,
                            message=commit.message,
                            author=commit.author,
                            date=commit.date,
                            url=commit.url
                        )
                    except SQLAlchemyError as e:
                        db.rollback()
                        logger.error(
                            "Error saving commit-id:%s for repo %s: %s",
                            commit.commit_id, name, e
                        )
                        continue
                    if created:
                        inserted += 1
                    last_commit = commit.commit_id

                db_service.update_cursor(
                    db, self.public_id, SyncCursor(page=page, commit_id=last_commit)
                )
                db_service.record_error(db, self.public_id, None)

            logger.info("Stored %d new commits for %s from page %d", inserted, name, page)

            if not result.has_more:
                return PassOutcome.DONE

            if self.stop_event.is_set():
                logger.warning("Reconciliation of %s stopped after page %d", name, page)
                return PassOutcome.CANCELLED

            page += 1
            until = self.clock()
