"""
Initial backfill of a newly registered repository.

Walks the commit history of the persisted date window page by page:

    Fetching(page) -> Fetching(page + 1) -> ... -> Done

The cursor is written after every page, before the next one is
requested, so a restart re-fetches at most one page.
"""

import logging
from contextlib import nullcontext
from datetime import datetime
from typing import Callable, ContextManager, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.errors import CancelledError, RateLimitedError, TransportError
from app.services import db_service
from app.services.github_client import CommitData
from app.services.page_fetch import PageFetcher
from app.services.sync_state import PassOutcome, SyncCursor, as_utc

logger = logging.getLogger(__name__)


def persist_page(session_factory: sessionmaker, commits: list[CommitData]) -> Optional[str]:
    """
    Store every commit of a page.

    Duplicates are ignored; any other failure is logged and the commit
    skipped so one bad row never aborts the page.

    Returns:
        The sha of the last commit that is now stored, or None
    """
    last_stored = None
    with session_factory() as db:
        for commit in commits:
            try:
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
                    commit.commit_id, commit.repository_name, e
                )
                continue

            if not created:
                logger.debug("Already saved commit-id:%s", commit.commit_id)
            last_stored = commit.commit_id
    return last_stored


class BackfillFetcher:
    """Drives the one-time, paged ingestion of one repository's history."""

    def __init__(
        self,
        public_id: str,
        session_factory: sessionmaker,
        page_fetcher: PageFetcher,
        per_page: int,
        default_since: datetime,
        default_until: datetime,
        on_complete: Optional[Callable[[str], None]] = None,
        pass_slot: Optional[Callable[[], ContextManager[bool]]] = None,
    ):
        self.public_id = public_id
        self.session_factory = session_factory
        self.page_fetcher = page_fetcher
        self.per_page = per_page
        self.default_since = default_since
        self.default_until = default_until
        self.on_complete = on_complete
        self.pass_slot = pass_slot or (lambda: nullcontext(True))

    def run(self) -> PassOutcome:
        """Run the backfill to completion, cancellation or a stuck state."""
        try:
            with self.session_factory() as db:
                repository = db_service.get_repository_by_public_id(db, self.public_id)
        except SQLAlchemyError as e:
            return self._give_up(self.public_id, f"backfill could not start: {e}")
        if repository is None:
            logger.warning("Repository %s vanished before its backfill started", self.public_id)
            return PassOutcome.CANCELLED

        name = repository.name
        since = as_utc(repository.backfill_since) or self.default_since
        until = as_utc(repository.backfill_until) or self.default_until
        cursor = SyncCursor(
            page=repository.last_fetched_page or 1,
            commit_id=repository.last_fetched_commit or ""
        )
        page = cursor.next_backfill_page()
        last_commit = cursor.commit_id

        logger.info("Fetching commits for repo: %s, starting from page-%d", name, page)

        while True:
            with self.pass_slot() as acquired:
                if not acquired:
                    logger.warning("Backfill of %s stopped before page %d", name, page)
                    return PassOutcome.CANCELLED

                try:
                    result = self.page_fetcher.fetch(
                        name, since, until, "", page, self.per_page
                    )
                except CancelledError:
                    logger.warning("Backfill of %s stopped before page %d", name, page)
                    return PassOutcome.CANCELLED
                except (RateLimitedError, TransportError) as e:
                    return self._give_up(name, f"backfill stuck at page {page}: {e}")

                try:
                    stored = persist_page(self.session_factory, result.commits)
                    if stored:
                        last_commit = stored

                    with self.session_factory() as db:
                        db_service.update_cursor(
                            db, self.public_id, SyncCursor(page=page, commit_id=last_commit)
                        )
                except SQLAlchemyError as e:
                    return self._give_up(name, f"backfill could not save page {page}: {e}")

            if not result.has_more:
                try:
                    with self.session_factory() as db:
                        db_service.mark_backfill_complete(db, self.public_id)
                except SQLAlchemyError as e:
                    return self._give_up(name, f"backfill could not be completed: {e}")
                logger.info("Backfill of %s complete at page %d", name, page)
                if self.on_complete is not None:
                    self.on_complete(self.public_id)
                return PassOutcome.DONE

            page += 1

    def _give_up(self, name: str, error: str) -> PassOutcome:
        """Mark the repository stuck (best effort) and end the backfill."""
        logger.error("Repository %s is stuck: %s", name, error)
        try:
            with self.session_factory() as db:
                db_service.mark_stuck(db, self.public_id, error)
        except SQLAlchemyError as e:
            logger.error("Could not mark repository %s as stuck: %s", name, e)
        return PassOutcome.STUCK
