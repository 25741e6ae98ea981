"""
Repository synchronizer - the entry point of the sync engine.

Responsibilities:
- register: validate, fetch metadata, persist, start the backfill
- resume_all: on startup, give every known repository its task back
- shutdown: stop and join all tasks, clear the is_fetching markers
- repository lookups and sync status for the HTTP layer
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.config import Settings
from app.errors import (
    AlreadyRegisteredError,
    InvalidNameError,
    MetadataUnavailableError,
    NotFoundError,
)
from app.models.repository import Repository
from app.services import db_service
from app.services.backfill import BackfillFetcher
from app.services.page_fetch import PageFetcher, RemoteProvider
from app.services.reconciliation import ReconciliationScheduler
from app.services.supervisor import TaskSupervisor
from app.services.sync_state import RetryPolicy, SyncStatus, TaskRole

logger = logging.getLogger(__name__)


def is_repository_name_valid(name: str) -> bool:
    """owner/repo with exactly one slash and both parts non-empty."""
    if not name or name.count("/") != 1:
        return False
    owner, repo = name.split("/")
    return bool(owner.strip()) and bool(repo.strip()) and name == name.strip()


class RepositorySynchronizer:
    """Registers repositories and owns their background sync tasks."""

    def __init__(
        self,
        provider: RemoteProvider,
        session_factory: sessionmaker,
        settings: Settings,
        supervisor: Optional[TaskSupervisor] = None,
    ):
        self.provider = provider
        self.session_factory = session_factory
        self.settings = settings
        self.supervisor = supervisor or TaskSupervisor(settings.max_active_passes)
        self.retry_policy = RetryPolicy(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )

    # ============ TASK FACTORIES ============

    def _page_fetcher(self) -> PageFetcher:
        return PageFetcher(self.provider, self.supervisor.stop_event, self.retry_policy)

    def make_backfill(self, public_id: str) -> BackfillFetcher:
        return BackfillFetcher(
            public_id=public_id,
            session_factory=self.session_factory,
            page_fetcher=self._page_fetcher(),
            per_page=self.settings.commits_per_page,
            default_since=self.settings.default_start_date,
            default_until=self.settings.default_end_date,
            on_complete=self.start_reconciliation,
            pass_slot=self.supervisor.pass_slot,
        )

    def make_reconciliation(self, public_id: str) -> ReconciliationScheduler:
        return ReconciliationScheduler(
            public_id=public_id,
            session_factory=self.session_factory,
            page_fetcher=self._page_fetcher(),
            per_page=self.settings.commits_per_page,
            interval=self.settings.fetch_interval,
            default_since=self.settings.default_start_date,
            default_until=self.settings.default_end_date,
            pass_slot=self.supervisor.pass_slot,
        )

    def start_backfill(self, public_id: str) -> bool:
        return self.supervisor.spawn(
            public_id, TaskRole.BACKFILL, self.make_backfill(public_id).run
        )

    def start_reconciliation(self, public_id: str) -> bool:
        return self.supervisor.spawn(
            public_id, TaskRole.RECONCILE, self.make_reconciliation(public_id).run
        )

    # ============ REGISTRATION ============

    def register(self, name: str) -> Repository:
        """
        Start tracking a repository.

        Raises:
            InvalidNameError: name is not owner/repo
            AlreadyRegisteredError: a repository with this name exists
            RateLimitedError: GitHub refused the metadata call
            MetadataUnavailableError: any other non-success from GitHub
            TransportError: network or decoding failure

        Returns:
            The persisted repository; its backfill runs in the background
        """
        if not is_repository_name_valid(name):
            raise InvalidNameError(name)

        with self.session_factory() as db:
            if db_service.get_repository_by_name(db, name) is not None:
                raise AlreadyRegisteredError(name)

        try:
            metadata = self.provider.fetch_metadata(name)
        except NotFoundError as e:
            raise MetadataUnavailableError(
                "repository metadata not fetched, ensure repository is valid and public"
            ) from e

        repository = Repository(
            public_id=str(uuid.uuid4()),
            name=metadata.name or name,
            description=metadata.description,
            url=metadata.url,
            language=metadata.language,
            forks_count=metadata.forks_count,
            stars_count=metadata.stars_count,
            open_issues_count=metadata.open_issues_count,
            watchers_count=metadata.watchers_count,
            last_fetched_page=1,
            last_fetched_commit="",
            is_fetching=True,
            sync_status=SyncStatus.BACKFILLING.value,
            backfill_since=self.settings.default_start_date,
            backfill_until=self.settings.default_end_date,
        )

        with self.session_factory() as db:
            # GitHub may canonicalize the name (case, renames)
            if repository.name != name and db_service.get_repository_by_name(db, repository.name):
                raise AlreadyRegisteredError(repository.name)
            try:
                repository = db_service.save_repository(db, repository)
            except IntegrityError as e:
                # Another registration of the same name won the insert
                db.rollback()
                raise AlreadyRegisteredError(repository.name) from e

        logger.info("Registered repository %s as %s", repository.name, repository.public_id)
        self.start_backfill(repository.public_id)
        return repository

    def seed_default_repository(self) -> Optional[Repository]:
        """Register the configured default repository, if any and not yet known."""
        name = self.settings.default_repository
        if not name:
            return None
        try:
            repository = self.register(name)
        except AlreadyRegisteredError:
            logger.info("Default repository %s already registered", name)
            return None
        logger.info("Successfully seeded default repository: %s", repository.name)
        return repository

    # ============ LIFECYCLE ============

    def resume_all(self) -> int:
        """
        Give every known repository its background task back.

        Unfinished backfills resume from their cursor; finished ones go
        to periodic reconciliation. Returns the number of tasks started.
        Meant to run once at startup, before any task of this process exists.
        """
        logger.info("Resume fetching started")
        with self.session_factory() as db:
            # Nothing in this process owns a repository yet
            cleared = db_service.set_fetching_for_all(db, False)
            if cleared:
                logger.warning("Cleared %d stale is_fetching markers", cleared)
            repositories = db_service.list_repositories(db)

        started = 0
        for repository in repositories:
            if repository.backfill_complete:
                started += int(self.start_reconciliation(repository.public_id))
                continue

            with self.session_factory() as db:
                if not db_service.claim_fetching(db, repository.public_id):
                    continue
                db_service.mark_backfilling(db, repository.public_id)
            logger.info(
                "Resuming backfill of %s from page %d",
                repository.name, repository.last_fetched_page
            )
            if self.start_backfill(repository.public_id):
                started += 1
            else:
                with self.session_factory() as db:
                    db_service.release_fetching(db, repository.public_id)

        logger.info("Resumed %d of %d repositories", started, len(repositories))
        return started

    def shutdown(self, timeout: float = 10.0) -> None:
        """Cancel and join every task, then clear all is_fetching flags."""
        logger.warning("Sync engine is shutting down...")
        self.supervisor.shutdown(timeout)
        try:
            with self.session_factory() as db:
                db_service.set_fetching_for_all(db, False)
        except SQLAlchemyError as e:
            logger.error("Error updating is_fetching to false: %s", e)

    # ============ QUERIES ============

    def get_repository(self, public_id: str) -> Repository:
        with self.session_factory() as db:
            repository = db_service.get_repository_by_public_id(db, public_id)
        if repository is None:
            raise NotFoundError(f"no repository with id '{public_id}'")
        return repository

    def sync_status(self, public_id: str) -> dict:
        """Cursor, ownership flag, status and live tasks of one repository."""
        repository = self.get_repository(public_id)
        return {
            "id": repository.public_id,
            "name": repository.name,
            "sync_status": repository.sync_status,
            "is_fetching": repository.is_fetching,
            "last_fetched_page": repository.last_fetched_page,
            "last_fetched_commit": repository.last_fetched_commit,
            "last_error": repository.last_error,
            "backfill_completed_at": repository.backfill_completed_at,
            "active_tasks": [role.value for role in self.supervisor.running_roles(public_id)],
            "rate_limit": self.provider.tracker.snapshot(),
        }
