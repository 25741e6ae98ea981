"""
Shared pytest fixtures.

Every test gets its own file-backed SQLite database and a scripted
stand-in for the GitHub client, so nothing touches the network.
"""

import os

# Must be set before app.database builds its module-level engine
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"

import threading
import uuid
from datetime import datetime, timedelta, timezone

import pytest

import app.models  # noqa: F401  (registers the tables on Base)
from app.config import Settings
from app.database import Base, make_engine, make_session_factory
from app.models.repository import Repository
from app.services.github_client import CommitData, CommitPage, RepositoryMetadata
from app.services.page_fetch import PageFetcher
from app.services.rate_limit import RateLimitTracker
from app.services.supervisor import TaskSupervisor
from app.services.sync_state import RetryPolicy, SyncStatus

WINDOW_START = datetime(2024, 1, 1, tzinfo=timezone.utc)
WINDOW_END = datetime(2024, 11, 1, tzinfo=timezone.utc)


class FakeProvider:
    """
    Scripted GitHub provider.

    pages maps a page number to a CommitPage or an exception to raise;
    errors is a queue of exceptions raised before any page is served.
    """

    def __init__(self, pages=None, metadata_error=None):
        self.tracker = RateLimitTracker()
        self.pages = dict(pages or {})
        self.errors = []
        self.metadata_error = metadata_error
        self.metadata_calls = []
        self.calls = []

    def fetch_metadata(self, repository_name):
        self.metadata_calls.append(repository_name)
        if self.metadata_error is not None:
            raise self.metadata_error
        return RepositoryMetadata(
            name=repository_name,
            description="",
            url=f"https://github.com/{repository_name}",
            language="Go",
            forks_count=0,
            stars_count=0,
            open_issues_count=0,
            watchers_count=0,
        )

    def fetch_commits(self, repository_name, since, until, cursor_commit_id, page, per_page):
        self.calls.append({
            "name": repository_name,
            "since": since,
            "until": until,
            "cursor": cursor_commit_id,
            "page": page,
            "per_page": per_page,
        })
        if self.errors:
            raise self.errors.pop(0)
        result = self.pages.get(page, CommitPage())
        if isinstance(result, Exception):
            raise result
        return result

    @property
    def requested_pages(self):
        return [call["page"] for call in self.calls]


class RecordingSupervisor(TaskSupervisor):
    """Supervisor that records spawn requests instead of starting threads."""

    def __init__(self, max_active_passes=4):
        super().__init__(max_active_passes)
        self.spawned = []

    def spawn(self, public_id, role, target):
        if self.stopping:
            return False
        self.spawned.append((public_id, role))
        return True


def make_commit(sha, repository_name="octo/hello", author="alice", day=1):
    return CommitData(
        commit_id=sha,
        message=f"commit {sha}",
        author=author,
        date=datetime(2024, 3, day, tzinfo=timezone.utc),
        url=f"https://github.com/{repository_name}/commit/{sha}",
        repository_name=repository_name,
    )


def make_page(shas, has_more=False, repository_name="octo/hello"):
    return CommitPage(
        commits=[make_commit(sha, repository_name) for sha in shas],
        has_more=has_more,
    )


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'sync.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def settings():
    return Settings(
        app_env="test",
        fetch_interval=timedelta(hours=1),
        commits_per_page=2,
        default_start_date=WINDOW_START,
        default_end_date=WINDOW_END,
        max_active_passes=2,
        max_retries=2,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
    )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def stop_event():
    return threading.Event()


@pytest.fixture
def page_fetcher(provider, stop_event):
    return PageFetcher(provider, stop_event, RetryPolicy(max_retries=2, base_delay=0, max_delay=0))


@pytest.fixture
def add_repository(session_factory):
    """Insert a repository row directly, bypassing registration."""

    def _add(name="octo/hello", **overrides):
        values = {
            "public_id": str(uuid.uuid4()),
            "name": name,
            "url": f"https://github.com/{name}",
            "last_fetched_page": 1,
            "last_fetched_commit": "",
            "is_fetching": False,
            "sync_status": SyncStatus.BACKFILLING.value,
            "backfill_since": WINDOW_START,
            "backfill_until": WINDOW_END,
        }
        values.update(overrides)
        repository = Repository(**values)
        with session_factory() as session:
            session.add(repository)
            session.commit()
            session.refresh(repository)
        return repository

    return _add


@pytest.fixture
def load_repository(session_factory):
    """Re-read a repository row in a fresh session."""

    def _load(public_id):
        with session_factory() as session:
            return session.query(Repository).filter(Repository.public_id == public_id).one()

    return _load
