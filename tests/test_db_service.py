from datetime import datetime, timezone

from app.models.commit import Commit
from app.services import db_service
from app.services.db_service import PagingQuery
from app.services.sync_state import SyncCursor, SyncStatus


def store(db, sha, author="alice", day=1, repository_name="octo/hello"):
    return db_service.save_commit(
        db=db,
        commit_id=sha,
        repository_name=repository_name,
        message=f"commit {sha}",
        author=author,
        date=datetime(2024, 3, day, tzinfo=timezone.utc),
        url=f"https://github.com/{repository_name}/commit/{sha}",
    )


# ============ COMMITS ============

def test_save_commit_is_idempotent(db):
    first, created = store(db, "sha1")
    second, created_again = store(db, "sha1")

    assert created is True
    assert created_again is False
    assert first.id == second.id
    assert db.query(Commit).filter(Commit.commit_id == "sha1").count() == 1


def test_commit_exists(db):
    assert db_service.commit_exists(db, "sha1") is False
    store(db, "sha1")
    assert db_service.commit_exists(db, "sha1") is True


def test_list_commits_pages_newest_first(db):
    for day in range(1, 6):
        store(db, f"sha{day}", day=day)
    store(db, "other", repository_name="octo/other")

    commits, info = db_service.list_commits(db, "octo/hello", PagingQuery(page=1, limit=2))

    assert [c.commit_id for c in commits] == ["sha5", "sha4"]
    assert info.total_count == 5
    assert info.count == 2
    assert info.has_next_page is True

    commits, info = db_service.list_commits(db, "octo/hello", PagingQuery(page=3, limit=2))
    assert [c.commit_id for c in commits] == ["sha1"]
    assert info.has_next_page is False


def test_list_commits_sort_by_author_ascending(db):
    store(db, "sha1", author="carol")
    store(db, "sha2", author="alice")
    store(db, "sha3", author="bob")

    paging = PagingQuery.normalize(sort="author", direction="ASC")
    commits, _ = db_service.list_commits(db, "octo/hello", paging)

    assert [c.author for c in commits] == ["alice", "bob", "carol"]


def test_paging_normalize_falls_back_to_defaults():
    paging = PagingQuery.normalize(page=0, limit=-3, sort="message; drop", direction="sideways")
    assert (paging.page, paging.limit, paging.sort, paging.direction) == (1, 10, "date", "desc")
    assert PagingQuery.normalize(limit=1000).limit == 100
    assert PagingQuery.normalize(page=3, limit=20).offset == 40


def test_top_authors_ranks_by_count_then_name(db):
    store(db, "sha1", author="bob")
    store(db, "sha2", author="alice")
    store(db, "sha3", author="bob")
    store(db, "sha4", author="carol")
    store(db, "sha5", author="alice")
    store(db, "sha6", author="dave")

    assert db_service.top_authors(db, "octo/hello", limit=3) == [
        ("alice", 2),
        ("bob", 2),
        ("carol", 1),
    ]


# ============ REPOSITORIES ============

def test_cursor_round_trip(db, add_repository):
    repository = add_repository()

    assert db_service.get_cursor(db, repository.public_id) == SyncCursor()
    assert db_service.update_cursor(db, repository.public_id, SyncCursor(3, "abc")) is True
    assert db_service.get_cursor(db, repository.public_id) == SyncCursor(3, "abc")


def test_cursor_of_unknown_repository(db):
    assert db_service.get_cursor(db, "nope") is None
    assert db_service.update_cursor(db, "nope", SyncCursor()) is False


def test_claim_fetching_is_exclusive(session_factory, add_repository, load_repository):
    repository = add_repository()

    with session_factory() as db:
        assert db_service.claim_fetching(db, repository.public_id) is True
    with session_factory() as db:
        assert db_service.claim_fetching(db, repository.public_id) is False
    assert load_repository(repository.public_id).is_fetching is True

    with session_factory() as db:
        db_service.release_fetching(db, repository.public_id)
        assert db_service.claim_fetching(db, repository.public_id) is True


def test_set_fetching_for_all_reports_changed_rows(db, add_repository):
    add_repository("octo/a", is_fetching=True)
    add_repository("octo/b", is_fetching=True)
    add_repository("octo/c")

    assert db_service.set_fetching_for_all(db, False) == 2
    assert db_service.set_fetching_for_all(db, False) == 0


def test_status_transitions(session_factory, add_repository, load_repository):
    repository = add_repository(is_fetching=True)
    public_id = repository.public_id

    with session_factory() as db:
        db_service.mark_stuck(db, public_id, "backfill stuck at page 2")
    stuck = load_repository(public_id)
    assert stuck.sync_status == SyncStatus.STUCK.value
    assert stuck.is_fetching is False
    assert stuck.last_error == "backfill stuck at page 2"

    with session_factory() as db:
        db_service.mark_backfilling(db, public_id)
        db_service.mark_backfill_complete(db, public_id)
    done = load_repository(public_id)
    assert done.sync_status == SyncStatus.SYNCED.value
    assert done.last_error is None
    assert done.backfill_complete is True


def test_list_repositories_in_registration_order(db, add_repository):
    add_repository("octo/first")
    add_repository("octo/second")
    assert [r.name for r in db_service.list_repositories(db)] == ["octo/first", "octo/second"]
