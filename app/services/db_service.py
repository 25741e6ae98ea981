"""
Database service layer for the commit sync service.

This module provides the two stores the sync engine talks to:
- Commit store: idempotent save, existence check, paged listing, top authors
- Repository store: metadata CRUD plus cursor and ownership-flag updates

The ownership flag (is_fetching) is changed with conditional UPDATEs
so two tasks can never both believe they own a repository.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.commit import Commit
from app.models.repository import Repository
from app.services.sync_state import SyncCursor, SyncStatus, utcnow

DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 100
SORTABLE_COLUMNS = {
    "date": Commit.date,
    "author": Commit.author,
    "commit_id": Commit.commit_id,
    "created_at": Commit.created_at,
}


@dataclass
class PagingQuery:
    """Paging request for commit listings (values already normalized)."""
    page: int = 1
    limit: int = DEFAULT_PAGE_LIMIT
    sort: str = "date"
    direction: str = "desc"

    @classmethod
    def normalize(
        cls,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        sort: Optional[str] = None,
        direction: Optional[str] = None,
    ) -> "PagingQuery":
        """Clamp and default raw query values."""
        page = page if page and page > 0 else 1
        limit = limit if limit and limit > 0 else DEFAULT_PAGE_LIMIT
        limit = min(limit, MAX_PAGE_LIMIT)
        sort = sort if sort in SORTABLE_COLUMNS else "date"
        direction = direction.lower() if direction else "desc"
        if direction not in ("asc", "desc"):
            direction = "desc"
        return cls(page=page, limit=limit, sort=sort, direction=direction)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class PagingInfo:
    """Paging metadata returned alongside a commit page."""
    total_count: int
    page: int
    has_next_page: bool
    count: int


# ============ COMMIT OPERATIONS ============

def save_commit(
    db: Session,
    commit_id: str,
    repository_name: str,
    message: str = "",
    author: str = "",
    date: datetime = None,
    url: str = ""
) -> tuple[Commit, bool]:
    """
    Save a commit, treating an existing commit_id as a no-op.

    Args:
        db: Database session
        commit_id: Git sha (unique)
        repository_name: Owning repository full name
        message: Commit message
        author: Author display name
        date: Author date
        url: Commit html url

    Returns:
        (commit, created): the stored row and whether this call inserted it
    """
    # Check if commit already exists (deduplication)
    existing = db.query(Commit).filter(Commit.commit_id == commit_id).first()
    if existing:
        return existing, False

    commit = Commit(
        commit_id=commit_id,
        repository_name=repository_name,
        message=message,
        author=author,
        date=date,
        url=url
    )

    db.add(commit)

    try:
        db.commit()
        db.refresh(commit)
        return commit, True
    except IntegrityError:
        # Race condition - another task stored it first
        db.rollback()
        existing = db.query(Commit).filter(Commit.commit_id == commit_id).first()
        if existing is None:
            raise
        return existing, False


def commit_exists(db: Session, commit_id: str) -> bool:
    """Check whether a commit with this sha is already stored."""
    return db.query(
        db.query(Commit.id).filter(Commit.commit_id == commit_id).exists()
    ).scalar()


def list_commits(
    db: Session,
    repository_name: str,
    paging: PagingQuery
) -> tuple[list[Commit], PagingInfo]:
    """
    Get one page of a repository's commits.

    Returns:
        (commits, paging_info) where paging_info.total_count covers all pages
    """
    total = db.query(func.count(Commit.id)).filter(
        Commit.repository_name == repository_name
    ).scalar()

    column = SORTABLE_COLUMNS[paging.sort]
    ordering = column.asc() if paging.direction == "asc" else column.desc()

    commits = db.query(Commit).filter(
        Commit.repository_name == repository_name
    ).order_by(ordering, Commit.id).offset(paging.offset).limit(paging.limit).all()

    info = PagingInfo(
        total_count=total,
        page=paging.page,
        has_next_page=paging.offset + len(commits) < total,
        count=len(commits)
    )
    return commits, info


def top_authors(db: Session, repository_name: str, limit: int = 10) -> list[tuple[str, int]]:
    """
    Rank commit authors of a repository by commit count.

    Ties are ordered by author name so results are stable.
    """
    commit_count = func.count(Commit.id).label("commit_count")
    rows = db.query(Commit.author, commit_count).filter(
        Commit.repository_name == repository_name
    ).group_by(Commit.author).order_by(
        commit_count.desc(), Commit.author.asc()
    ).limit(limit).all()
    return [(author, count) for author, count in rows]


# ============ REPOSITORY OPERATIONS ============

def save_repository(db: Session, repository: Repository) -> Repository:
    """Insert a new repository row and return it refreshed."""
    db.add(repository)
    db.commit()
    db.refresh(repository)
    return repository


def get_repository_by_public_id(db: Session, public_id: str) -> Optional[Repository]:
    return db.query(Repository).filter(Repository.public_id == public_id).first()


def get_repository_by_name(db: Session, name: str) -> Optional[Repository]:
    return db.query(Repository).filter(Repository.name == name).first()


def list_repositories(db: Session) -> list[Repository]:
    return db.query(Repository).order_by(Repository.created_at, Repository.id).all()


def get_cursor(db: Session, public_id: str) -> Optional[SyncCursor]:
    repository = get_repository_by_public_id(db, public_id)
    if repository is None:
        return None
    return SyncCursor(
        page=repository.last_fetched_page or 1,
        commit_id=repository.last_fetched_commit or ""
    )


def update_cursor(db: Session, public_id: str, cursor: SyncCursor) -> bool:
    """Persist the cursor of one repository. Returns False if the row is gone."""
    result = db.execute(
        update(Repository)
        .where(Repository.public_id == public_id)
        .values(
            last_fetched_page=cursor.page,
            last_fetched_commit=cursor.commit_id,
            updated_at=utcnow()
        )
    )
    db.commit()
    return result.rowcount == 1


def claim_fetching(db: Session, public_id: str) -> bool:
    """
    Take ownership of a repository's cursor.

    Compare-and-swap on is_fetching: succeeds only if nobody owns it.
    """
    result = db.execute(
        update(Repository)
        .where(Repository.public_id == public_id, Repository.is_fetching.is_(False))
        .values(is_fetching=True, updated_at=utcnow())
    )
    db.commit()
    return result.rowcount == 1


def release_fetching(db: Session, public_id: str) -> None:
    db.execute(
        update(Repository)
        .where(Repository.public_id == public_id)
        .values(is_fetching=False, updated_at=utcnow())
    )
    db.commit()


def set_fetching_for_all(db: Session, is_fetching: bool) -> int:
    """Bulk-set the ownership flag (startup cleanup and shutdown)."""
    result = db.execute(
        update(Repository)
        .where(Repository.is_fetching.is_(not is_fetching))
        .values(is_fetching=is_fetching)
    )
    db.commit()
    return result.rowcount


def mark_backfill_complete(db: Session, public_id: str) -> None:
    now = utcnow()
    db.execute(
        update(Repository)
        .where(Repository.public_id == public_id)
        .values(
            is_fetching=False,
            sync_status=SyncStatus.SYNCED.value,
            last_error=None,
            backfill_completed_at=now,
            updated_at=now
        )
    )
    db.commit()


def mark_stuck(db: Session, public_id: str, error: str) -> None:
    db.execute(
        update(Repository)
        .where(Repository.public_id == public_id)
        .values(
            is_fetching=False,
            sync_status=SyncStatus.STUCK.value,
            last_error=error,
            updated_at=utcnow()
        )
    )
    db.commit()


def mark_backfilling(db: Session, public_id: str) -> None:
    db.execute(
        update(Repository)
        .where(Repository.public_id == public_id)
        .values(sync_status=SyncStatus.BACKFILLING.value, last_error=None, updated_at=utcnow())
    )
    db.commit()


def record_error(db: Session, public_id: str, error: Optional[str]) -> None:
    """Store (or clear, with None) the last background error of a repository."""
    db.execute(
        update(Repository)
        .where(Repository.public_id == public_id)
        .values(last_error=error, updated_at=utcnow())
    )
    db.commit()
