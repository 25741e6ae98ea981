"""
Repository model - one row per tracked GitHub repository.

Holds:
- Descriptive metadata copied from GitHub at registration time
- The sync cursor (last_fetched_page, last_fetched_commit)
- The ownership flag (is_fetching) and sync status
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean
from sqlalchemy.sql import func
from app.database import Base


class Repository(Base):
    """
    A repository whose commit history is kept in sync with GitHub.

    is_fetching is true only while a backfill or reconciliation pass
    owns the cursor columns.
    """
    __tablename__ = "repositories"

    id = Column(Integer, primary_key=True)

    # Public identifier (exposed over the API instead of the row id)
    public_id = Column(String(36), unique=True, nullable=False, index=True)

    # GitHub full name, owner/repo
    name = Column(String(255), unique=True, nullable=False, index=True)

    # ============ GITHUB METADATA (copied once) ============
    description = Column(Text)
    url = Column(String(512))
    language = Column(String(100))
    forks_count = Column(Integer, default=0)
    stars_count = Column(Integer, default=0)
    open_issues_count = Column(Integer, default=0)
    watchers_count = Column(Integer, default=0)

    # ============ SYNC CURSOR ============
    last_fetched_page = Column(Integer, nullable=False, default=1)
    last_fetched_commit = Column(String(100), nullable=False, default="")
    is_fetching = Column(Boolean, nullable=False, default=False, index=True)

    # ============ SYNC STATUS ============
    sync_status = Column(String(20), nullable=False, default="backfilling")
    last_error = Column(Text)
    backfill_since = Column(DateTime(timezone=True))
    backfill_until = Column(DateTime(timezone=True))
    backfill_completed_at = Column(DateTime(timezone=True))

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Repository(public_id={self.public_id}, name={self.name}, page={self.last_fetched_page})>"

    @property
    def backfill_complete(self) -> bool:
        return self.backfill_completed_at is not None
