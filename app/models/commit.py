"""
Commit model for storing fetched repository commits.

Deduplication relies on the unique commit_id (the git sha):
a commit is written once and never modified afterwards.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, Index
from sqlalchemy.sql import func
from app.database import Base


class Commit(Base):
    """A single commit of a tracked repository."""
    __tablename__ = "commits"

    id = Column(Integer, primary_key=True)

    # Git sha (unique - prevents duplicates)
    commit_id = Column(String(100), unique=True, nullable=False, index=True)

    message = Column(Text)
    author = Column(String(255), index=True)
    date = Column(DateTime(timezone=True))  # Author date
    url = Column(String(512))

    # Owning repository, referenced by full name
    repository_name = Column(String(255), nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_commits_repo_date", "repository_name", "date"),
    )

    def __repr__(self):
        return f"<Commit(commit_id={self.commit_id}, repo={self.repository_name})>"
