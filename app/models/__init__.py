"""
SQLAlchemy models for the commit sync service.

This package contains:
- Repository: Tracked repository metadata plus its sync cursor
- Commit: Stored commits, deduplicated by sha

Note: Commits reference their repository by full name, not by row id.
"""

from app.models.commit import Commit
from app.models.repository import Repository

__all__ = ["Commit", "Repository"]
