"""
Commit API endpoints.

Read-only views over the stored commits of a tracked repository:
a paged, sortable listing and the most active authors.
"""

from fastapi import APIRouter, Depends, Query, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel
from datetime import datetime
from typing import Optional

from app.database import get_db
from app.models.repository import Repository
from app.services import db_service
from app.services.db_service import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT, PagingQuery


router = APIRouter(prefix="/repos", tags=["Commits"])


# ============ Response Schemas ============

class CommitResponse(BaseModel):
    commit_id: str
    message: Optional[str]
    author: Optional[str]
    date: Optional[datetime]
    url: Optional[str]
    repository_name: str

    class Config:
        from_attributes = True


class PageInfoResponse(BaseModel):
    total_count: int
    page: int
    has_next_page: bool
    count: int


class CommitsListResponse(BaseModel):
    """One page of a repository's commits."""
    repository: str
    commits: list[CommitResponse]
    page_info: PageInfoResponse


class AuthorResponse(BaseModel):
    author: str
    commit_count: int


class TopAuthorsResponse(BaseModel):
    repository: str
    authors: list[AuthorResponse]


def _get_repository_or_404(db: Session, repo_id: str) -> Repository:
    repository = db_service.get_repository_by_public_id(db, repo_id)
    if not repository:
        raise HTTPException(status_code=404, detail="Repository not found")
    return repository


# ============ ENDPOINTS ============

@router.get("/{repo_id}/commits", response_model=CommitsListResponse)
def list_commits(
    repo_id: str,
    page: int = Query(1, description="Page number, starting at 1"),
    limit: int = Query(DEFAULT_PAGE_LIMIT, description=f"Commits per page (max {MAX_PAGE_LIMIT})"),
    sort: str = Query("date", description="Sort by: date, author, commit_id, created_at"),
    direction: str = Query("desc", description="asc or desc"),
    db: Session = Depends(get_db)
):
    """
    List stored commits of a repository.

    Out-of-range values fall back to the defaults instead of failing.

    **Example:**
    ```
    GET /api/v1/repos/{id}/commits?page=2&limit=20&sort=author&direction=asc
    ```
    """
    repository = _get_repository_or_404(db, repo_id)
    paging = PagingQuery.normalize(page=page, limit=limit, sort=sort, direction=direction)
    commits, info = db_service.list_commits(db, repository.name, paging)

    return {
        "repository": repository.name,
        "commits": commits,
        "page_info": {
            "total_count": info.total_count,
            "page": info.page,
            "has_next_page": info.has_next_page,
            "count": info.count,
        },
    }


@router.get("/{repo_id}/top-authors", response_model=TopAuthorsResponse)
def get_top_authors(
    repo_id: str,
    limit: int = Query(10, ge=1, le=MAX_PAGE_LIMIT, description="Number of authors"),
    db: Session = Depends(get_db)
):
    """Authors ranked by number of stored commits, ties broken by name."""
    repository = _get_repository_or_404(db, repo_id)
    authors = db_service.top_authors(db, repository.name, limit)

    return {
        "repository": repository.name,
        "authors": [
            {"author": author or "", "commit_count": count}
            for author, count in authors
        ],
    }
