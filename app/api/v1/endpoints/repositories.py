"""
Repository API endpoints.

Register a GitHub repository for tracking, list what is tracked and
inspect the sync state of one repository. Registration fetches the
repository metadata synchronously; the commit backfill then runs in
the background.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional

from app.api.deps import get_synchronizer
from app.database import get_db
from app.errors import (
    AlreadyRegisteredError,
    InvalidNameError,
    MetadataUnavailableError,
    NotFoundError,
    RateLimitedError,
    SyncError,
    TransportError,
)
from app.services import db_service
from app.services.synchronizer import RepositorySynchronizer


router = APIRouter(tags=["Repositories"])


# ============ Request / Response Schemas ============

class RegisterRepositoryRequest(BaseModel):
    """Body of POST /repository."""
    name: str = Field(..., description="Full repository name, owner/repo")


class RepositoryResponse(BaseModel):
    """A tracked repository with its GitHub metadata."""
    id: str = Field(validation_alias="public_id")
    name: str
    description: Optional[str]
    url: Optional[str]
    language: Optional[str]
    forks_count: Optional[int]
    stars_count: Optional[int]
    open_issues_count: Optional[int]
    watchers_count: Optional[int]

    # Sync state
    sync_status: str
    last_fetched_page: int
    backfill_completed_at: Optional[datetime]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class RateLimitResponse(BaseModel):
    limit: Optional[int]
    remaining: Optional[int]
    reset_epoch: Optional[float]
    used: Optional[int]


class SyncStatusResponse(BaseModel):
    """Cursor, ownership flag and live background tasks of one repository."""
    id: str
    name: str
    sync_status: str
    is_fetching: bool
    last_fetched_page: int
    last_fetched_commit: str
    last_error: Optional[str]
    backfill_completed_at: Optional[datetime]
    active_tasks: list[str]
    rate_limit: RateLimitResponse


def raise_for_sync_error(error: SyncError):
    """Translate a sync engine error into the matching HTTPException."""
    if isinstance(error, (InvalidNameError, AlreadyRegisteredError)):
        raise HTTPException(status_code=400, detail=str(error))
    if isinstance(error, NotFoundError):
        raise HTTPException(status_code=404, detail=str(error))
    if isinstance(error, RateLimitedError):
        raise HTTPException(status_code=403, detail=str(error))
    if isinstance(error, (MetadataUnavailableError, TransportError)):
        raise HTTPException(status_code=502, detail=str(error))
    raise HTTPException(status_code=500, detail=str(error))


# ============ ENDPOINTS ============

@router.post("/repository", response_model=RepositoryResponse, status_code=201)
def register_repository(
    body: RegisterRepositoryRequest,
    synchronizer: RepositorySynchronizer = Depends(get_synchronizer)
):
    """
    Start tracking a GitHub repository.

    **Example:**
    ```
    POST /api/v1/repository
    {"name": "chromium/chromium"}
    ```

    Returns:
        The registered repository. Its commits are backfilled in the background;
        poll `/repository/{id}/status` to follow progress.
    """
    try:
        return synchronizer.register(body.name)
    except SyncError as e:
        raise_for_sync_error(e)


@router.get("/repositories", response_model=list[RepositoryResponse])
def list_repositories(db: Session = Depends(get_db)):
    """List every tracked repository, oldest registration first."""
    return db_service.list_repositories(db)


@router.get("/repository/{repo_id}", response_model=RepositoryResponse)
def get_repository(repo_id: str, db: Session = Depends(get_db)):
    """Get one tracked repository by its id."""
    repository = db_service.get_repository_by_public_id(db, repo_id)
    if not repository:
        raise HTTPException(status_code=404, detail="Repository not found")
    return repository


@router.get("/repository/{repo_id}/status", response_model=SyncStatusResponse)
def get_repository_status(
    repo_id: str,
    synchronizer: RepositorySynchronizer = Depends(get_synchronizer)
):
    """
    Sync state of one repository.

    Returns:
        The persisted cursor, whether a pass currently owns it, the last
        background error, which tasks are alive and the GitHub rate-limit budget
    """
    try:
        return synchronizer.sync_status(repo_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Repository not found")
