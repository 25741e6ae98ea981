"""
Shared FastAPI dependencies.

The synchronizer is built once at startup and kept on app.state.
"""

from fastapi import HTTPException, Request

from app.services.synchronizer import RepositorySynchronizer


def get_synchronizer(request: Request) -> RepositorySynchronizer:
    """
    FastAPI dependency returning the process-wide synchronizer.

    Raises:
        HTTPException 503: the app has not finished starting up
    """
    synchronizer = getattr(request.app.state, "synchronizer", None)
    if synchronizer is None:
        raise HTTPException(status_code=503, detail="Sync engine is not running")
    return synchronizer
