import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api.v1.api import api_router
from app.config import load_settings
from app.database import engine, Base, SessionLocal
from app.errors import SyncError
from app.logging_config import configure_logging
from app.models import Commit, Repository
from app.services.github_client import GitHubClient
from app.services.synchronizer import RepositorySynchronizer

logger = logging.getLogger("main")

app = FastAPI(
    title="Commit Sync",
    description="Keeps a local copy of GitHub repository commit histories in sync",
    version="1.0.0"
)

origins = [
    "http://localhost:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    """Create tables, then hand every tracked repository its sync task back."""
    settings = load_settings()
    configure_logging(settings.log_level)

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified")

    if not settings.github_token:
        logger.warning("No GITHUB_TOKEN set, GitHub allows 60 unauthenticated requests per hour")

    client = GitHubClient(
        base_url=settings.github_api_base_url,
        token=settings.github_token,
        timeout=settings.http_timeout,
    )
    synchronizer = RepositorySynchronizer(client, SessionLocal, settings)
    app.state.synchronizer = synchronizer

    # Resume first: it clears every is_fetching marker left by a previous process
    synchronizer.resume_all()

    try:
        synchronizer.seed_default_repository()
    except SyncError as e:
        logger.error("Failed to seed default repository %s: %s", settings.default_repository, e)


@app.on_event("shutdown")
def on_shutdown():
    """Stop and join the sync tasks before the process exits."""
    synchronizer = getattr(app.state, "synchronizer", None)
    if synchronizer is not None:
        synchronizer.shutdown()


app.include_router(api_router)


@app.get("/")
def health_check():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
