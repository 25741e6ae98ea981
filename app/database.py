from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from dotenv import load_dotenv
import os

from app.config import DEFAULT_DATABASE_URL

# Load environment variables
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


def make_engine(url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite connections are shared by the background sync threads,
    so the same-thread check is switched off for them.
    """
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    return create_engine(
        url,
        echo=False,  # Set True for SQL debugging
        pool_pre_ping=True,  # Verify connections before use
        connect_args=connect_args
    )


def make_session_factory(bind: Engine) -> sessionmaker:
    """
    Session factory shared by request handlers and sync threads.

    expire_on_commit is off so rows returned from a finished session
    can still be read by the thread that asked for them.
    """
    return sessionmaker(
        bind=bind,
        autoflush=False,
        expire_on_commit=False
    )


# Create engine with connection pooling
engine = make_engine(DATABASE_URL)

# Session factory for request-scoped sessions
SessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def get_db():
    """
    FastAPI dependency to get a database session.

    Usage:
        @app.get("/items")
        def get_items(db: Session = Depends(get_db)):
            ...

    Yields:
        Session: Database session that auto-closes after request
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
