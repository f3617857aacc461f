"""
Yellowbook Database Session Management

SQLAlchemy engine and session configuration with connection pooling.

The engine is created once per process; ``dispose_engine()`` is called from
the API/web lifespan and the worker shutdown hook to release pooled
connections.

Dependencies:
    - get_db(): Yields a read-write session for one request
"""

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from yellowbook.config import settings


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # Local development against a file database; no server-side pool
        return create_engine(url, connect_args={"check_same_thread": False}, echo=False)
    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        echo=False,
    )


engine = _build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that provides a read-write database session.

    Usage:
        @router.get("/items")
        def get_items(db: Session = Depends(get_db)):
            ...

    The session is automatically closed after the request completes.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def dispose_engine() -> None:
    """Close every pooled connection. Called on process shutdown."""
    engine.dispose()
