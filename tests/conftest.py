"""
Shared pytest fixtures.

Provides:
- SQLite in-memory database with a per-test transactional session
- FastAPI TestClient with DB, cache, embedding and queue overrides
- Admin / regular user rows and their session tokens
- An in-memory Redis double for cache tests
"""

import fnmatch
from typing import Generator
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from yellowbook.db.models import Base, Listing, User

TEST_DATABASE_URL = "sqlite:///:memory:"


# =============================================================================
# SQLite in-memory engine & session
# =============================================================================
@pytest.fixture(scope="session")
def test_engine():
    """Create a single in-memory SQLite engine shared across threads."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        # Disable pysqlite's own transaction handling so SAVEPOINTs nest
        # inside the per-test outer transaction (SQLAlchemy pysqlite recipe)
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture(scope="session")
def create_tables(test_engine):
    """Create all tables once per test session."""
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture()
def db_session(test_engine, create_tables) -> Generator[Session, None, None]:
    """
    Provide a session whose commits become savepoints inside an outer
    transaction that is rolled back after each test.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()


# =============================================================================
# Redis double
# =============================================================================
class FakeRedis:
    """Dict-backed stand-in for the handful of Redis calls the app makes."""

    def __init__(self):
        self.store: dict[str, bytes] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = value.encode("utf-8") if isinstance(value, str) else value
        if ex is not None:
            self.ttls[key] = ex
        else:
            self.ttls.pop(key, None)
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.store:
                del self.store[key]
                self.ttls.pop(key, None)
                removed += 1
        return removed

    def scan_iter(self, match="*"):
        return [k for k in list(self.store) if fnmatch.fnmatch(k, match)]

    def close(self):
        pass


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


# =============================================================================
# Data helpers
# =============================================================================
def make_listing(db: Session, **overrides) -> Listing:
    """Insert a listing with sensible defaults and commit."""
    fields = {
        "name": "Хаан Банк",
        "description": "Монгол улсын тэргүүлэгч арилжааны банк",
        "address": "Улаанбаатар хот, Сүхбаатар дүүрэг",
        "phone": "+976-7011-1111",
        "category": "service",
        "latitude": 47.9214,
        "longitude": 106.9185,
        "rating": 4.2,
    }
    fields.update(overrides)
    listing = Listing(**fields)
    db.add(listing)
    db.commit()
    return listing


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_user(db_session: Session) -> User:
    user = User(email="admin@example.com", name="Admin", role="admin")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture()
def regular_user(db_session: Session) -> User:
    user = User(email="user@example.com", name="Regular", role="user")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture()
def admin_token(admin_user: User) -> str:
    """Valid session token for a stored admin."""
    from yellowbook.api.auth import create_access_token
    return create_access_token(admin_user.id, role="admin")


@pytest.fixture()
def user_token(regular_user: User) -> str:
    """Valid session token for a stored non-admin, for 403 tests."""
    from yellowbook.api.auth import create_access_token
    return create_access_token(regular_user.id, role="user")


# =============================================================================
# FastAPI TestClient with dependency overrides
# =============================================================================
@pytest.fixture()
def mock_task() -> MagicMock:
    """Stands in for the Celery embedding task; records apply_async calls."""
    return MagicMock()


@pytest.fixture()
def job_queue(mock_task):
    from yellowbook.jobs.queue import EmbeddingJobQueue
    return EmbeddingJobQueue(task=mock_task)


@pytest.fixture()
def embedding_client():
    """Override hook: ``None`` runs the assistant in demo mode."""
    return None


@pytest.fixture()
def client(db_session, fake_redis, job_queue, embedding_client) -> Generator[TestClient, None, None]:
    """
    FastAPI TestClient that:
    - Overrides get_db to use the test SQLite session
    - Supplies the in-memory cache, the embedding client fixture and a
      queue whose task is a MagicMock
    - Does NOT override auth (callers must pass Authorization header)
    """
    from yellowbook.api.deps import get_cache_client_dep, get_embedding_client_dep, get_job_queue
    from yellowbook.db.session import get_db
    from yellowbook.main import app

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_cache_client_dep] = lambda: fake_redis
    app.dependency_overrides[get_embedding_client_dep] = lambda: embedding_client
    app.dependency_overrides[get_job_queue] = lambda: job_queue

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
