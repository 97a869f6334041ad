"""
Pytest configuration and fixtures.
"""

from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from tests.fakes import FakeGithub
from tests.test_constants import (
    TEST_ENV_ADMIN_TOKEN,
    TEST_INTERNAL_JOB_TOKEN,
    TEST_SECRET_KEY,
    TEST_WEBHOOK_SECRET,
)

# In-memory SQLite per test; never inherit secrets or DATABASE_URL from .env
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = TEST_SECRET_KEY
os.environ["INTERNAL_JOB_TOKEN"] = TEST_INTERNAL_JOB_TOKEN
os.environ["ENV_ADMIN_TOKEN"] = TEST_ENV_ADMIN_TOKEN
os.environ["GITHUB_WEBHOOK_SECRET"] = TEST_WEBHOOK_SECRET


@pytest.fixture
def engine():
    """Fresh in-memory database with every table created.

    pysqlite needs explicit BEGIN handling for SAVEPOINT (``begin_nested``)
    to behave; see the SQLAlchemy SQLite dialect docs.
    """
    from memory_core import models  # noqa: F401
    from memory_core.db.session import Base

    test_engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def db(engine) -> Session:
    """Database session for service tests. The database is discarded after each test."""
    session = Session(bind=engine, expire_on_commit=False)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def github() -> FakeGithub:
    """In-memory GitHub API."""
    return FakeGithub()


@pytest.fixture(autouse=True)
def _reset_recompute_throttle():
    """Each test starts with an empty process-wide recompute throttle."""
    from memory_core.webhooks.recompute import set_recompute_throttle

    set_recompute_throttle(None)
    yield
    set_recompute_throttle(None)


@pytest.fixture
def client() -> TestClient:
    """FastAPI test client."""
    from memory_core.main import app

    return TestClient(app)


@pytest.fixture
def client_with_db(db: Session, github: FakeGithub) -> TestClient:
    """TestClient with get_db and the GitHub client overridden to test doubles."""
    from memory_core.api.deps import get_github_client
    from memory_core.db.session import get_db
    from memory_core.main import app

    def override_get_db():
        yield db

    async def override_github():
        yield github

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_github_client] = override_github
    c = TestClient(app)
    yield c
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_github_client, None)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    """Bearer headers for the env admin principal (implicit workspace OWNER)."""
    return {"Authorization": f"Bearer {TEST_ENV_ADMIN_TOKEN}"}
