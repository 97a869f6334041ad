"""
Database session management. SQLAlchemy 2.x style.
"""

from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from memory_core.config import get_settings

settings = get_settings()


def _engine_kwargs(database_url: str) -> dict:
    """Pool and connect options; psycopg-only options are skipped for other drivers."""
    if not database_url.startswith("postgresql"):
        return {"echo": settings.debug}
    return {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "echo": settings.debug,
        "connect_args": {
            "connect_timeout": settings.db_connect_timeout,
            "options": "-c timezone=UTC",
        },
    }


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""


def check_db_connection() -> None:
    """
    Verify database connectivity. Raises if unreachable.
    Call during application startup.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def get_db() -> Generator[Session, None, None]:
    """Dependency for FastAPI to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Run a block of writes as one transaction.

    Commits when the block exits normally; rolls back and re-raises on any
    exception so a partially applied multi-row upsert never becomes visible.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
