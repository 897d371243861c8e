"""SQLAlchemy engine and connection helpers.

Single shared engine with connection pooling.  Insight queries run through
``readonly_connection``, which opens a READ ONLY transaction with a
statement timeout before anything else executes.  Cache and audit writes use
``write_connection`` (commit on success, rollback on error).
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine

from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None


def get_engine() -> Engine:
    """Return the shared SQLAlchemy engine (lazy-created, cached)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.database_url,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            echo=False,
        )
        logger.info("DB engine created  host=%s  db=%s", settings.postgres_host, settings.postgres_db)
    return _engine


@contextmanager
def readonly_connection(timeout_ms: int | None = None) -> Iterator[Connection]:
    """Yield a connection inside a READ ONLY transaction.

    Postgres rejects any write issued on it, even if the SQL got past the
    validator.  The transaction is rolled back and the connection returned
    to the pool on exit.
    """
    timeout = get_settings().query_timeout_ms if timeout_ms is None else timeout_ms
    with get_engine().connect() as conn:
        conn.execute(text("SET TRANSACTION READ ONLY"))
        conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout)}"))
        try:
            yield conn
        finally:
            conn.rollback()


@contextmanager
def write_connection() -> Iterator[Connection]:
    """Yield a connection in a transaction committed on clean exit."""
    with get_engine().begin() as conn:
        yield conn
