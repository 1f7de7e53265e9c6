"""SQLAlchemy engine for ClickHouse.

Single shared engine with connection pooling, built on the
``clickhouse-sqlalchemy`` native dialect.  The pool is the only shared
resource between requests; it does its own locking.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine

from flowhouse.core.config import get_settings
from flowhouse.core.logging import get_logger

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
        logger.info(
            "DB engine created  host=%s  db=%s",
            settings.clickhouse_host,
            settings.clickhouse_database,
        )
    return _engine


@contextmanager
def pooled_connection() -> Generator[Connection, None, None]:
    """Yield a pooled connection; it is returned to the pool on exit."""
    conn = get_engine().connect()
    try:
        yield conn
    finally:
        conn.close()
