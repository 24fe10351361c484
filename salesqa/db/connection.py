"""SQLAlchemy engine & read-only connections.

Single shared engine with connection pooling.  All copilot queries run
through `readonly_connection`, which on Postgres sets the transaction to
READ ONLY and applies a per-statement timeout before anything executes.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine

from salesqa.core.config import get_settings
from salesqa.core.logging import get_logger, kv

logger = get_logger(__name__)

_engine: Engine | None = None


def get_engine() -> Engine:
    """Return the shared SQLAlchemy engine (lazy-created, cached)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        url = settings.database_url
        if url.startswith("sqlite"):
            _engine = create_engine(url, echo=False)
        else:
            _engine = create_engine(
                url,
                pool_pre_ping=True,
                pool_size=5,
                max_overflow=10,
                echo=False,
            )
        logger.info("DB engine created | %s", kv(dialect=_engine.dialect.name, host=settings.postgres_host))
    return _engine


@contextmanager
def readonly_connection(
    engine: Engine | None = None,
    timeout_ms: int | None = None,
) -> Generator[Connection, None, None]:
    """Yield a connection whose transaction cannot write.

    The transaction is rolled back and the connection returned to the pool
    on exit.  Dialects without READ ONLY / statement_timeout support (SQLite
    in tests) get a plain connection.
    """
    engine = engine or get_engine()
    if timeout_ms is None:
        timeout_ms = get_settings().query_timeout_ms
    with engine.connect() as conn:
        if conn.dialect.name == "postgresql":
            conn.execute(text("SET TRANSACTION READ ONLY"))
            conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
        yield conn
