"""
Async database engine construction.

Uses SQLAlchemy 2.0 asyncio with asyncpg (PostgreSQL) or aiosqlite (SQLite).

Transactions are configured so that a resolve's read-decide-write sequence
cannot interleave with an overlapping one:

- PostgreSQL runs every transaction at SERIALIZABLE isolation.
- SQLite begins every transaction with ``BEGIN IMMEDIATE``, which takes the
  database write lock before the first read.
"""

import hashlib
import logging

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from src.settings import settings

logger = logging.getLogger(__name__)

# Connection execution option marking read-only liveness probes
HEALTH_CHECK_OPTION = "health_check"


def is_sqlite_url(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def create_db_engine(database_url: str | None = None) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    Args:
        database_url: SQLAlchemy async URL. Defaults to ``settings.database_url``.

    Returns:
        Configured AsyncEngine
    """
    database_url = database_url or settings.database_url

    if is_sqlite_url(database_url):
        engine = create_async_engine(
            database_url,
            echo=settings.db_echo,
            connect_args={"timeout": settings.sqlite_busy_timeout},
        )
        _configure_sqlite(engine)
    else:
        engine = create_async_engine(
            database_url,
            echo=settings.db_echo,
            isolation_level="SERIALIZABLE",
            pool_size=max(1, settings.db_pool_size),
            max_overflow=max(0, settings.db_pool_max_overflow),
            pool_timeout=settings.db_pool_timeout,
            pool_pre_ping=True,
        )

    logger.info("Database engine created (dialect=%s)", engine.dialect.name)
    return engine


def _configure_sqlite(engine: AsyncEngine) -> None:
    """Take over transaction control from the SQLite driver."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        # Stop the driver from emitting its own deferred BEGIN.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):  # type: ignore[no-untyped-def]
        # Health checks run in driver autocommit and never queue for the lock
        if conn.get_execution_options().get(HEALTH_CHECK_OPTION):
            return
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def advisory_lock_id(key: str) -> int:
    """Stable signed 64-bit id for ``pg_advisory_lock``."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)
