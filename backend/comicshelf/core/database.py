"""Database configuration and setup for the catalog and job store.

Handles SQLite async database setup with proper concurrency handling:
- WAL mode so watcher, workers and the API can read while a worker writes
- Connection pooling with appropriate sizing
- Retry logic for database locks
- Session factory for dependency injection
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import structlog
from sqlalchemy import event
from sqlalchemy.exc import OperationalError, PendingRollbackError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from comicshelf.core.metrics import (
    db_connections_active,
    db_connections_idle,
    db_lock_errors_total,
    db_pool_size,
    db_retries_failed_total,
    db_retries_succeeded_total,
    db_retry_attempts_total,
    db_retry_duration_seconds,
)

logger = structlog.get_logger("comicshelf.database")

T = TypeVar("T")

SessionFactory = async_sessionmaker[SQLModelAsyncSession]


def create_database_engine(
    database_file: Path,
    echo: bool = False,
    pool_size: int = 10,
) -> AsyncEngine:
    """Create and configure the database engine for async SQLite.

    Args:
        database_file: Path to the SQLite database file.
        echo: If True, log all SQL statements (useful for debugging).
        pool_size: Number of pooled connections; workers and the watcher share them.

    Returns:
        Configured AsyncEngine instance.
    """
    database_url = f"sqlite+aiosqlite:///{database_file}"

    engine = create_async_engine(
        database_url,
        echo=echo,
        connect_args={"timeout": 30.0},
        pool_pre_ping=True,
        pool_size=pool_size,
        max_overflow=pool_size * 2,
    )

    db_pool_size.set(pool_size)

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn: Any, connection_record: Any) -> None:
        """Enable WAL mode and foreign keys on every new connection."""
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    @event.listens_for(engine.sync_engine, "checkout")
    def on_connection_checkout(
        dbapi_conn: Any, connection_record: Any, connection_proxy: Any
    ) -> None:
        pool = engine.sync_engine.pool
        db_connections_active.set(pool.checkedout())  # type: ignore[attr-defined]
        db_connections_idle.set(pool.checkedin())  # type: ignore[attr-defined]

    @event.listens_for(engine.sync_engine, "checkin")
    def on_connection_checkin(dbapi_conn: Any, connection_record: Any) -> None:
        pool = engine.sync_engine.pool
        db_connections_active.set(pool.checkedout())  # type: ignore[attr-defined]
        db_connections_idle.set(pool.checkedin())  # type: ignore[attr-defined]

    logger.info(
        "Database engine created",
        database_file=str(database_file),
        echo=echo,
        pool_size=pool_size,
    )

    return engine


def create_session_factory(engine: AsyncEngine) -> SessionFactory:
    """Create a session factory for database sessions.

    expire_on_commit=False keeps loaded rows usable after commit in async code.
    """
    return async_sessionmaker(
        engine,
        class_=SQLModelAsyncSession,
        expire_on_commit=False,
    )


async def init_database(engine: AsyncEngine) -> None:
    """Create all catalog and job tables that do not exist yet."""
    # Importing the models registers them on SQLModel.metadata
    import comicshelf.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database schema ready", tables=sorted(SQLModel.metadata.tables))


async def retry_db_operation(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 5,
    retry_delay: float = 0.1,
    operation_type: str = "unknown",
) -> T:
    """Retry a unit of work on SQLite lock errors with exponential backoff.

    ``operation`` must be the whole unit of work: it opens its own session,
    reads what it needs, writes and commits. A failed flush or commit leaves
    the session unusable and its pending changes are gone after rollback, so
    every attempt starts over from a fresh session.

    Args:
        operation: Callable returning an awaitable (not already awaited).
        max_retries: Maximum number of attempts.
        retry_delay: Initial delay in seconds, doubled after every attempt.
        operation_type: Label for metrics ("query", "insert", "commit", ...).

    Raises:
        OperationalError: If the lock persists after max_retries, or the error is
            not a lock error.
        PendingRollbackError: If the session could not be recovered after max_retries.

    Example:
        ```python
        async def insert() -> str:
            async with session_factory() as session:
                session.add(row)
                await session.commit()
                return row.id

        row_id = await retry_db_operation(insert, operation_type="insert")
        ```
    """
    start_time = time.time()
    last_exception: Exception | None = None

    for attempt in range(max_retries):
        try:
            result = await operation()
            if attempt > 0:
                db_retries_succeeded_total.labels(operation_type=operation_type).inc()
                db_retry_duration_seconds.labels(operation_type=operation_type).observe(
                    time.time() - start_time
                )
            return result
        except OperationalError as exc:
            last_exception = exc
            if "locked" in str(exc).lower() and attempt < max_retries - 1:
                db_lock_errors_total.inc()
                db_retry_attempts_total.labels(operation_type=operation_type).inc()
                logger.debug(
                    "Database lock detected, retrying",
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    operation_type=operation_type,
                    error=str(exc)[:100],
                )
                await asyncio.sleep(retry_delay * (2**attempt))
                continue

            if attempt > 0:
                db_retries_failed_total.labels(operation_type=operation_type).inc()
                db_retry_duration_seconds.labels(operation_type=operation_type).observe(
                    time.time() - start_time
                )
            logger.error(
                "Database operation failed",
                attempt=attempt + 1,
                max_retries=max_retries,
                operation_type=operation_type,
                error=str(exc)[:200],
            )
            raise
        except PendingRollbackError as exc:
            last_exception = exc
            if attempt < max_retries - 1:
                db_retry_attempts_total.labels(operation_type=operation_type).inc()
                logger.debug(
                    "Pending rollback detected, retrying with a fresh session",
                    attempt=attempt + 1,
                    operation_type=operation_type,
                )
                await asyncio.sleep(retry_delay * (2**attempt))
                continue
            logger.error(
                "Pending rollback could not be cleared",
                attempt=attempt + 1,
                operation_type=operation_type,
            )
            raise

    if last_exception:
        raise last_exception
    raise RuntimeError(f"Operation failed after {max_retries} retries")
