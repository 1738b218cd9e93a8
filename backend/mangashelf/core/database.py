"""Database configuration and setup for MangaShelf.

Handles SQLite async database setup:
- WAL mode for concurrent reads while the import pass writes
- Session factory shared by the API and the import scheduler
- Retry logic for database locks
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import event
from sqlalchemy.exc import OperationalError, PendingRollbackError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from mangashelf.core.metrics import (
    db_lock_errors_total,
    db_retries_failed_total,
    db_retries_succeeded_total,
    db_retry_attempts_total,
    db_retry_duration_seconds,
)

logger = structlog.get_logger("mangashelf.database")


def create_database_engine(
    database_file: Path | str,
    echo: bool = False,
) -> AsyncEngine:
    """Create and configure the database engine for async SQLite.

    Args:
        database_file: Path to the SQLite database file.
        echo: If True, log all SQL statements (useful for debugging).

    Returns:
        Configured AsyncEngine instance.
    """
    database_url = f"sqlite+aiosqlite:///{database_file}"

    engine = create_async_engine(
        database_url,
        echo=echo,
        connect_args={"timeout": 30.0},  # Wait up to 30 seconds for locks to be released
        pool_pre_ping=True,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn: Any, connection_record: Any) -> None:
        """Enable WAL mode and other SQLite optimizations."""
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    logger.info(
        "Database engine created",
        database_file=str(database_file),
        echo=echo,
    )

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[SQLModelAsyncSession]:
    """Create a session factory for database sessions.

    expire_on_commit=False is important for async sessions to avoid lazy loading issues.
    """
    return async_sessionmaker(
        engine,
        class_=SQLModelAsyncSession,
        expire_on_commit=False,
    )


async def init_database(engine: AsyncEngine) -> None:
    """Create any missing tables."""
    from mangashelf.db.models import metadata

    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    logger.info("Database schema ensured", tables=sorted(metadata.tables))


async def retry_db_operation(
    operation: Callable[[], Awaitable[Any]],
    session: SQLModelAsyncSession | None = None,
    max_retries: int = 5,
    retry_delay: float = 0.1,
    operation_type: str = "unknown",
) -> Any:
    """Retry a database operation on SQLite lock errors with exponential backoff.

    Args:
        operation: Callable returning an awaitable (not already awaited).
        session: Optional database session to rollback on lock errors.
        max_retries: Maximum number of attempts.
        retry_delay: Initial delay between retries in seconds; doubles each retry.
        operation_type: Label for metrics ("query", "insert", "update", "commit", ...).

    Returns:
        Result of the operation.

    Raises:
        OperationalError: If the operation still fails after max_retries, or the
            error is not lock-related.
        PendingRollbackError: If the session's pending rollback can't be cleared.

    Example:
        ```python
        async with session_factory() as session:
            await retry_db_operation(
                lambda: session.commit(),
                session=session,
                operation_type="commit",
            )
        ```
    """
    start_time = time.time()
    last_exception: Exception | None = None

    for attempt in range(max_retries):
        try:
            result = await operation()

            if attempt > 0:
                db_retries_succeeded_total.labels(operation_type=operation_type).inc()
                duration = time.time() - start_time
                db_retry_duration_seconds.labels(operation_type=operation_type).observe(duration)

            return result
        except OperationalError as exc:
            error_msg = str(exc).lower()
            last_exception = exc

            if "locked" in error_msg and attempt < max_retries - 1:
                db_lock_errors_total.inc()
                db_retry_attempts_total.labels(operation_type=operation_type).inc()

                logger.debug(
                    "Database lock detected, retrying",
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    operation_type=operation_type,
                    error=str(exc)[:100],
                )

                if session is not None:
                    try:
                        await session.rollback()
                    except Exception as rollback_exc:
                        logger.debug(
                            "Error during rollback after lock",
                            error=str(rollback_exc)[:100],
                        )

                await asyncio.sleep(retry_delay * (2**attempt))
                continue

            if attempt > 0:
                duration = time.time() - start_time
                db_retry_duration_seconds.labels(operation_type=operation_type).observe(duration)

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
            if session is not None and attempt < max_retries - 1:
                db_retry_attempts_total.labels(operation_type=operation_type).inc()

                logger.debug(
                    "Pending rollback detected, rolling back and retrying",
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    operation_type=operation_type,
                )
                try:
                    await session.rollback()
                    await asyncio.sleep(retry_delay * (2**attempt))
                    continue
                except Exception as rollback_exc:
                    logger.error(
                        "Error during rollback",
                        error=str(rollback_exc)[:200],
                    )

            if attempt > 0:
                duration = time.time() - start_time
                db_retry_duration_seconds.labels(operation_type=operation_type).observe(duration)

            logger.error(
                "Pending rollback could not be cleared",
                attempt=attempt + 1,
                max_retries=max_retries,
                operation_type=operation_type,
            )
            raise

    if max_retries > 0:
        duration = time.time() - start_time
        db_retry_duration_seconds.labels(operation_type=operation_type).observe(duration)
        db_retries_failed_total.labels(operation_type=operation_type).inc()

    if last_exception:
        raise last_exception
    raise RuntimeError(f"Operation failed after {max_retries} retries")
