"""Async engine and session helpers.

    engine = create_engine(get_db_settings())
    factory = create_session_factory(engine)

    async with session_scope(factory) as session:
        page = await actors.list(session, select(Actor))

Sessions never expire attributes on commit, so entities returned by the
repository stay readable after ``fetch_and_update`` commits.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from repokit.core.settings import get_db_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from repokit.core.settings.database import DatabaseSettings

logger = logging.getLogger(__name__)


def _trace_id() -> str | None:
    span = trace.get_current_span()
    if span and span.get_span_context().is_valid:
        return format(span.get_span_context().trace_id, "032x")
    return None


def _install_slow_query_log(engine: AsyncEngine, threshold_ms: int) -> None:
    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def _before_cursor_execute(
        conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: Any
    ) -> None:
        _ = conn, cursor, statement, parameters, executemany
        context._query_start_time = time.perf_counter()

    @event.listens_for(engine.sync_engine, "after_cursor_execute")
    def _after_cursor_execute(
        conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: Any
    ) -> None:
        _ = conn, cursor, parameters, executemany
        duration_ms = (time.perf_counter() - context._query_start_time) * 1000
        if duration_ms > threshold_ms:
            logger.warning(
                "Slow query",
                extra={
                    "duration_ms": round(duration_ms, 2),
                    "operation": statement.strip().split(" ", 1)[0].upper() if statement else "UNKNOWN",
                    "trace_id": _trace_id(),
                },
            )


def create_engine(settings: DatabaseSettings | None = None) -> AsyncEngine:
    """Create an async engine from database settings.

    Pool options apply to server databases only; SQLite uses SQLAlchemy's
    default pool for the aiosqlite driver.
    """
    settings = settings or get_db_settings()
    options: dict[str, Any] = {"echo": settings.echo, "pool_pre_ping": settings.pool_pre_ping}

    if not settings.is_sqlite:
        options.update(
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
        )
        if settings.statement_timeout_ms is not None:
            options["connect_args"] = {
                "options": f"-c statement_timeout={settings.statement_timeout_ms}",
            }

    engine = create_async_engine(settings.dsn, **options)
    _install_slow_query_log(engine, settings.slow_query_ms)
    logger.info(
        "Database engine created",
        extra={"dialect": engine.dialect.name, "pool_pre_ping": settings.pool_pre_ping},
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Yield a session; roll back on error and always close it.

    Example:
        async with session_scope(factory) as session:
            actor = await actors.fetch(session, select(Actor).where(Actor.id == actor_id))
    """
    async with factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


__all__ = ["create_engine", "create_session_factory", "session_scope"]
