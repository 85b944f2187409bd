"""Tests for engine creation, slow query logging and session helpers."""

from __future__ import annotations

import itertools
import logging
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select, text

import repokit.infra.database.session as session_module
from repokit.core.settings import DatabaseSettings
from repokit.infra.database import create_engine, session_scope
from tests.fixtures.models import Counter


class TestCreateEngine:
    """Tests for create_engine()."""

    async def test_sqlite_engine(self, caplog):
        with caplog.at_level(logging.INFO, logger="repokit.infra.database.session"):
            engine = create_engine(DatabaseSettings(dsn="sqlite+aiosqlite:///:memory:"))

        try:
            assert engine.dialect.name == "sqlite"
            assert "Database engine created" in caplog.messages
        finally:
            await engine.dispose()

    async def test_postgres_statement_timeout(self):
        pytest.importorskip("psycopg")
        settings = DatabaseSettings(
            dsn="postgresql+psycopg://app@localhost/app",
            statement_timeout_ms=1500,
            pool_size=3,
        )

        engine = create_engine(settings)

        try:
            assert engine.pool.size() == 3
        finally:
            await engine.dispose()

    async def test_slow_queries_are_logged(self, engine, monkeypatch, caplog):
        """Every statement looks slow when the clock jumps five seconds per call."""
        clock = itertools.count(0, 5)
        monkeypatch.setattr(session_module, "time", SimpleNamespace(perf_counter=lambda: next(clock)))

        with caplog.at_level(logging.WARNING, logger="repokit.infra.database.session"):
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

        record = next(
            r for r in caplog.records if r.message == "Slow query" and r.operation == "SELECT"
        )
        assert record.operation == "SELECT"
        assert record.duration_ms == 5000
        assert record.trace_id is None


class TestSessions:
    """Tests for the session factory and session_scope()."""

    async def test_attributes_survive_commit(self, session_factory):
        async with session_factory() as session:
            counter = Counter(id=1, value=3)
            session.add(counter)
            await session.commit()

            assert counter.value == 3

    async def test_session_scope_rolls_back_on_error(self, session_factory):
        with pytest.raises(RuntimeError):
            async with session_scope(session_factory) as session:
                session.add(Counter(id=1, value=1))
                await session.flush()
                raise RuntimeError("boom")

        async with session_scope(session_factory) as session:
            count = await session.scalar(select(func.count()).select_from(Counter))

        assert count == 0
