"""Pytest configuration and shared fixtures.

Organization:
    - Settings Fixtures: pagination settings, paginator and cursor codec
    - Database Fixtures: in-memory aiosqlite engine, sessions and seed data

The SQLite engines enable real SAVEPOINT support (pysqlite's implicit
transaction handling is switched off and BEGIN is emitted explicitly), so
nested transactions behave as they do on PostgreSQL.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest
from pydantic import SecretStr

from repokit.core.pagination import CursorCodec, Paginator
from repokit.core.settings import DatabaseSettings, PaginationSettings
from repokit.infra.database import create_engine, create_session_factory
from tests.fixtures.database import enable_savepoints
from tests.fixtures.models import BASE_TIME, Account, Actor, Base, Group, Membership

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

CURSOR_SECRET = "test-cursor-secret"


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def pagination_settings() -> PaginationSettings:
    """Small limits so a handful of rows spans several pages."""
    return PaginationSettings(
        default_limit=2,
        max_limit=5,
        cursor_secret=SecretStr(CURSOR_SECRET),
    )


@pytest.fixture
def codec() -> CursorCodec:
    return CursorCodec(CURSOR_SECRET)


@pytest.fixture
def paginator(pagination_settings: PaginationSettings, codec: CursorCodec) -> Paginator:
    return Paginator(pagination_settings, codec)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine]:
    """In-memory SQLite engine with every test table created."""
    engine = create_engine(DatabaseSettings(dsn="sqlite+aiosqlite:///:memory:"))
    enable_savepoints(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def actors(session: AsyncSession) -> list[Actor]:
    """Five actors with ids 1..5, one minute apart, plus group memberships.

    Actor 1 belongs to both groups; its membership in "Engineering" is
    soft-deleted.
    """
    account = Account(id=1, name="Acme", slug="acme")
    engineering = Group(id=1, name="Engineering")
    support = Group(id=2, name="Support")
    actors = [
        Actor(
            id=index,
            account_id=1,
            name=f"Actor {index}",
            email=f"actor{index}@example.com" if index % 2 else None,
            type="service_account" if index == 5 else "account_user",
            inserted_at=BASE_TIME + timedelta(minutes=index),
        )
        for index in range(1, 6)
    ]
    memberships = [
        Membership(id=1, actor_id=1, group_id=1, deleted_at=BASE_TIME),
        Membership(id=2, actor_id=1, group_id=2),
        Membership(id=3, actor_id=2, group_id=1),
        Membership(id=4, actor_id=3, group_id=1),
        Membership(id=5, actor_id=4, group_id=1),
    ]
    session.add_all([account, engineering, support, *actors, *memberships])
    await session.commit()
    return actors
