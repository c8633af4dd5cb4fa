"""
Root Pytest Fixtures.

Shared fixtures available to all test types.

Test Database Configuration:
    Tests use a fresh in-memory SQLite job store per test. StaticPool keeps
    the single connection alive so every session of a test sees the same
    database. Set TEST_DATABASE_URL to run against another engine.
"""

import os
from collections.abc import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

import modules.backend.models.scheduling  # noqa: F401  (registers tables)
from modules.backend.models.base import Base


def get_test_database_url() -> str:
    return os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


def is_sqlite() -> bool:
    return "sqlite" in get_test_database_url()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Engine with every job store table created; dropped after the test."""
    url = get_test_database_url()

    if is_sqlite():
        engine = create_async_engine(
            url,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def db_session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine, configured like production."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(
    db_session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    A session for a single test; uncommitted changes are rolled back.

    Usage:
        async def test_upsert(db_session: AsyncSession):
            repo = JobRepository(db_session)
            job = await repo.upsert("daily_1", ...)
    """
    async with db_session_factory() as session:
        yield session
        await session.rollback()
