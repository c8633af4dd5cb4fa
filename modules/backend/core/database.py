"""
Job store engine.

The engine and session factory are built on first use so that importing
the app never touches the database file. SQLite (the default) gets its
parent directory created; other drivers get the configured pool size.
"""

from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from modules.backend.core.logging import get_logger, log_with_source

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(db: Any) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": db.echo}
    if not db.driver.startswith("sqlite"):
        options.update(pool_size=db.pool_size, max_overflow=db.max_overflow)
    elif db.name != ":memory:":
        Path(db.name).parent.mkdir(parents=True, exist_ok=True)
    return options


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        from modules.backend.core.config import get_app_config, get_database_url

        db = get_app_config().database
        _engine = create_async_engine(get_database_url(), **_engine_options(db))
        log_with_source(logger, "internal", "debug", "Job store engine created", driver=db.driver, database=db.name)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    return _session_factory


async def create_tables(engine: AsyncEngine | None = None) -> None:
    """Create the scheduled_jobs, job_errors and sent_reports tables if missing."""
    from modules.backend.models import scheduling  # noqa: F401
    from modules.backend.models.base import Base

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log_with_source(logger, "internal", "info", "Job store tables ready", tables=sorted(Base.metadata.tables))


async def dispose_engine() -> None:
    """Close pooled connections; the next get_engine() call builds a new engine."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
