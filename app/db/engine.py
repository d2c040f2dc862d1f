# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Async SQLAlchemy engine (asyncpg driver) used only for run metrics.
#
# Engines are created lazily on first use, not at import time, and keyed
# by (database_url, echo) so each app uses the Settings it was created
# with. Metrics are optional (METRICS_ENABLED), so the service must
# import and run on a machine with no PostgreSQL reachable.
#
# SESSION PATTERN:
#   Background persistence opens its own session via
#   get_session_factory(settings)() and MUST commit explicitly. The
#   request session, if any, is already gone by the time a run finishes.
# =============================================================================

from __future__ import annotations

import threading

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import Settings
from app.db.models import Base

_engines: dict[tuple[str, bool], AsyncEngine] = {}
_lock = threading.Lock()


def get_engine(settings: Settings) -> AsyncEngine:
    """
    Create or reuse the async engine for these settings.

    - pool_size=5 / max_overflow=10: run metrics are one small INSERT per
      finished run, so a small pool is plenty.
    - echo follows debug so SQL is visible in development.
    """
    key = (settings.database_url, settings.debug)
    with _lock:
        engine = _engines.get(key)
        if engine is None:
            engine = create_async_engine(
                settings.database_url,
                echo=settings.debug,
                pool_size=5,
                max_overflow=10,
            )
            _engines[key] = engine
        return engine


def get_session_factory(settings: Settings) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: attributes stay readable after commit
    return async_sessionmaker(
        bind=get_engine(settings),
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_models(settings: Settings) -> None:
    """Create the metrics tables if they do not exist."""
    async with get_engine(settings).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine(settings: Settings) -> None:
    with _lock:
        engine = _engines.pop((settings.database_url, settings.debug), None)
    if engine is not None:
        await engine.dispose()
