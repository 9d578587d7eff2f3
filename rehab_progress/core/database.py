"""Database engine and async session factory."""

from __future__ import annotations

import logging
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from rehab_progress.config import get_settings
from rehab_progress.core.models import Base

logger = logging.getLogger(__name__)


def get_database_url() -> str:
    return get_settings().database_url


def create_engine_for(url: str) -> AsyncEngine:
    """Create an async engine; pool sizing applies to server databases only."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        echo=False,
    )


@lru_cache
def _get_engine() -> AsyncEngine:
    return create_engine_for(get_database_url())


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(_get_engine(), class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create all tables (dev only; production uses migrations)."""
    engine = engine or _get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


async def dispose_engine() -> None:
    await _get_engine().dispose()
