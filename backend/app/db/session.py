from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import settings


def _engine_options(url: str) -> dict[str, Any]:
    """Pool tuning for Postgres; SQLite (local runs) only needs a busy timeout."""
    if url.startswith("sqlite"):
        return {"connect_args": {"timeout": 30}}
    return {
        "pool_pre_ping": True,  # detects dead connections before using them
        "pool_recycle": 300,
    }


# CLEAN URL: asyncpg rejects sslmode/channel_binding query params.
DATABASE_URL_ASYNC = settings.DATABASE_URL_ASYNC_CLEAN

engine: AsyncEngine = create_async_engine(
    DATABASE_URL_ASYNC,
    echo=False,
    future=True,
    **_engine_options(DATABASE_URL_ASYNC),
)

# expire_on_commit=False: services commit mid-flow and keep using the same rows.
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    One AsyncSession per request. Uncommitted work is rolled back when the
    handler raises, so a failed settlement step never leaks into the next one.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """
    Factory for components that own their own sessions
    (notification dispatcher, scheduled jobs).
    """
    return AsyncSessionLocal
