"""SQLAlchemy async engine and session utilities.

Engines and session factories are cached per (url, echo) pair so every
request for the same database shares one connection pool.
"""
from __future__ import annotations

from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from apiquota.core.config import Settings

from .base import Base


@lru_cache
def _get_async_engine(database_url: str, database_echo: bool) -> AsyncEngine:
    # pool_pre_ping: drop stale connections before reuse
    return create_async_engine(database_url, echo=database_echo, pool_pre_ping=True)


@lru_cache
def _get_session_maker(database_url: str, database_echo: bool) -> async_sessionmaker:
    engine = _get_async_engine(database_url, database_echo)
    return async_sessionmaker(engine, expire_on_commit=False)


def get_async_engine(settings: Settings) -> AsyncEngine:
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is not configured")
    return _get_async_engine(settings.database_url, settings.database_echo)


def get_session_maker(settings: Settings) -> async_sessionmaker:
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is not configured")
    return _get_session_maker(settings.database_url, settings.database_echo)


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables directly from metadata (tests and local sqlite only)."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = ["create_schema", "get_async_engine", "get_session_maker"]
