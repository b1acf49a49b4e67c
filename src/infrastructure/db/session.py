"""
Process-wide async engine and session factory.

Both are created lazily from settings so that importing the app never opens
a connection, and are reset by ``dispose_engine`` so RQ jobs can rebuild them
on a fresh event loop.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from src.core.config import get_settings

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        # SQLite serialises writers; wait for the lock instead of failing fast
        return {"poolclass": NullPool, "connect_args": {"timeout": 15}}
    return {"pool_pre_ping": True}


def get_engine() -> AsyncEngine:
    global _engine

    if _engine is None:
        url = get_settings().async_database_url
        _engine = create_async_engine(url, echo=False, **_engine_options(url))
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory

    if _session_factory is None:
        # Loaded rows stay usable after commit; services return them to routes
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


async def get_session() -> AsyncIterator[AsyncSession]:
    async with get_session_factory()() as session:
        yield session


async def dispose_engine() -> None:
    """Close pooled connections and forget the engine."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
