"""
Async storage for the request log and the queue event log.

Only audit rows live here (`request_logs`, `queue_events`); the queue itself
is held in memory by `triage.queue_store.QueueStore` and is never persisted.
"""
from __future__ import annotations

import os
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./app.db"

Base = declarative_base()

_engine: AsyncEngine | None = None
_SessionFactory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Engine for DATABASE_URL, created on first use so tests can set the URL first."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            future=True,
            echo=False,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _SessionFactory
    if _SessionFactory is None:
        # Log rows are read back after commit by the stats endpoints
        _SessionFactory = async_sessionmaker(
            bind=get_engine(),
            expire_on_commit=False,
            autoflush=False,
        )
    return _SessionFactory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """One session per log write or stats query; callers commit their own rows."""
    async with get_session_factory()() as session:
        yield session


async def init_db() -> None:
    """Create `request_logs` and `queue_events` if they are missing."""
    # Both table modules must be imported before create_all sees them
    import models  # noqa: F401
    import queue_event_models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close pooled connections; the next get_engine() call starts fresh."""
    global _engine, _SessionFactory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _SessionFactory = None
