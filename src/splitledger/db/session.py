"""Async engine and session factory.

:func:`get_session` yields a session that is committed when the block
exits cleanly and rolled back when it raises, so one ``async with`` block
is one atomic ledger operation.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from splitledger.config import settings


def create_engine(url: str | None = None) -> AsyncEngine:
    """Build an async engine for *url* (defaults to ``settings.database_url``)."""
    return create_async_engine(
        url or settings.database_url,
        echo=settings.database_echo,
        pool_pre_ping=True,
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory that keeps loaded objects usable after commit."""
    return async_sessionmaker(bind, expire_on_commit=False)


engine = create_engine()
async_session_factory = create_session_factory(engine)


@asynccontextmanager
async def get_session(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Open a session, commit on success, roll back on error."""
    async with (factory or async_session_factory)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
