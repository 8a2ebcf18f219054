"""Async engine and unit-of-work sessions for the price and alert tables.

The schema itself is owned by the Alembic migrations under ``alembic/``;
nothing here issues DDL.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

_SYNC_POSTGRES_PREFIX = "postgresql://"
_ASYNC_POSTGRES_PREFIX = "postgresql+asyncpg://"


def normalize_async_database_url(database_url: str) -> str:
    """Point a plain ``postgresql://`` URL at the asyncpg driver."""
    if database_url.startswith(_SYNC_POSTGRES_PREFIX):
        logger.warning("DATABASE_URL has no async driver; switching to %s", _ASYNC_POSTGRES_PREFIX)
        return _ASYNC_POSTGRES_PREFIX + database_url[len(_SYNC_POSTGRES_PREFIX) :]
    return database_url


def engine_options(database_url: str, *, pool_size: int, max_overflow: int, echo: bool) -> dict[str, Any]:
    """Engine keyword arguments for the dialect behind ``database_url``.

    SQLite gets neither pool sizing nor pre-ping.
    """
    options: dict[str, Any] = {"echo": echo}
    if not database_url.startswith("sqlite"):
        options.update(pool_size=pool_size, max_overflow=max_overflow, pool_pre_ping=True)
    return options


class DatabaseManager:
    """Owns the async engine and hands out one session per unit of work.

    The engine is created lazily on first use so that building the manager
    never touches the network.
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        self.database_url = normalize_async_database_url(database_url)
        self._options = engine_options(
            self.database_url, pool_size=pool_size, max_overflow=max_overflow, echo=echo
        )
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_engine(cls, engine: AsyncEngine) -> DatabaseManager:
        """Wrap an engine built elsewhere (test fixtures, migration tooling)."""
        manager = cls(engine.url.render_as_string(hide_password=False))
        manager._engine = engine
        return manager

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self.database_url, **self._options)
            logger.debug("Created database engine for %s", self._engine.url.render_as_string())
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on clean exit and rolls back on error."""
        if self._sessions is None:
            self._sessions = async_sessionmaker(bind=self.engine, expire_on_commit=False)

        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def dispose(self) -> None:
        """Close pooled connections; the next session recreates the engine."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info("Database connections closed")
