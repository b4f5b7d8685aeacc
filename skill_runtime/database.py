"""Async SQLAlchemy engine and session scope for the runtime's state.

Only two kinds of rows live here: key/value system settings (index URLs,
auto-install switches, the manual package set) and the skill registry the
dependency aggregator reads.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

Base = declarative_base()

SQLITE_BUSY_TIMEOUT_S = 30


def to_async_url(database_url: str) -> str:
    """Use the aiosqlite driver for plain ``sqlite:///`` URLs."""
    if database_url.startswith("sqlite:///") and "aiosqlite" not in database_url:
        return database_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return database_url


class Database:
    """Owns the async engine; every DAO call runs inside :meth:`session`."""

    def __init__(self, database_url: str):
        """Create the engine.

        Args:
            database_url: SQLAlchemy URL; ``sqlite:///`` is switched to
                aiosqlite and the database file's directory is created.
        """
        url = make_url(to_async_url(database_url))
        self._is_sqlite = url.get_backend_name() == "sqlite"

        connect_args = {}
        if self._is_sqlite:
            # Concurrent settings writes from request handlers wait instead of failing.
            connect_args["timeout"] = SQLITE_BUSY_TIMEOUT_S
            if url.database and url.database != ":memory:":
                os.makedirs(os.path.dirname(os.path.abspath(url.database)), exist_ok=True)

        self._engine: AsyncEngine = create_async_engine(
            url,
            echo=False,
            future=True,
            connect_args=connect_args,
        )
        self._async_session: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Transactional scope: commit on success, roll back and re-raise on error."""
        async with self._async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init_db(self) -> None:
        """Create missing tables. Deployments use Alembic migrations instead."""
        async with self._engine.begin() as conn:
            if self._is_sqlite:
                await conn.execute(text("PRAGMA journal_mode=WAL"))
                await conn.execute(text(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_S * 1000}"))
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured (%s)", self._engine.url.render_as_string(hide_password=True))

    async def close(self) -> None:
        await self._engine.dispose()
