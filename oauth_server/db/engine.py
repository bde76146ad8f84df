"""Async SQLAlchemy engine and session factory.

Every OAuth collection (clients, users, sessions, pending authorizations,
codes, tokens) is a table in one database.  By default that database is
an embedded SQLite file under OAUTH_DB_PATH, driven through aiosqlite so
store calls never block the event loop.  Setting DATABASE_URL (for
example postgresql+asyncpg://...) moves the same tables to a server.

Stores open a short session per operation from `Database.session_factory`;
nothing is cached in process memory, so the database is the single
source of truth and a restart loses nothing.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from oauth_server.core.config import Settings

logger = logging.getLogger(__name__)

DB_FILENAME = "oauth.db"


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all table models."""


def database_url_for(settings: Settings) -> str:
    """DATABASE_URL when set, else the embedded SQLite file under db_path."""
    if settings.database_url:
        return settings.database_url
    base_dir = Path(settings.db_path)
    base_dir.mkdir(parents=True, exist_ok=True)
    return f"sqlite+aiosqlite:///{(base_dir / DB_FILENAME).as_posix()}"


def _create_engine(url: str, *, echo: bool) -> AsyncEngine:
    if url.startswith("sqlite"):
        # aiosqlite connections run on their own thread; NullPool keeps
        # them from outliving the event loop that opened them.
        return create_async_engine(url, echo=echo, poolclass=NullPool)
    return create_async_engine(url, echo=echo, pool_size=5, max_overflow=10)


class Database:
    """Owns the engine and the session factory for one database URL."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        self.engine = _create_engine(url, echo=echo)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def create_all(self) -> None:
        """Create missing tables and indexes.  Existing tables are left alone."""
        import oauth_server.db.tables  # noqa: F401  registers the tables on Base

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def dispose(self) -> None:
        await self.engine.dispose()


@asynccontextmanager
async def lifespan_db(database: Database) -> AsyncIterator[Database]:
    """Startup/shutdown hook: create tables on entry, dispose the engine on exit."""
    await database.create_all()
    logger.info("Database ready: %s", database.engine.url.render_as_string())
    try:
        yield database
    finally:
        await database.dispose()
        logger.info("Database engine disposed")
