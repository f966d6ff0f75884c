"""Database engine and session handling."""

import os
import logging
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from . import models

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./settlement_sync.db"

# Engine and factory behind the FastAPI dependency, set up by the app lifespan
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """DATABASE_URL, with plain postgres URLs switched to the asyncpg driver."""
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        return DEFAULT_DATABASE_URL
    for prefix in ("postgresql://", "postgres://"):
        if db_url.startswith(prefix):
            return db_url.replace(prefix, "postgresql+asyncpg://", 1)
    return db_url


def create_async_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """Build the engine for a settlement database.

    SQLite gets a single shared connection so an in-memory database
    outlives individual sessions; pool sizing only applies to Postgres.
    """
    url = database_url or get_database_url()

    if "sqlite" in url:
        return sa_create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return sa_create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
    )


def _make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Engines keep using rows after a commit, so nothing is expired on commit.
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_async_session_factory(
    engine: Optional[AsyncEngine] = None,
) -> async_sessionmaker[AsyncSession]:
    """Session factory for an explicit engine, or the one init_db() set up."""
    if engine is not None:
        return _make_session_factory(engine)
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


async def init_db(database_url: Optional[str] = None) -> None:
    """Open the API's engine and create any missing tables."""
    global _engine, _session_factory

    _engine = create_async_engine(database_url)
    _session_factory = _make_session_factory(_engine)

    async with _engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    logger.info("Settlement database ready")


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Settlement database closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success."""
    session_factory = get_async_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


class DatabaseManager:
    """
    Engine lifecycle for one CLI run.

    Example:
        db_manager = DatabaseManager(database_url)
        await db_manager.initialize()
        try:
            async with db_manager.session() as session:
                await SyncEngine(session).sync_all()
        finally:
            await db_manager.shutdown()
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    async def initialize(self) -> None:
        self._engine = create_async_engine(self.database_url)
        self._session_factory = _make_session_factory(self._engine)

        async with self._engine.begin() as conn:
            await conn.run_sync(models.Base.metadata.create_all)

    async def shutdown(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not initialized. Call initialize() first.")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
