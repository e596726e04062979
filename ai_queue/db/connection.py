"""
Database connection management.
Handles async SQLAlchemy engine and session creation.

A `Database` is built once per process and handed to the components
that need it; nothing here is module-global.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from ai_queue.config import Settings
from ai_queue.db.models import Base

logger = logging.getLogger(__name__)


class Database:
    """
    Owns the async engine and session factory for one process.

    Sessions opened through `session()` commit on clean exit and roll
    back when the block raises.
    """

    def __init__(self, engine: AsyncEngine):
        """
        Initialize the database handle.

        Args:
            engine: The SQLAlchemy async engine to bind sessions to.
        """
        self.engine = engine
        self.session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """
        Create a pooled database handle from application settings.

        Args:
            settings: Application settings.

        Returns:
            Database: The new database handle.
        """
        engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            echo=settings.log_level == "DEBUG",
            pool_pre_ping=True,
        )
        logger.info("Database connection initialized")
        return cls(engine)

    @classmethod
    def for_url(cls, database_url: str) -> "Database":
        """
        Create an unpooled database handle, for tests and one-off scripts.

        Args:
            database_url: The database URL.

        Returns:
            Database: The new database handle.
        """
        return cls(create_async_engine(database_url, poolclass=NullPool, echo=False))

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """
        Context manager for a unit of work.

        Yields:
            AsyncSession: An async database session.
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_schema(self) -> None:
        """Create the queue tables if they do not exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """
        Close all pooled connections.
        Should be called on process shutdown.
        """
        await self.engine.dispose()
        logger.info("Database connection closed")
