"""
Database connection and session management for Warden.

The engine and session factory are owned by a ``Database`` object created by
the composition root; nothing here is module-level state.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from .exceptions import StorageFailureError
from .logging import get_logger

logger = get_logger(__name__)

# Create declarative base
Base = declarative_base()


def _redact(url: str) -> str:
    """Drop credentials from a database URL before logging it."""
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"


class Database:
    """Async engine plus session factory for the durable stores."""

    def __init__(self, database_url: str, *, echo: bool = False):
        self.database_url = database_url
        engine_kwargs: dict = {"echo": echo}
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs["pool_pre_ping"] = True
        try:
            self.engine: AsyncEngine = create_async_engine(database_url, **engine_kwargs)
        except Exception as e:
            logger.error("Failed to create async database engine for %s: %s", _redact(database_url), e)
            raise StorageFailureError("engine creation", e) from e
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            autoflush=False,
            class_=AsyncSession,
        )
        logger.debug("Database configured: %s", _redact(database_url))

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def init_schema(self) -> None:
        """Create all Warden tables if they do not exist."""
        # Ensure all models are imported so Base.metadata has all tables
        from ..models import register_all_models

        register_all_models()
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except Exception as e:
            logger.error("Database initialization failed: %s", e)
            raise StorageFailureError("schema initialization", e) from e
        logger.info("Database tables initialized successfully")

    async def check_connection(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("Database connection check failed: %s", e)
            return False

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.debug("Database connections closed")
