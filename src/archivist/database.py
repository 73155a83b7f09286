"""
Database session management for async SQLAlchemy operations.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlmodel import SQLModel

from ..config.settings import settings

logger = logging.getLogger(__name__)


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with pooling suited to the backend.

    PostgreSQL (asyncpg) gets a sized pool and statement timeouts.
    SQLite (aiosqlite) is used for local runs and tests and takes no pool args.
    """
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        echo=echo,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,   # Detect stale connections before use
        pool_recycle=3600,    # Recycle connections every hour
        pool_timeout=30,      # Wait max 30s for connection from pool
        connect_args={
            "command_timeout": 30,  # Timeout for individual queries (asyncpg)
            "server_settings": {
                "statement_timeout": "30000",  # PostgreSQL statement timeout (ms)
            },
        },
    )


engine = create_engine_for(settings.database_url, echo=settings.database_echo)

# Session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db(bind: AsyncEngine = engine):
    """Initialize database tables."""
    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def close_db():
    """Close database connections."""
    await engine.dispose()


@asynccontextmanager
async def get_session(
    factory: async_sessionmaker = async_session_factory,
) -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session that commits on success and rolls back on error."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error(f"Database session error, rolling back: {e}")
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency; stage code uses get_session() directly."""
    async with get_session() as session:
        yield session
