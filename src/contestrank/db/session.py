# src/contestrank/db/session.py

"""Database session management."""
import logging
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from contestrank.config import Settings, settings
from contestrank.db.models import Base

logger = logging.getLogger(__name__)


def _create_engine(config: Settings) -> AsyncEngine:
    """Create the async engine with appropriate configuration.

    SQLite doesn't support connection pooling, so we only configure
    pool settings for other databases like PostgreSQL.
    """
    url = config.database_url

    # SQLite doesn't support connection pooling
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=config.db_echo)

    # PostgreSQL and other databases get full pool configuration
    return create_async_engine(
        url,
        pool_size=config.db_pool_size,
        max_overflow=config.db_max_overflow,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=config.db_pool_recycle,
        echo=config.db_echo,
    )


# The engine is the core interface to the database.
engine = _create_engine(settings)

# autocommit=False: Transactions are committed manually, once per period.
# expire_on_commit=False: Objects remain accessible after commit.
AsyncSessionLocal = async_sessionmaker(
    bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
)


async def init_models(bind: AsyncEngine = engine) -> None:
    """Create any missing tables (development databases without migrations)."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that provides an async database session.

    Automatically handles rollback on exceptions and ensures
    the session is properly closed.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            logger.error(f"Database session error, rolling back: {e}")
            await session.rollback()
            raise
