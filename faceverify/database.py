"""
Database Connection and Session Management

This module handles database connectivity using SQLAlchemy's async engine
(asyncpg for PostgreSQL, aiosqlite for local runs and tests). Engines are
built explicitly and owned by the application lifespan.
"""
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from faceverify.config import DB_MAX_OVERFLOW, DB_POOL_SIZE

logger = logging.getLogger(__name__)

# Base class for ORM models
Base = declarative_base()


def make_engine(database_url: str) -> AsyncEngine:
    """Create an async engine; pool sizing applies to server databases only."""
    options = {
        "echo": False,  # Set to True for SQL debugging
        "pool_pre_ping": True,  # Enable connection health checks
    }
    if not database_url.startswith("sqlite"):
        options.update(pool_size=DB_POOL_SIZE, max_overflow=DB_MAX_OVERFLOW)
    return create_async_engine(database_url, **options)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create tables and verify connectivity."""
    # Register ORM models on Base.metadata
    from faceverify import models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database connection established successfully")
    except Exception as e:
        logger.error(f"Failed to connect to database: {e}")
        raise


async def close_db(engine: AsyncEngine) -> None:
    """Close database connection pool."""
    await engine.dispose()
    logger.info("Database connection pool closed")
