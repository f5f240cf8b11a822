"""
Database Connection and Session Management

This module handles database connectivity using SQLAlchemy with async drivers:
asyncpg for PostgreSQL in production, aiosqlite for local runs and tests.
"""
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool
from sqlalchemy import text
import logging

from facematch.config import DB_POOL_SIZE, DB_MAX_OVERFLOW

logger = logging.getLogger(__name__)

# Base class for ORM models
Base = declarative_base()


def create_engine(database_url: str) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    In-memory SQLite shares one connection so every session sees the same
    database; other backends get a sized pool with health checks.
    """
    if database_url.startswith("sqlite"):
        if ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite+aiosqlite:"):
            return create_async_engine(
                database_url,
                echo=False,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_async_engine(database_url, echo=False)

    return create_async_engine(
        database_url,
        echo=False,  # Set to True for SQL debugging
        pool_size=DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # Enable connection health checks
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine):
    """Verify connectivity and create any missing tables."""
    # Import models so they register with Base.metadata
    from facematch import models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database connection established successfully")
    except Exception as e:
        logger.error(f"Failed to connect to database: {e}")
        raise


async def close_db(engine: AsyncEngine):
    """Close database connection pool."""
    await engine.dispose()
    logger.info("Database connection pool closed")
