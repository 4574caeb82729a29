"""
Database engine configuration for the Digistore marketplace bot

Async SQLAlchemy 2.0 setup with connection pooling (PostgreSQL/asyncpg in
production, aiosqlite for local runs and tests)
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool

from config.config import DATABASE_URL, ENVIRONMENT
from src.database.models import Base

logger = logging.getLogger(__name__)


# Global engine and session maker
engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def build_engine(url: str = DATABASE_URL) -> AsyncEngine:
    """
    Create an async engine tuned for the backend behind ``url``

    Args:
        url: SQLAlchemy async database URL

    Returns:
        AsyncEngine instance
    """
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
        )

    is_production = ENVIRONMENT == "production"
    return create_async_engine(
        url,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=10 if is_production else 5,
        max_overflow=20 if is_production else 10,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=False,
        echo_pool=False,
        connect_args={
            "statement_cache_size": 0,
            "server_settings": {"application_name": "digistore_bot"},
        },
    )


def get_engine() -> AsyncEngine:
    """
    Create and configure the process-wide async database engine

    Returns:
        Configured AsyncEngine instance
    """
    global engine

    if engine is None:
        engine = build_engine(DATABASE_URL)
        logger.info(f"Database engine created - Environment: {ENVIRONMENT}, backend: {engine.dialect.name}")

    return engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """
    Create async session maker

    Returns:
        Configured async_sessionmaker instance
    """
    global AsyncSessionLocal

    if AsyncSessionLocal is None:
        AsyncSessionLocal = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,  # Important for async!
            autoflush=False,
        )

        logger.info("Session maker created")

    return AsyncSessionLocal


async def init_db() -> None:
    """
    Create all tables if they don't exist

    Used for sqlite development databases. For PostgreSQL run
    ``alembic upgrade head`` instead.
    """
    eng = get_engine()

    logger.info("Creating database tables...")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created successfully")


async def dispose_engine() -> None:
    """
    Dispose database engine and close all connections

    Call this on application shutdown
    """
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
        engine = None
        AsyncSessionLocal = None


async def check_connection() -> bool:
    """
    Check database connection

    Returns:
        True if connection successful, False otherwise
    """
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection check: OK")
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}", exc_info=True)
        return False
