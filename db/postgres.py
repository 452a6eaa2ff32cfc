"""PostgreSQL database connection with configurable connection pooling.

Pool configuration via settings / environment variables:
- POSTGRES_POOL_MIN_SIZE: Minimum connections (default: 2)
- POSTGRES_POOL_MAX_SIZE: Maximum connections (default: 10)
- POSTGRES_POOL_RECYCLE: Connection recycle time in seconds (default: 3600)
"""

from typing import AsyncIterator

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as SQLAlchemyTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from config import get_settings
from utils.logging import get_logger
from utils.retry import RetryPolicy, retry_async

logger = get_logger(__name__)

engine: AsyncEngine | None = None
async_session_maker: async_sessionmaker[AsyncSession] | None = None

# Exceptions that indicate a transient database problem
POSTGRES_RETRYABLE_EXCEPTIONS = (
    OperationalError,  # Connection issues, server disconnects
    InterfaceError,  # Interface-level errors
    SQLAlchemyTimeoutError,  # Pool checkout timeouts
    ConnectionError,  # Socket-level connection errors
    TimeoutError,  # General timeouts
    OSError,  # Low-level I/O errors
)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy declarative models."""

    pass


async def create_tables(target: AsyncEngine) -> None:
    """Create all tables registered on Base (idempotent)."""
    # Import models so their tables are registered on Base.metadata
    import models.postgres  # noqa: F401

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_postgres():
    """Initialize the PostgreSQL connection pool and create tables."""
    global engine, async_session_maker
    settings = get_settings()

    logger.info(
        f"Initializing PostgreSQL connection pool: "
        f"min={settings.postgres_pool_min_size}, max={settings.postgres_pool_max_size}, "
        f"recycle={settings.postgres_pool_recycle}s"
    )

    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=settings.postgres_pool_min_size,
        max_overflow=settings.postgres_pool_max_size - settings.postgres_pool_min_size,
        pool_recycle=settings.postgres_pool_recycle,
    )

    async_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    await retry_async(
        lambda: create_tables(engine),
        policy=RetryPolicy(max_attempts=4, backoff_base=1.0),
        retryable_exceptions=POSTGRES_RETRYABLE_EXCEPTIONS,
        operation_name="PostgreSQL table creation",
    )

    logger.info("PostgreSQL connection pool initialized successfully")


async def close_postgres():
    """Close PostgreSQL connection pool."""
    global engine
    if engine:
        await engine.dispose()
        engine = None
        logger.info("PostgreSQL connection pool closed")


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide session factory (after init_postgres)."""
    if async_session_maker is None:
        raise RuntimeError("PostgreSQL is not initialized; call init_postgres() first")
    return async_session_maker


async def get_db() -> AsyncIterator[AsyncSession]:
    """Get a database session from the pool."""
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
