"""Async database engine and sessions (SQLite for development and tests, PostgreSQL in production)."""

import logging
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from fgpredict.config import Settings, get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

ASYNC_DRIVERS = {
    "sqlite://": "sqlite+aiosqlite://",
    "postgres://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
}


def get_database_url(url: str) -> str:
    """Rewrite a plain DATABASE_URL to its async driver."""
    for prefix, async_prefix in ASYNC_DRIVERS.items():
        if url.startswith(prefix):
            return async_prefix + url[len(prefix):]
    return url


def engine_options(url: str, settings: Settings) -> dict:
    """
    Engine keyword arguments for `url`.

    SQLite shares one connection (StaticPool) so an in-memory database
    survives across sessions. PostgreSQL statements are cancelled a few
    seconds after the batch job deadline, so a job that timed out on our
    side does not keep its locks.
    """
    if url.startswith("sqlite"):
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }

    options = {
        "pool_pre_ping": True,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_recycle": 300,
        "pool_reset_on_return": "rollback",
    }
    if settings.JOB_TIMEOUT_SECONDS:
        statement_timeout_ms = int((settings.JOB_TIMEOUT_SECONDS + 5) * 1000)
        options["connect_args"] = {
            "server_settings": {"statement_timeout": str(statement_timeout_ms)}
        }
    return options


DATABASE_URL = get_database_url(settings.DATABASE_URL)
is_sqlite = DATABASE_URL.startswith("sqlite")

async_engine = create_async_engine(DATABASE_URL, echo=False, **engine_options(DATABASE_URL, settings))

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; jobs commit or roll back themselves."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db() -> None:
    """Create the match, aggregate, pattern, prediction and job tables."""
    import fgpredict.models  # noqa: F401

    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info(f"[DB] Tables ready ({'sqlite' if is_sqlite else 'postgresql'})")


async def close_db() -> None:
    await async_engine.dispose()
    logger.info("[DB] Engine disposed")


def get_pool_status() -> dict:
    """Connection pool usage for /health."""
    if is_sqlite:
        return {"type": "sqlite", "pooled": False}

    pool = async_engine.pool
    return {
        "type": "postgresql",
        "pool_size": pool.size(),
        "checked_out": pool.checkedout(),
        "overflow": pool.overflow(),
    }
