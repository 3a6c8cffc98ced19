import logging
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from app.core.config import settings

logger = logging.getLogger(__name__)


def async_database_url(url: str) -> str:
    """
    Point plain postgres URLs at the asyncpg driver; anything that already
    names a driver (postgresql+asyncpg, sqlite+aiosqlite) is left alone.
    """
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def build_engine(url: str) -> AsyncEngine:
    return create_async_engine(
        async_database_url(url),
        pool_pre_ping=True,
        pool_recycle=1800,
        echo=False,
    )


_db_url = str(settings.DATABASE_URL)
logger.info("Using DATABASE_URL: %s...", async_database_url(_db_url)[:30])

engine = build_engine(_db_url)

SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def check_db_connection() -> bool:
    """
    Simple database connection test that returns True/False without raising exceptions.
    Useful for health checks where you want to test connectivity without failing the endpoint.
    """
    try:
        async with SessionLocal() as session:
            await session.execute(text("SELECT 1"))
            return True
    except Exception as e:
        logger.error("Database connection test failed: %s", e)
        return False


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session. Anything left uncommitted is rolled back on close.
    """
    async with SessionLocal() as session:
        yield session
