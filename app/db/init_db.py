import asyncio
import logging
from sqlalchemy.ext.asyncio import AsyncEngine
from app.db.session import engine
from app.db.models import Base

logger = logging.getLogger(__name__)


async def init_db(bind: AsyncEngine = engine):
    """Create check-in tables and indexes if they do not exist."""
    try:
        async with bind.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialized successfully")
    except Exception as e:
        logger.error("Failed to initialize database: %s", e)
        raise


if __name__ == "__main__":
    asyncio.run(init_db())
