'''
Health checks: a plain liveness probe and one that also pings the database.
'''
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from app.db.session import get_db
from app.core.config import settings
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

@router.get("/health")
async def health():
    """
    Liveness probe. Does not require database connectivity.
    """
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "message": "API is running",
        "service": settings.APP_NAME
    }

@router.get("/health/full")
async def health_full(db: AsyncSession = Depends(get_db)):
    """
    Verifies both API and database connectivity.
    """
    health_status = {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "database": "unknown",
        "service": settings.APP_NAME
    }

    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        health_status["database"] = "connected"
        logger.info("Database health check successful")
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", str(e))
        health_status["status"] = "unhealthy"
        health_status["database"] = "disconnected"

    return health_status
