from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import ProgrammingError, OperationalError, IntegrityError
from app.core.config import settings
from app.core.logging import configure_logging
from app.api.routes import health, checkins
from app.schemas.common import ErrorResponse, DatabaseError
import logging

def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=settings.APP_NAME, debug=settings.APP_DEBUG)
    logger = logging.getLogger(__name__)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"], allow_credentials=True,
        allow_methods=["*"], allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(HTTPException)
    async def structured_http_exception_handler(request: Request, exc: HTTPException):
        # check-in errors already carry the ErrorResponse shape
        if isinstance(exc.detail, dict) and "error_code" in exc.detail:
            return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
        return await http_exception_handler(request, exc)

    @app.exception_handler(ProgrammingError)
    async def programming_error_handler(request: Request, exc: ProgrammingError):
        logger.error("Database programming error: %s", exc)
        if "does not exist" in str(exc) or "no such" in str(exc):
            return JSONResponse(
                status_code=503,
                content=ErrorResponse(
                    error="Database schema mismatch detected",
                    detail="The application schema is out of sync with the database. Please contact support.",
                    error_code="SCHEMA_MISMATCH",
                ).model_dump(),
            )
        return JSONResponse(
            status_code=500,
            content=DatabaseError(
                error="Database query error",
                detail="There was an error executing the database query",
            ).model_dump(),
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError):
        logger.error("Database operational error: %s", exc)
        return JSONResponse(
            status_code=503,
            content=ErrorResponse(
                error="Database connection error",
                detail="Unable to connect to the database. Please try again later.",
                error_code="DATABASE_CONNECTION_ERROR",
            ).model_dump(),
        )

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.error("Database integrity error: %s", exc)
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(
                error="Data integrity violation",
                detail="The operation violates database constraints",
                error_code="DATA_INTEGRITY_ERROR",
            ).model_dump(),
        )

    # routes
    app.include_router(health.router)
    app.include_router(checkins.router)
    return app

app = create_app()
