"""FastAPI application for the decision extraction service.

Features:
- Lifespan-managed PostgreSQL pool and Redis checkpoint backend
- Standardized error response schema for every failure path
- Pipeline failures reported with their phase and candidate index
"""

import platform
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from db import postgres as postgres_db
from db.postgres import close_postgres, init_postgres
from db.redis import close_redis, get_redis, init_redis
from models.errors import ErrorType, PipelineError, create_error_response
from routers import extraction
from utils.logging import configure_logging, get_logger

APP_VERSION = "0.1.0"
APP_NAME = "Decision Extraction API"

logger = get_logger(__name__)


async def check_postgres_connection() -> bool:
    """Verify PostgreSQL connection is healthy."""
    if postgres_db.engine is None:
        return False
    try:
        async with postgres_db.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"PostgreSQL health check failed: {e}")
        return False


async def check_redis_connection() -> bool:
    """Verify Redis connection is healthy."""
    try:
        await get_redis().ping()
        return True
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool and checkpoint backend for the app's lifetime."""
    settings = get_settings()
    configure_logging(settings.log_level, json_format=not settings.debug)

    logger.info(f"{APP_NAME} v{APP_VERSION} starting up...")
    await init_postgres()
    if settings.checkpoint_backend == "redis":
        await init_redis()
    logger.info(
        "Application started",
        extra={
            "version": APP_VERSION,
            "python": platform.python_version(),
            "llm_model": settings.llm_model,
            "checkpoint_backend": settings.checkpoint_backend,
        },
    )

    yield

    logger.info("Shutting down gracefully...")
    if settings.checkpoint_backend == "redis":
        await close_redis()
    await close_postgres()
    logger.info("Graceful shutdown complete")


app = FastAPI(
    title=APP_NAME,
    description="Two-phase decision extraction from AI coding conversations",
    version=APP_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request body validation errors with the standard envelope."""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error.get("loc", [])),
            "message": error.get("msg", "Validation error"),
            "type": error.get("type", "value_error"),
        }
        for error in exc.errors()
    ]
    logger.warning(
        f"Validation error on {request.method} {request.url.path}: "
        f"{len(errors)} error(s)"
    )
    response = create_error_response(
        error=ErrorType.VALIDATION_ERROR,
        message="Request validation failed",
        details={"errors": errors},
        path=str(request.url.path),
    )
    return JSONResponse(status_code=422, content=response)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Handle HTTP exceptions with the standard envelope."""
    error_type_map = {
        400: ErrorType.BAD_REQUEST,
        404: ErrorType.NOT_FOUND,
        409: ErrorType.CONFLICT,
        503: ErrorType.SERVICE_UNAVAILABLE,
    }
    error_type = error_type_map.get(exc.status_code, ErrorType.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    response = create_error_response(
        error=error_type,
        message=message,
        path=str(request.url.path),
    )
    return JSONResponse(status_code=exc.status_code, content=response)


@app.exception_handler(PipelineError)
async def pipeline_exception_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """Report a halted extraction run with its phase and candidate index."""
    response = create_error_response(
        error=type(exc).__name__,
        message=exc.message,
        details=exc.to_details(),
        path=str(request.url.path),
    )
    return JSONResponse(status_code=500, content=response)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions without exposing internals."""
    logger.exception(
        f"Unhandled exception on {request.method} {request.url.path}: "
        f"{type(exc).__name__}: {exc}"
    )
    response = create_error_response(
        error=ErrorType.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        path=str(request.url.path),
    )
    return JSONResponse(status_code=500, content=response)


app.include_router(extraction.router, prefix="/api", tags=["Extraction"])


@app.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/ready")
async def readiness_check():
    """Readiness probe; 503 when the database or checkpoint backend is down."""
    checks = {"postgres": await check_postgres_connection()}
    if get_settings().checkpoint_backend == "redis":
        checks["redis"] = await check_redis_connection()

    if not all(checks.values()):
        return JSONResponse(status_code=503, content={"status": "not_ready", "checks": checks})
    return {"status": "ready", "checks": checks}
