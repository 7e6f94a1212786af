# partforge/main.py
"""
PartForge - Main Application

HTTP entry point for the part engine. Owns the database engine lifecycle
and renders PartErrors with one stable HTTP status per error code.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from . import __version__
from .settings import settings
from .logging import get_api_logger
from .db.engine import check_connection, dispose_engine
from .parts.errors import PartError
from .api import parts_router, structure_router

logger = get_api_logger()

# One HTTP status per error code
ERROR_STATUS = {
    "NOT_FOUND": 404,
    "DUPLICATE_NAME": 409,
    "DUPLICATE_STRUCTURE": 409,
    "CIRCULAR_REFERENCE": 409,
    "VERSION_NOT_EDITABLE": 409,
    "SELF_REFERENCE": 422,
    "VALIDATION_ERROR": 422,
    "LOCK_TIMEOUT": 503,
    "GENERAL_ERROR": 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Runs startup checks and releases the connection pool on shutdown.
    """
    logger.info("startup", version=__version__)
    if not check_connection():
        logger.warning("database_unreachable")
    else:
        logger.info("database_connected")

    yield

    dispose_engine()
    logger.info("shutdown")


app = FastAPI(
    title="PartForge",
    description="""
    Versioned entity transaction engine for electronic parts.

    - Parts evolve through immutable MAJOR.MINOR.PATCH versions
    - Every write is one transaction with row locks and an audit revision
    - Assembly structure is kept acyclic with time-bounded edges
    """,
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(PartError)
async def part_error_handler(request: Request, exc: PartError) -> JSONResponse:
    """Render a PartError as {"error": {...}} with its mapped status."""
    status_code = ERROR_STATUS.get(exc.code, 500)
    if status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.to_dict())
    else:
        logger.info("request_rejected", path=request.url.path, code=exc.code)

    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()}, headers=headers)


app.include_router(parts_router)
app.include_router(structure_router)


# Health check endpoints
@app.get("/health")
async def health_check():
    """Basic health check."""
    return {"status": "ok", "service": "partforge"}


@app.get("/health/db")
async def db_health_check():
    """Database health check."""
    if check_connection():
        return {"status": "ok", "database": "connected"}
    raise HTTPException(status_code=503, detail="Database connection failed")


def run():
    """Run the server (entry point for CLI)."""
    import uvicorn
    uvicorn.run(
        "partforge.main:app",
        host=settings.api_host,
        port=settings.api_port,
    )


if __name__ == "__main__":
    run()
