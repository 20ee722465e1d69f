# src/contestrank/main.py

"""Main FastAPI application for contestrank."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .api import ratings
from .config import configure_logging, settings
from .db.session import AsyncSessionLocal, engine, init_models
from .exceptions import (
    BackfillInProgressError,
    ComputationError,
    ContestRankError,
    DataAccessError,
    ValidationError,
)
from .services.scheduler import RatingsScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan context manager for startup and shutdown events."""
    configure_logging(settings.log_level)
    await init_models()

    scheduler = None
    if settings.scheduler.enabled:
        scheduler = RatingsScheduler(AsyncSessionLocal, settings)
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    if scheduler is not None:
        await scheduler.stop()
    # Shutdown: Dispose of database connections gracefully
    await engine.dispose()


app = FastAPI(title="contestrank API", lifespan=lifespan)


# =============================================================================
# Global Exception Handlers
# =============================================================================


@app.exception_handler(ValidationError)
async def validation_error_handler(
    request: Request, exc: ValidationError
) -> JSONResponse:
    """Handle all validation errors -> 422."""
    logger.warning("Validation error: %s", exc.message, extra=exc.details)
    return JSONResponse(
        status_code=422,
        content={"detail": exc.message, "error_type": type(exc).__name__},
    )


@app.exception_handler(BackfillInProgressError)
async def backfill_in_progress_handler(
    request: Request, exc: BackfillInProgressError
) -> JSONResponse:
    """Handle overlapping backfills -> 409."""
    logger.warning("Backfill rejected: %s", exc.message, extra=exc.details)
    return JSONResponse(
        status_code=409,
        content={"detail": exc.message, "error_type": type(exc).__name__},
    )


@app.exception_handler(ComputationError)
async def computation_error_handler(
    request: Request, exc: ComputationError
) -> JSONResponse:
    """Handle rating math errors -> 500."""
    logger.error(
        "Rating computation error: %s", exc.message, extra=exc.details, exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Rating calculation failed",
            "error_type": type(exc).__name__,
        },
    )


@app.exception_handler(DataAccessError)
async def data_access_error_handler(
    request: Request, exc: DataAccessError
) -> JSONResponse:
    """Handle contest / rating store failures -> 500."""
    logger.error("Data access error: %s", exc.message, extra=exc.details, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": exc.message, "error_type": type(exc).__name__},
    )


@app.exception_handler(ContestRankError)
async def contestrank_error_handler(
    request: Request, exc: ContestRankError
) -> JSONResponse:
    """Catch-all for any other contestrank errors -> 500."""
    logger.error("contestrank error: %s", exc.message, extra=exc.details, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": exc.message, "error_type": type(exc).__name__},
    )


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_error_handler(
    request: Request, exc: SQLAlchemyError
) -> JSONResponse:
    """Catch-all for other SQLAlchemy database errors."""
    logger.error("Database error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "An internal database error occurred"},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions."""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "An internal server error occurred"},
    )


# Include routers into the main application
app.include_router(ratings.router)


@app.get("/", tags=["Root"])
async def read_root() -> dict[str, str]:
    """Provides a welcome message."""
    return {"message": "Welcome to the contestrank API"}


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for monitoring."""
    return {"status": "healthy"}
