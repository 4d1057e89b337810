"""FastAPI application for the clinic calendar."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinic_calendar import __version__
from clinic_calendar.api.middleware import RequestLoggingMiddleware
from clinic_calendar.api.routes import calendar, health
from clinic_calendar.config import get_settings
from clinic_calendar.scheduling.errors import ValidationError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting clinic calendar API")

    from clinic_calendar.core.database import init_db

    await init_db()
    logger.info("Clinic calendar API started successfully")

    yield

    logger.info("Shutting down clinic calendar API")


def create_app(with_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Clinic Calendar API",
        description="Clinician availability, bookings and time-zone-aware calendar views",
        version=__version__,
        lifespan=lifespan if with_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health.router, tags=["health"])
    app.include_router(calendar.router, prefix="/api/v1", tags=["calendar"])

    @app.exception_handler(ValidationError)
    async def validation_exception_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"error": "Validation failed", "detail": str(exc)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.debug_mode else None,
            },
        )

    return app
