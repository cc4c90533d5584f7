"""
FastAPI Application Entry Point.

This is the main application file for the Concierge Booking Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from concierge_backend.app.core.config import settings
from concierge_backend.app.core.logging_setup import setup_logging
from concierge_backend.app.core.observability import ObservabilityMiddleware
from concierge_backend.app.core.redis_client import close_redis, ping_redis
from concierge_backend.app.api.v1.router import router as api_v1_router
from concierge_backend.app.db.session import engine, Base
from concierge_backend.app.domain.marketplace.expiry_sweeper import QuoteExpirySweeper
from concierge_backend.app.domain.tracking.trip_tracker import trip_tracker
from concierge_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from concierge_backend.app.models.booking_request import BookingRequest
from concierge_backend.app.models.operator_quote import OperatorQuote
from concierge_backend.app.models.pricing_rule import PricingRule
from concierge_backend.app.models.active_trip import ActiveTrip
from concierge_backend.app.models.trip_location import TripLocation
from concierge_backend.app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)

quote_sweeper = QuoteExpirySweeper(interval_seconds=settings.quote_sweep_interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging and creates database tables on startup.
    2. Starts the quote expiry sweeper.
    3. On shutdown, stops the sweeper and every running trip tick process,
       then closes the realtime channel.
    """
    setup_logging(settings.log_level, settings.log_json, settings.environment)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if settings.quote_sweeper_enabled:
        quote_sweeper.start()

    logger.info("%s started (%s)", settings.app_name, settings.environment)
    yield

    await quote_sweeper.stop()
    await trip_tracker.shutdown()
    await close_redis()
    logger.info("%s stopped", settings.app_name)

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Booking lifecycle engine for chauffeured ground transportation",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and realtime channel reachability
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
        "tracked_trips": len(trip_tracker.running_trip_ids),
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Concierge Booking Backend API",
        "docs": "/docs",
        "health": "/health",
    }
