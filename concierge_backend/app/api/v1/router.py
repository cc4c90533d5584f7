"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from concierge_backend.app.api.v1.endpoints import bookings, quotes, trips, pricing

router = APIRouter()

# Booking lifecycle
router.include_router(bookings.router)

# Quote marketplace
router.include_router(quotes.router)

# Live trip tracking
router.include_router(trips.router)

# Rate tables and fare estimates
router.include_router(pricing.router)
