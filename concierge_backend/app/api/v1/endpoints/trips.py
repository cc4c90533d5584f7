"""
Active Trip API Endpoints.

Drivers report GPS fixes and manual status; requesters and admins follow
the trip live.
"""

from typing import List

from fastapi import APIRouter, Body, Depends, Path, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from concierge_backend.app.core.dependencies import get_current_actor
from concierge_backend.app.core.guards import require_role
from concierge_backend.app.db.session import get_db
from concierge_backend.app.domain.tracking.trip_tracker import trip_tracker
from concierge_backend.app.models.enums import UserRole
from concierge_backend.app.models.trip_location import TripLocation
from concierge_backend.app.schemas.actor import Actor
from concierge_backend.app.schemas.trip import (
    ActiveTripResponse,
    LocationRecord,
    ManualStatusRequest,
    TripLocationResponse,
)

router = APIRouter(prefix="/trips", tags=["Trips"])


@router.get("/{trip_id}", response_model=ActiveTripResponse)
async def get_trip(
    trip_id: int = Path(..., description="Trip ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """Current location, route, progress and ETA."""
    trip = await trip_tracker.get_trip(db, trip_id, actor)
    return ActiveTripResponse.from_trip(trip)


@router.get("/{trip_id}/locations", response_model=List[TripLocationResponse])
async def get_trip_locations(
    trip_id: int = Path(..., description="Trip ID"),
    limit: int = Query(50, ge=1, le=500),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """Most recent breadcrumbs first."""
    trip = await trip_tracker.get_trip(db, trip_id, actor)
    result = await db.execute(
        select(TripLocation)
        .where(TripLocation.trip_id == trip.id)
        .order_by(TripLocation.recorded_at.desc(), TripLocation.id.desc())
        .limit(limit)
    )
    return [TripLocationResponse.model_validate(loc) for loc in result.scalars().all()]


@router.post("/{trip_id}/location", response_model=ActiveTripResponse)
async def record_location(
    trip_id: int = Path(..., description="Trip ID"),
    location: LocationRecord = Body(...),
    actor: Actor = Depends(require_role([UserRole.DRIVER])),
    db: AsyncSession = Depends(get_db)
):
    """
    Ingest a GPS fix (assigned Driver only).

    Speed is derived from the previous fix; progress never decreases.
    """
    trip = await trip_tracker.ingest_location(
        db,
        trip_id,
        actor,
        latitude=location.latitude,
        longitude=location.longitude,
        heading=location.heading,
        recorded_at=location.recorded_at,
    )
    return ActiveTripResponse.from_trip(trip)


@router.post("/{trip_id}/status", response_model=ActiveTripResponse)
async def record_manual_status(
    trip_id: int = Path(..., description="Trip ID"),
    request: ManualStatusRequest = Body(...),
    actor: Actor = Depends(require_role([UserRole.DRIVER])),
    db: AsyncSession = Depends(get_db)
):
    """
    Driver-triggered status (assigned Driver only).

    ARRIVE -> ARRIVED, PICKUP -> IN_PROGRESS, COMPLETE -> COMPLETED.
    """
    trip = await trip_tracker.record_manual_status(db, trip_id, actor, request.action)
    return ActiveTripResponse.from_trip(trip)
