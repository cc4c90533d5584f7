"""
Booking Request API Endpoints.

Concierges create and cancel requests, operators dispatch drivers, drivers
accept jobs, admins settle. Edge-level authorization is enforced by the
booking state machine; the guards here only gate by role.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from concierge_backend.app.core.dependencies import get_current_actor
from concierge_backend.app.core.guards import require_admin, require_role
from concierge_backend.app.db.session import get_db
from concierge_backend.app.domain.booking.state_machine import BookingStateMachine
from concierge_backend.app.models.booking_enums import BookingStatus
from concierge_backend.app.models.enums import UserRole
from concierge_backend.app.schemas.actor import Actor
from concierge_backend.app.schemas.booking import (
    BookingListResponse,
    BookingResponse,
    CancelRequest,
    DriverAssignment,
    TransitionRequest,
    TripSpec,
)
from concierge_backend.app.schemas.trip import ActiveTripResponse

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    trip_spec: TripSpec = Body(...),
    actor: Actor = Depends(require_role([UserRole.CONCIERGE, UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a booking request (Concierge/Admin).

    The request opens in SOURCING with an advisory fare estimate.
    """
    booking = await BookingStateMachine.create(db, actor, trip_spec)
    return BookingResponse.model_validate(booking)


@router.get("", response_model=BookingListResponse)
async def list_bookings(
    requester_id: Optional[int] = Query(None),
    operator_id: Optional[int] = Query(None),
    driver_id: Optional[int] = Query(None),
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    List booking requests visible to the caller.

    Concierges see their own requests, operators see assigned and
    open-for-bidding requests, drivers see their assignments.
    """
    bookings, total = await BookingStateMachine.list_requests(
        db,
        actor,
        requester_id=requester_id,
        operator_id=operator_id,
        driver_id=driver_id,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
    return BookingListResponse(
        bookings=[BookingResponse.model_validate(b) for b in bookings],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int = Path(..., description="Booking request ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    booking = await BookingStateMachine.get(db, booking_id, actor)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/transitions", response_model=BookingResponse)
async def transition_booking(
    booking_id: int = Path(..., description="Booking request ID"),
    request: TransitionRequest = Body(...),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Apply a lifecycle transition.

    Returns 409 ERR_ILLEGAL_TRANSITION when the edge is not permitted from
    the current status or not for the caller's role.
    """
    booking = await BookingStateMachine.transition(
        db, booking_id, request.target_status, actor, request.metadata
    )
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int = Path(..., description="Booking request ID"),
    request: CancelRequest = Body(...),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """Cancel a booking (requester or admin). A reason is required."""
    booking = await BookingStateMachine.cancel(db, booking_id, actor, request.reason)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/assign-driver", response_model=BookingResponse)
async def assign_driver(
    booking_id: int = Path(..., description="Booking request ID"),
    assignment: DriverAssignment = Body(...),
    actor: Actor = Depends(require_role([UserRole.OPERATOR, UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Dispatch a driver and vehicle (assigned Operator/Admin).

    Creates the active trip with its route seeded from pickup and dropoff.
    """
    booking = await BookingStateMachine.assign_driver(
        db, booking_id, assignment.driver_id, assignment.vehicle_id, actor
    )
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/driver-accept", response_model=BookingResponse)
async def driver_accept(
    booking_id: int = Path(..., description="Booking request ID"),
    actor: Actor = Depends(require_role([UserRole.DRIVER])),
    db: AsyncSession = Depends(get_db)
):
    """Assigned driver accepts the job; starts live trip tracking."""
    booking = await BookingStateMachine.transition(
        db, booking_id, BookingStatus.DRIVER_EN_ROUTE, actor, {"source": "driver"}
    )
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/settle", response_model=BookingResponse)
async def settle_booking(
    booking_id: int = Path(..., description="Booking request ID"),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Capture payment for a completed booking (Admin only).

    Retries capture for bookings left in BILLING by a failed attempt.
    """
    booking = await BookingStateMachine.settle(db, booking_id, actor)
    return BookingResponse.model_validate(booking)


@router.get("/{booking_id}/trip", response_model=ActiveTripResponse)
async def get_booking_trip(
    booking_id: int = Path(..., description="Booking request ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """Live tracking view for the booking's active trip."""
    trip = await BookingStateMachine.get_trip(db, booking_id, actor)
    return ActiveTripResponse.from_trip(trip)
