"""
Booking State Machine (Domain Logic).

Owns the canonical status of a booking request and its assigned
operator, driver and vehicle.

Every mutation of a request, and the publication of its events, runs under
that request's lock, so subscribers observe one request's
request.status.changed events in the order they were applied. Operations
fail fast: on any error nothing is committed and the request is left exactly
as it was.

Flow:
1. create -> SOURCING (fare estimate attached)
2. QuoteMarketplace bidding -> QUOTING
3. assign_operator (quote acceptance + payment pre-authorization)
4. assign_driver (ActiveTrip seeded with the route)
5. driver accepts -> DRIVER_EN_ROUTE (trip tracker started)
6. ARRIVED -> PASSENGER_ONBOARD / IN_PROGRESS -> COMPLETED (tracker stopped)
7. settle: COMPLETED -> BILLING -> PAID (payment capture)
"""

import logging
from contextlib import AsyncExitStack
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from concierge_backend.app.core.config import settings
from concierge_backend.app.core.exceptions import (
    AppException,
    ConflictError,
    IllegalTransitionError,
    InsufficientPermissionsError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from concierge_backend.app.core.locks import request_locks, trip_locks
from concierge_backend.app.core.timeutils import naive_utc
from concierge_backend.app.domain.booking.transitions import (
    ASSIGNED_DRIVER,
    ASSIGNED_OPERATOR,
    MANAGED_TARGETS,
    TERMINAL_STATUSES,
    TRACKED_STATUSES,
    actor_parties,
    is_authorized,
    is_edge_allowed,
)
from concierge_backend.app.domain.marketplace.quote_marketplace import OPEN_FOR_BIDDING, QuoteMarketplace
from concierge_backend.app.domain.pricing.fare_engine import FareEngine
from concierge_backend.app.domain.pricing.pricing_catalog import pricing_catalog
from concierge_backend.app.domain.tracking.trip_tracker import trip_tracker
from concierge_backend.app.models.active_trip import ActiveTrip
from concierge_backend.app.models.booking_enums import BookingStatus, ServiceType
from concierge_backend.app.models.booking_request import BookingRequest
from concierge_backend.app.models.enums import UserRole
from concierge_backend.app.models.operator_quote import OperatorQuote
from concierge_backend.app.schemas.actor import Actor
from concierge_backend.app.schemas.booking import TripSpec
from concierge_backend.app.schemas.events import PAYMENT_REFUND_REQUESTED, REQUEST_STATUS_CHANGED, TRIP_STATUS_CHANGED
from concierge_backend.app.services.audit import AuditAction, log_event
from concierge_backend.app.services.distance import RouteEstimate, get_distance_estimator
from concierge_backend.app.services.payment_gateway import get_payment_gateway
from concierge_backend.app.services.realtime import realtime_publisher

logger = logging.getLogger(__name__)

# Booking statuses mirrored onto the ActiveTrip
TRIP_MIRRORED = frozenset({
    BookingStatus.DRIVER_EN_ROUTE,
    BookingStatus.ARRIVED,
    BookingStatus.PASSENGER_ONBOARD,
    BookingStatus.IN_PROGRESS,
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
})


async def _estimate_route(origin: Tuple[float, float], destination: Tuple[float, float]) -> RouteEstimate:
    try:
        return await get_distance_estimator().estimate(origin, destination)
    except AppException:
        raise
    except Exception as e:
        logger.error("Distance estimation failed for %s -> %s: %s", origin, destination, e)
        raise UpstreamError("distance", type(e).__name__)


class BookingStateMachine:

    @staticmethod
    async def _load(db: AsyncSession, request_id: int, actor: Actor) -> BookingRequest:
        booking = await db.get(BookingRequest, request_id, populate_existing=True)
        if booking is None or booking.tenant_id != actor.tenant_id:
            raise NotFoundError("BookingRequest", request_id)
        return booking

    @staticmethod
    async def _active_trip(db: AsyncSession, booking_id: int) -> Optional[ActiveTrip]:
        result = await db.execute(
            select(ActiveTrip).where(ActiveTrip.booking_id == booking_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _can_view(booking: BookingRequest, actor: Actor) -> bool:
        if actor.is_admin or actor.is_system:
            return True
        if actor.role == UserRole.CONCIERGE:
            return booking.requester_id == actor.user_id
        if actor.role == UserRole.OPERATOR:
            return booking.assigned_operator_id == actor.user_id or booking.status in OPEN_FOR_BIDDING
        if actor.role == UserRole.DRIVER:
            return booking.assigned_driver_id == actor.user_id
        return False

    @staticmethod
    async def create(db: AsyncSession, actor: Actor, trip_spec: TripSpec) -> BookingRequest:
        """
        Create a booking request in SOURCING with an advisory fare estimate.

        Raises:
            InsufficientPermissionsError: Caller is not a concierge or admin
            ValidationError: Missing pickup, schedule or vehicle category,
                missing duration (hourly) or dropoff/distance (point-to-point)
            UpstreamError: Distance estimation failed
        """
        if actor.role not in (UserRole.CONCIERGE, UserRole.ADMIN):
            raise InsufficientPermissionsError("Only concierges and admins may create booking requests")

        missing = []
        if trip_spec.pickup is None:
            missing.append("pickup")
        if trip_spec.scheduled_at is None:
            missing.append("scheduled_at")
        if not trip_spec.vehicle_category or not trip_spec.vehicle_category.strip():
            missing.append("vehicle_category")
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", {"missing": missing})

        distance_km = trip_spec.distance_km
        duration_days = trip_spec.duration_days

        if trip_spec.service_type == ServiceType.HOURLY_CHARTER:
            if trip_spec.duration_hours is None:
                raise ValidationError("duration_hours is required for hourly charters", {"missing": ["duration_hours"]})
            if duration_days is None:
                duration_days = 1
            if duration_days < 1:
                raise ValidationError("duration_days must be at least 1", {"duration_days": duration_days})
        else:
            if trip_spec.dropoff is None and distance_km is None:
                raise ValidationError(
                    "Point-to-point bookings require a dropoff or distance_km",
                    {"missing": ["dropoff"]},
                )
            if distance_km is None:
                route = await _estimate_route(
                    (trip_spec.pickup.latitude, trip_spec.pickup.longitude),
                    (trip_spec.dropoff.latitude, trip_spec.dropoff.longitude),
                )
                distance_km = route.distance_km

        rule = await pricing_catalog.get_rule(db, actor.tenant_id, trip_spec.vehicle_category)
        fare = FareEngine.estimate(
            trip_spec.service_type,
            rule,
            distance_km=distance_km or 0.0,
            duration_days=duration_days or 1,
            duration_hours=trip_spec.duration_hours or 0.0,
            location_text=trip_spec.pickup.address,
        )

        dropoff = trip_spec.dropoff
        booking = BookingRequest(
            tenant_id=actor.tenant_id,
            requester_id=actor.user_id,
            status=BookingStatus.SOURCING,
            version=1,
            service_type=trip_spec.service_type,
            pickup_address=trip_spec.pickup.address,
            pickup_lat=trip_spec.pickup.latitude,
            pickup_lng=trip_spec.pickup.longitude,
            dropoff_address=dropoff.address if dropoff else None,
            dropoff_lat=dropoff.latitude if dropoff else None,
            dropoff_lng=dropoff.longitude if dropoff else None,
            scheduled_at=naive_utc(trip_spec.scheduled_at),
            duration_hours=trip_spec.duration_hours,
            duration_days=duration_days,
            distance_km=distance_km,
            vehicle_category=trip_spec.vehicle_category,
            vehicle_sub_category=trip_spec.vehicle_sub_category,
            passenger_count=trip_spec.passenger_count,
            luggage_count=trip_spec.luggage_count,
            vip_preferences=list(dict.fromkeys(trip_spec.vip_preferences)),
            estimated_price=fare.display_total,
        )

        try:
            db.add(booking)
            await db.flush()
            await log_event(
                db,
                AuditAction.BOOKING_CREATED,
                actor=actor,
                entity_type="booking",
                entity_id=booking.id,
                metadata={"estimate": fare.to_dict(), "vehicle_category": booking.vehicle_category},
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        async with request_locks.hold(booking.id):
            await realtime_publisher.publish_booking(REQUEST_STATUS_CHANGED, booking, previous_status=None)

        logger.info("Booking %s created by user %s (estimate %.2f)", booking.id, actor.user_id, booking.estimated_price)
        return booking

    @staticmethod
    async def get(db: AsyncSession, request_id: int, actor: Actor) -> BookingRequest:
        booking = await BookingStateMachine._load(db, request_id, actor)
        if not BookingStateMachine._can_view(booking, actor):
            raise NotFoundError("BookingRequest", request_id)
        return booking

    @staticmethod
    async def get_trip(db: AsyncSession, request_id: int, actor: Actor) -> ActiveTrip:
        booking = await BookingStateMachine.get(db, request_id, actor)
        trip = await BookingStateMachine._active_trip(db, booking.id)
        if trip is None:
            raise NotFoundError("ActiveTrip")
        return trip

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        actor: Actor,
        requester_id: Optional[int] = None,
        operator_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        status: Optional[BookingStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[BookingRequest], int]:
        """
        List requests in the caller's tenant, newest first.

        The caller's role narrows the base set: concierges see their own,
        operators see assigned or open-for-bidding, drivers see assigned.
        """
        query = select(BookingRequest).where(BookingRequest.tenant_id == actor.tenant_id)

        if actor.role == UserRole.CONCIERGE:
            query = query.where(BookingRequest.requester_id == actor.user_id)
        elif actor.role == UserRole.OPERATOR:
            query = query.where(or_(
                BookingRequest.assigned_operator_id == actor.user_id,
                BookingRequest.status.in_(OPEN_FOR_BIDDING),
            ))
        elif actor.role == UserRole.DRIVER:
            query = query.where(BookingRequest.assigned_driver_id == actor.user_id)

        if requester_id is not None:
            query = query.where(BookingRequest.requester_id == requester_id)
        if operator_id is not None:
            query = query.where(BookingRequest.assigned_operator_id == operator_id)
        if driver_id is not None:
            query = query.where(BookingRequest.assigned_driver_id == driver_id)
        if status is not None:
            query = query.where(BookingRequest.status == status)

        total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()

        query = query.order_by(BookingRequest.created_at.desc(), BookingRequest.id.desc()).limit(limit).offset(offset)
        query = query.execution_options(populate_existing=True)
        result = await db.execute(query)
        return list(result.scalars().all()), total

    @staticmethod
    def _check_transition(
        booking: BookingRequest,
        target: BookingStatus,
        actor: Actor,
        metadata: Dict[str, Any],
        trip: Optional[ActiveTrip],
    ) -> None:
        current = booking.status
        if current in TERMINAL_STATUSES:
            raise IllegalTransitionError(current, target, "booking is in a terminal state")
        if target in MANAGED_TARGETS:
            raise IllegalTransitionError(current, target, f"use {MANAGED_TARGETS[target]}")
        if not is_edge_allowed(current, target):
            raise IllegalTransitionError(current, target)
        if not is_authorized(booking, target, actor):
            raise IllegalTransitionError(current, target, f"role {actor.role.value} is not authorized for this edge")

        if target == BookingStatus.CANCELLED:
            reason = metadata.get("reason")
            if not isinstance(reason, str) or not reason.strip():
                raise ValidationError("A cancellation reason is required", {"missing": ["reason"]})

        if target == BookingStatus.COMPLETED:
            if trip is None:
                raise IllegalTransitionError(current, target, "no active trip")
            asserted = metadata.get("driver_asserted") is True and ASSIGNED_DRIVER in actor_parties(booking, actor)
            if trip.progress < 100.0 and not asserted:
                raise IllegalTransitionError(current, target, "trip progress below 100 and not driver-asserted")

    @staticmethod
    async def transition(
        db: AsyncSession,
        request_id: int,
        target_status: BookingStatus,
        actor: Actor,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> BookingRequest:
        """
        Apply one edge of the lifecycle.

        Cancellation and completion stop the trip's tick process as part of
        the transition. Entering DRIVER_EN_ROUTE starts it. Completion is
        followed by an automatic settlement attempt.

        Raises:
            NotFoundError: Unknown request (or another tenant's)
            IllegalTransitionError: Edge not in the table, owned by a
                dedicated operation, or not permitted for the actor
            ValidationError: Cancellation without a reason
        """
        target = BookingStatus(target_status)
        metadata = dict(metadata or {})

        async with request_locks.hold(request_id):
            booking = await BookingStateMachine._load(db, request_id, actor)
            trip = await BookingStateMachine._active_trip(db, booking.id)
            previous = booking.status
            BookingStateMachine._check_transition(booking, target, actor, metadata, trip)

            stops_tracking = trip is not None and target in (BookingStatus.CANCELLED, BookingStatus.COMPLETED)
            trip_id = trip.id if trip is not None else None
            was_ticking = stops_tracking and trip_tracker.is_running(trip_id)
            if stops_tracking:
                await trip_tracker.stop(trip_id)

            refund_signalled = target == BookingStatus.CANCELLED and booking.selected_quote_id is not None

            async with AsyncExitStack() as stack:
                if trip is not None:
                    await stack.enter_async_context(trip_locks.hold(trip.id))

                try:
                    now = datetime.utcnow()
                    if trip is not None:
                        await db.refresh(trip)

                    booking.status = target
                    booking.version += 1
                    booking.updated_at = now

                    if target == BookingStatus.CANCELLED:
                        booking.cancellation_reason = metadata["reason"].strip()
                        booking.cancelled_at = now
                        booking.cancelled_by = actor.user_id
                        await QuoteMarketplace.close_pending_quotes(db, booking.id, now)
                    elif target == BookingStatus.COMPLETED:
                        booking.completed_at = now

                    if trip is not None and target in TRIP_MIRRORED:
                        trip.status = target
                        trip.updated_at = now
                        if target == BookingStatus.DRIVER_EN_ROUTE:
                            trip.started_at = now
                        elif target == BookingStatus.COMPLETED:
                            trip.completed_at = now
                            trip.estimated_arrival = now

                    action = AuditAction.BOOKING_CANCELLED if target == BookingStatus.CANCELLED else AuditAction.BOOKING_STATUS_CHANGED
                    await log_event(
                        db,
                        action,
                        actor=actor,
                        entity_type="booking",
                        entity_id=booking.id,
                        metadata={"from": previous.value, "to": target.value, "version": booking.version, "context": metadata},
                    )
                    if refund_signalled:
                        await log_event(
                            db,
                            AuditAction.REFUND_REQUESTED,
                            actor=actor,
                            entity_type="booking",
                            entity_id=booking.id,
                            metadata={"payment_ref": booking.payment_ref, "amount": booking.final_price},
                        )
                    await db.commit()
                except Exception:
                    await db.rollback()
                    if stops_tracking and previous in TRACKED_STATUSES:
                        await trip_tracker.resume(trip_id, restart=was_ticking)
                    raise

                if stops_tracking:
                    trip_tracker.release(trip_id)
                await realtime_publisher.publish_booking(REQUEST_STATUS_CHANGED, booking, previous_status=previous.value)
                if trip is not None and target in TRIP_MIRRORED:
                    await realtime_publisher.publish_trip(TRIP_STATUS_CHANGED, trip)

            if refund_signalled:
                logger.info(
                    "Refund requested for booking %s (payment_ref=%s, amount=%s)",
                    booking.id, booking.payment_ref, booking.final_price,
                )
                await realtime_publisher.publish_booking(
                    PAYMENT_REFUND_REQUESTED,
                    booking,
                    refund_amount=booking.final_price,
                    refund_reason=booking.cancellation_reason,
                )

            if trip is not None and target == BookingStatus.DRIVER_EN_ROUTE:
                await trip_tracker.start(trip.id)

        logger.info("Booking %s: %s -> %s by %s %s", booking.id, previous.value, target.value, actor.role.value, actor.user_id)

        if target == BookingStatus.COMPLETED and settings.auto_settle_on_completion:
            booking = await BookingStateMachine._auto_settle(db, booking)

        return booking

    @staticmethod
    async def cancel(db: AsyncSession, request_id: int, actor: Actor, reason: str) -> BookingRequest:
        return await BookingStateMachine.transition(
            db, request_id, BookingStatus.CANCELLED, actor, {"reason": reason}
        )

    @staticmethod
    async def assign_operator(db: AsyncSession, request_id: int, quote_id: int, actor: Actor) -> BookingRequest:
        """
        Accept a quote and pre-authorize its price.

        Pre-authorization runs inside the acceptance critical section; an
        UpstreamError from the payment gateway aborts the whole settlement
        and leaves the request in QUOTING.

        Raises:
            NotFoundError: Unknown request or quote
            ConflictError: Request not in QUOTING, quote decided or expired
            UpstreamError: Payment pre-authorization failed
        """
        booking = await BookingStateMachine._load(db, request_id, actor)
        quote = await db.get(OperatorQuote, quote_id)
        if quote is None or quote.request_id != booking.id:
            raise NotFoundError("OperatorQuote", quote_id)
        if booking.status != BookingStatus.QUOTING:
            raise ConflictError(
                f"Booking request {request_id} is not in QUOTING",
                {"status": booking.status.value},
            )

        async def preauthorize(settled: BookingRequest, accepted: OperatorQuote) -> None:
            settled.payment_ref = await get_payment_gateway().preauthorize(
                settled.final_price, f"booking-{settled.id}"
            )
            await log_event(
                db,
                AuditAction.PAYMENT_PREAUTHORIZED,
                actor=actor,
                entity_type="booking",
                entity_id=settled.id,
                metadata={"amount": settled.final_price, "payment_ref": settled.payment_ref, "quote_id": accepted.id},
            )

        await QuoteMarketplace.accept_quote(db, quote_id, actor, request_id=request_id, before_commit=preauthorize)
        return await BookingStateMachine._load(db, request_id, actor)

    @staticmethod
    async def assign_driver(
        db: AsyncSession,
        request_id: int,
        driver_id: int,
        vehicle_id: int,
        actor: Actor,
    ) -> BookingRequest:
        """
        Dispatch a driver and vehicle; creates the ActiveTrip.

        Raises:
            ConflictError: Request not in OPERATOR_ASSIGNED, or already has a trip
            IllegalTransitionError: Caller is not the assigned operator or an admin
            UpstreamError: Route estimation failed
        """
        async with request_locks.hold(request_id):
            try:
                booking = await BookingStateMachine._load(db, request_id, actor)
                if booking.status != BookingStatus.OPERATOR_ASSIGNED:
                    raise ConflictError(
                        f"Booking request {request_id} is not awaiting a driver",
                        {"status": booking.status.value},
                    )
                if not (actor.is_admin or ASSIGNED_OPERATOR in actor_parties(booking, actor)):
                    raise IllegalTransitionError(
                        booking.status,
                        BookingStatus.DRIVER_ASSIGNED,
                        "only the assigned operator or an admin may assign a driver",
                    )
                if await BookingStateMachine._active_trip(db, booking.id) is not None:
                    raise ConflictError(f"Booking request {request_id} already has an active trip")

                pickup = (booking.pickup_lat, booking.pickup_lng)
                if booking.dropoff_lat is not None and booking.dropoff_lng is not None:
                    dropoff = (booking.dropoff_lat, booking.dropoff_lng)
                    dropoff_address = booking.dropoff_address
                    route = await _estimate_route(pickup, dropoff)
                else:
                    # Hourly charter without a fixed destination
                    dropoff = pickup
                    dropoff_address = None
                    route = RouteEstimate(
                        distance_km=0.0,
                        duration_minutes=(booking.duration_hours or 0.0) * 60,
                        waypoints=[list(pickup), list(pickup)],
                    )

                now = datetime.utcnow()
                trip = ActiveTrip(
                    tenant_id=booking.tenant_id,
                    booking_id=booking.id,
                    requester_id=booking.requester_id,
                    driver_id=driver_id,
                    vehicle_id=vehicle_id,
                    status=BookingStatus.DRIVER_ASSIGNED,
                    current_lat=pickup[0],
                    current_lng=pickup[1],
                    heading=0.0,
                    speed_kmh=0.0,
                    pickup_lat=pickup[0],
                    pickup_lng=pickup[1],
                    pickup_address=booking.pickup_address,
                    dropoff_lat=dropoff[0],
                    dropoff_lng=dropoff[1],
                    dropoff_address=dropoff_address,
                    waypoints=route.waypoints,
                    total_distance_km=route.distance_km,
                    total_duration_minutes=route.duration_minutes,
                    progress=0.0,
                    tick_count=0,
                    estimated_arrival=None,
                    created_at=now,
                    updated_at=now,
                )
                db.add(trip)

                booking.assigned_driver_id = driver_id
                booking.assigned_vehicle_id = vehicle_id
                booking.status = BookingStatus.DRIVER_ASSIGNED
                booking.version += 1
                booking.updated_at = now

                await db.flush()
                await log_event(
                    db,
                    AuditAction.DRIVER_ASSIGNED,
                    actor=actor,
                    entity_type="booking",
                    entity_id=booking.id,
                    metadata={"driver_id": driver_id, "vehicle_id": vehicle_id, "trip_id": trip.id, "version": booking.version},
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

            await realtime_publisher.publish_booking(
                REQUEST_STATUS_CHANGED, booking, previous_status=BookingStatus.OPERATOR_ASSIGNED.value
            )
            await realtime_publisher.publish_trip(TRIP_STATUS_CHANGED, trip)

        logger.info("Driver %s assigned to booking %s (trip %s)", driver_id, booking.id, trip.id)
        return booking

    @staticmethod
    async def settle(db: AsyncSession, request_id: int, actor: Actor) -> BookingRequest:
        """
        Capture the final fare: COMPLETED -> BILLING -> PAID.

        A capture failure leaves the request in BILLING and re-raises the
        UpstreamError; calling settle again from BILLING retries the capture.

        Raises:
            InsufficientPermissionsError: Caller is not an admin or the system
            ConflictError: Request is neither COMPLETED nor BILLING
            UpstreamError: Payment capture failed
        """
        if actor.role not in (UserRole.ADMIN, UserRole.SYSTEM):
            raise InsufficientPermissionsError("Only admins may settle bookings")

        async with request_locks.hold(request_id):
            try:
                booking = await BookingStateMachine._load(db, request_id, actor)
                if booking.status == BookingStatus.COMPLETED:
                    booking.status = BookingStatus.BILLING
                    booking.version += 1
                    booking.updated_at = datetime.utcnow()
                    await log_event(
                        db,
                        AuditAction.BOOKING_STATUS_CHANGED,
                        actor=actor,
                        entity_type="booking",
                        entity_id=booking.id,
                        metadata={"from": BookingStatus.COMPLETED.value, "to": BookingStatus.BILLING.value, "version": booking.version},
                    )
                    await db.commit()
                    await realtime_publisher.publish_booking(
                        REQUEST_STATUS_CHANGED, booking, previous_status=BookingStatus.COMPLETED.value
                    )
                elif booking.status != BookingStatus.BILLING:
                    raise ConflictError(
                        f"Booking request {request_id} cannot be settled from {booking.status.value}",
                        {"status": booking.status.value},
                    )
            except Exception:
                await db.rollback()
                raise

            gateway = get_payment_gateway()
            amount = booking.final_price if booking.final_price is not None else booking.estimated_price

            try:
                if not booking.payment_ref:
                    booking.payment_ref = await gateway.preauthorize(amount, f"booking-{booking.id}")
                await gateway.capture(booking.payment_ref, amount)
            except UpstreamError as e:
                logger.error("Payment capture failed for booking %s: %s", booking.id, e.message)
                try:
                    await log_event(
                        db,
                        AuditAction.PAYMENT_CAPTURE_FAILED,
                        actor=actor,
                        entity_type="booking",
                        entity_id=booking.id,
                        metadata={"amount": amount, "error": e.message},
                    )
                    await db.commit()
                except Exception:
                    await db.rollback()
                    logger.exception("Could not record capture failure for booking %s", booking.id)
                raise

            try:
                booking.status = BookingStatus.PAID
                booking.version += 1
                booking.updated_at = datetime.utcnow()
                await log_event(
                    db,
                    AuditAction.PAYMENT_CAPTURED,
                    actor=actor,
                    entity_type="booking",
                    entity_id=booking.id,
                    metadata={"amount": amount, "payment_ref": booking.payment_ref, "version": booking.version},
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

            await realtime_publisher.publish_booking(
                REQUEST_STATUS_CHANGED, booking, previous_status=BookingStatus.BILLING.value
            )

        logger.info("Booking %s paid (%.2f captured)", booking.id, amount)
        return booking

    @staticmethod
    async def _auto_settle(db: AsyncSession, booking: BookingRequest) -> BookingRequest:
        try:
            return await BookingStateMachine.settle(db, booking.id, Actor.system(booking.tenant_id))
        except UpstreamError:
            logger.warning("Automatic settlement of booking %s failed; left in BILLING for retry", booking.id)
            return booking


# The tracker reports driver and tick-driven status changes through the state machine
trip_tracker.status_reporter = BookingStateMachine.transition
