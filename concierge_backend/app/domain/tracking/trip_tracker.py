"""
Trip Tracker.

Owns one tick task per active trip in a process table keyed by trip id.
Each tick advances progress toward 100 over a fixed step count,
interpolates the vehicle position along the route waypoints, derives
heading, speed and ETA, and publishes trip.location.updated.

Real driver GPS fixes are ingested through the same trip lock, so any one
subscriber observes non-decreasing progress for a trip.

Status changes are never applied here directly: the tracker reports them
to the booking state machine through `status_reporter`, which mirrors the
status onto the trip and stops the tick task on completion or cancellation.
"""

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from concierge_backend.app.core.config import settings
from concierge_backend.app.core.exceptions import ConflictError, InsufficientPermissionsError, NotFoundError
from concierge_backend.app.core.locks import trip_locks
from concierge_backend.app.core.timeutils import naive_utc
from concierge_backend.app.db.session import AsyncSessionLocal
from concierge_backend.app.domain.booking.transitions import TRACKED_STATUSES, UNDERWAY_STATUSES
from concierge_backend.app.domain.tracking.geometry import (
    calculate_heading,
    haversine_distance,
    interpolate_position,
)
from concierge_backend.app.models.active_trip import ActiveTrip
from concierge_backend.app.models.booking_enums import BookingStatus, TripAction
from concierge_backend.app.models.trip_location import TripLocation
from concierge_backend.app.schemas.actor import Actor
from concierge_backend.app.schemas.events import TRIP_LOCATION_UPDATED
from concierge_backend.app.services.realtime import realtime_publisher

logger = logging.getLogger(__name__)

StatusReporter = Callable[..., Awaitable[object]]

ACTION_TARGETS = {
    TripAction.ARRIVE: BookingStatus.ARRIVED,
    TripAction.PICKUP: BookingStatus.IN_PROGRESS,
    TripAction.COMPLETE: BookingStatus.COMPLETED,
}


def _speed_kmh(distance_km: float, previous_at: Optional[datetime], now: datetime) -> float:
    if previous_at is None:
        return 0.0
    elapsed_hours = (now - previous_at).total_seconds() / 3600
    if elapsed_hours <= 0:
        return 0.0
    return max(0.0, distance_km / elapsed_hours)


def _eta(trip: ActiveTrip, progress: float, now: datetime) -> datetime:
    remaining_minutes = (100.0 - progress) / 100.0 * (trip.total_duration_minutes or 0.0)
    return now + timedelta(minutes=remaining_minutes)


class TripTracker:
    """Per-trip tick processes plus GPS ingestion and manual driver status."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        tick_interval: float = 1.0,
        total_steps: int = 200,
    ):
        self.session_factory = session_factory
        self.tick_interval = tick_interval
        self.total_steps = total_steps
        self.status_reporter: Optional[StatusReporter] = None
        self._tasks: Dict[int, asyncio.Task] = {}
        self._stopped: Set[int] = set()

    def is_running(self, trip_id: int) -> bool:
        task = self._tasks.get(trip_id)
        return task is not None and not task.done()

    @property
    def running_trip_ids(self):
        return [trip_id for trip_id in self._tasks if self.is_running(trip_id)]

    async def start(self, trip_id: int) -> bool:
        """
        Start the tick process for a trip.

        Returns:
            False when the trip already has a running tick process (no-op)
        """
        if self.is_running(trip_id):
            logger.debug("Trip %s already tracking; start ignored", trip_id)
            return False

        self._stopped.discard(trip_id)
        self._tasks[trip_id] = asyncio.create_task(self._run(trip_id), name=f"trip-tick-{trip_id}")
        logger.info("Trip %s tracking started", trip_id)
        return True

    async def stop(self, trip_id: int) -> None:
        """
        Stop the trip's tick process.

        After this returns no further tick or location event is published for
        the trip. Safe on unknown trips and from inside the tick task itself.
        """
        self._stopped.add(trip_id)
        task = self._tasks.pop(trip_id, None)

        if task is not None and task is not asyncio.current_task():
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            # Wait out any tick or ingestion already inside the trip lock
            async with trip_locks.hold(trip_id):
                pass

        if task is not None:
            logger.info("Trip %s tracking stopped", trip_id)

    async def resume(self, trip_id: int, restart: bool = True) -> None:
        """
        Undo a stop whose status change did not commit.

        Ingestion is accepted again; the tick process is restarted only when
        `restart` is set and none is running.
        """
        self._stopped.discard(trip_id)
        if restart and not self.is_running(trip_id):
            await self.start(trip_id)
        logger.warning("Trip %s tracking resumed after a failed status change", trip_id)

    def release(self, trip_id: int) -> None:
        """Forget a stopped trip once its terminal status is committed."""
        self._stopped.discard(trip_id)

    async def shutdown(self) -> None:
        for trip_id in list(self._tasks):
            await self.stop(trip_id)

    async def _run(self, trip_id: int) -> None:
        trip = None
        try:
            while True:
                await asyncio.sleep(self.tick_interval)
                trip = await self.tick(trip_id)
                if trip is None or trip.progress >= 100.0:
                    break

            if trip is not None and trip.status in UNDERWAY_STATUSES:
                await self._report_completion(trip)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Tick process for trip %s failed", trip_id)
        finally:
            if self._tasks.get(trip_id) is asyncio.current_task():
                del self._tasks[trip_id]

    async def _report_completion(self, trip: ActiveTrip) -> None:
        if self.status_reporter is None:
            logger.warning("Trip %s reached 100%% but no status reporter is wired", trip.id)
            return
        async with self.session_factory() as db:
            await self.status_reporter(
                db,
                trip.booking_id,
                BookingStatus.COMPLETED,
                Actor.system(trip.tenant_id),
                {"source": "trip_tracker"},
            )

    async def tick(self, trip_id: int, now: Optional[datetime] = None) -> Optional[ActiveTrip]:
        """
        Advance one step.

        Returns:
            The updated trip, or None when the trip is not running
        """
        if trip_id in self._stopped:
            return None

        async with trip_locks.hold(trip_id):
            if trip_id in self._stopped:
                return None

            async with self.session_factory() as db:
                trip = await db.get(ActiveTrip, trip_id)
                if trip is None or trip.status not in TRACKED_STATUSES:
                    return None

                now = now or datetime.utcnow()
                tick_count = trip.tick_count + 1
                progress = max(trip.progress, min(100.0, tick_count / self.total_steps * 100.0))

                previous = (trip.current_lat, trip.current_lng)
                position = interpolate_position(trip.waypoints, progress / 100.0)
                moved_km = haversine_distance(previous[0], previous[1], position[0], position[1])

                trip.speed_kmh = _speed_kmh(moved_km, trip.location_recorded_at, now)
                if moved_km > 0:
                    trip.heading = calculate_heading(previous, position)
                trip.current_lat, trip.current_lng = position
                trip.location_recorded_at = now
                trip.tick_count = tick_count
                trip.progress = progress
                trip.estimated_arrival = _eta(trip, progress, now)
                trip.updated_at = now

                db.add(TripLocation(
                    trip_id=trip.id,
                    driver_id=trip.driver_id,
                    latitude=position[0],
                    longitude=position[1],
                    heading=trip.heading,
                    speed_kmh=trip.speed_kmh,
                    progress=progress,
                    source="SIMULATED",
                    recorded_at=now,
                ))

                try:
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise

            await realtime_publisher.publish_trip(TRIP_LOCATION_UPDATED, trip)
            return trip

    @staticmethod
    async def get_trip(db: AsyncSession, trip_id: int, actor: Actor) -> ActiveTrip:
        trip = await db.get(ActiveTrip, trip_id, populate_existing=True)
        if trip is None or trip.tenant_id != actor.tenant_id:
            raise NotFoundError("ActiveTrip", trip_id)
        if actor.is_admin or actor.is_system or actor.user_id in (trip.driver_id, trip.requester_id):
            return trip
        raise NotFoundError("ActiveTrip", trip_id)

    async def ingest_location(
        self,
        db: AsyncSession,
        trip_id: int,
        actor: Actor,
        latitude: float,
        longitude: float,
        heading: Optional[float] = None,
        recorded_at: Optional[datetime] = None,
    ) -> ActiveTrip:
        """
        Apply a real GPS fix from the assigned driver.

        Progress comes from the remaining straight-line distance to dropoff
        and never decreases. Fixes older than the current location are kept
        as breadcrumbs only.

        Raises:
            NotFoundError: Unknown trip
            InsufficientPermissionsError: Caller is not the assigned driver
            ConflictError: Trip is not being tracked
        """
        trip = await self.get_trip(db, trip_id, actor)
        if actor.user_id != trip.driver_id:
            raise InsufficientPermissionsError("Only the assigned driver may report locations")

        async with trip_locks.hold(trip_id):
            try:
                trip = await db.get(ActiveTrip, trip_id, populate_existing=True)
                if trip_id in self._stopped or trip.status not in TRACKED_STATUSES:
                    raise ConflictError(
                        f"Trip {trip_id} is not being tracked",
                        {"status": trip.status.value},
                    )

                recorded_at = naive_utc(recorded_at) or datetime.utcnow()
                stale = trip.location_recorded_at is not None and recorded_at < trip.location_recorded_at
                previous = (trip.current_lat, trip.current_lng)
                position = (latitude, longitude)
                moved_km = haversine_distance(previous[0], previous[1], latitude, longitude)
                speed = _speed_kmh(moved_km, trip.location_recorded_at, recorded_at)
                if heading is None:
                    heading = calculate_heading(previous, position) if moved_km > 0 else trip.heading

                progress = trip.progress
                if not stale:
                    route_km = haversine_distance(trip.pickup_lat, trip.pickup_lng, trip.dropoff_lat, trip.dropoff_lng)
                    if route_km > 0:
                        remaining_km = haversine_distance(latitude, longitude, trip.dropoff_lat, trip.dropoff_lng)
                        progress = max(trip.progress, min(100.0, max(0.0, (1 - remaining_km / route_km) * 100.0)))

                    trip.current_lat, trip.current_lng = latitude, longitude
                    trip.heading = heading
                    trip.speed_kmh = speed
                    trip.location_recorded_at = recorded_at
                    trip.progress = progress
                    trip.estimated_arrival = _eta(trip, progress, datetime.utcnow())

                db.add(TripLocation(
                    trip_id=trip.id,
                    driver_id=trip.driver_id,
                    latitude=latitude,
                    longitude=longitude,
                    heading=heading,
                    speed_kmh=speed,
                    progress=progress,
                    source="GPS",
                    recorded_at=recorded_at,
                ))
                await db.commit()
            except Exception:
                await db.rollback()
                raise

            if not stale:
                await realtime_publisher.publish_trip(TRIP_LOCATION_UPDATED, trip)

        return trip

    async def record_manual_status(
        self,
        db: AsyncSession,
        trip_id: int,
        actor: Actor,
        action: TripAction,
    ) -> ActiveTrip:
        """
        Driver-triggered ARRIVE / PICKUP / COMPLETE.

        Forwarded to the booking state machine; COMPLETE carries the driver's
        assertion so it does not depend on tick progress.
        """
        trip = await self.get_trip(db, trip_id, actor)
        if self.status_reporter is None:
            raise RuntimeError("TripTracker.status_reporter is not configured")

        metadata = {"source": "driver", "action": action.value}
        if action == TripAction.COMPLETE:
            metadata["driver_asserted"] = True

        await self.status_reporter(db, trip.booking_id, ACTION_TARGETS[action], actor, metadata)
        return await self.get_trip(db, trip_id, actor)


# Global tracker instance
trip_tracker = TripTracker(
    tick_interval=settings.trip_tick_interval_seconds,
    total_steps=settings.trip_total_steps,
)
