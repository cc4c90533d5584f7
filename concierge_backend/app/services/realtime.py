"""
Realtime publish channel.

Publishes full-entity event envelopes to Redis pub/sub, one message per
scope channel (tenant, request, trip, user). Subscribers filter server-side
by subscribing only to the scopes they are entitled to.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List

from redis.exceptions import RedisError

from concierge_backend.app.core import redis_client as redis_module
from concierge_backend.app.models.active_trip import ActiveTrip
from concierge_backend.app.models.booking_request import BookingRequest
from concierge_backend.app.models.operator_quote import OperatorQuote
from concierge_backend.app.schemas.booking import BookingResponse
from concierge_backend.app.schemas.events import (
    ALL_EVENTS,
    EventEnvelope,
    request_channel,
    tenant_channel,
    trip_channel,
    user_channel,
)
from concierge_backend.app.schemas.quote import QuoteResponse
from concierge_backend.app.schemas.trip import ActiveTripResponse

logger = logging.getLogger(__name__)


def _unique(channels: Iterable[str]) -> List[str]:
    seen = []
    for channel in channels:
        if channel not in seen:
            seen.append(channel)
    return seen


def booking_scopes(booking: BookingRequest) -> List[str]:
    channels = [
        tenant_channel(booking.tenant_id),
        request_channel(booking.id),
        user_channel(booking.requester_id),
    ]
    if booking.assigned_operator_id:
        channels.append(user_channel(booking.assigned_operator_id))
    if booking.assigned_driver_id:
        channels.append(user_channel(booking.assigned_driver_id))
    return _unique(channels)


def trip_scopes(trip: ActiveTrip) -> List[str]:
    return _unique([
        tenant_channel(trip.tenant_id),
        trip_channel(trip.id),
        request_channel(trip.booking_id),
        user_channel(trip.driver_id),
        user_channel(trip.requester_id),
    ])


class RealtimePublisher:
    """
    Publisher for realtime booking and trip events.

    Callers serialize publication per request (or per trip) so a single
    subscriber sees one entity's events in the order they were applied.
    Redis failures are logged; the state change they describe is already
    committed and is not rolled back.
    """

    async def publish(self, event: str, scopes: List[str], data: Dict[str, Any]) -> EventEnvelope:
        if event not in ALL_EVENTS:
            raise ValueError(f"Event '{event}' is not a valid event. Valid events: {ALL_EVENTS}")

        envelope = EventEnvelope(
            event=event,
            timestamp=datetime.utcnow(),
            scopes=scopes,
            data=data,
        )
        message = envelope.model_dump_json()

        for channel in scopes:
            try:
                await redis_module.redis_client.publish(channel, message)
            except RedisError as e:
                logger.error("Failed to publish %s to channel %s: %s", event, channel, e)

        return envelope

    async def publish_booking(self, event: str, booking: BookingRequest, **extra: Any) -> EventEnvelope:
        data = BookingResponse.model_validate(booking).model_dump(mode="json")
        data.update(extra)
        return await self.publish(event, booking_scopes(booking), data)

    async def publish_quote(self, event: str, quote: OperatorQuote, booking: BookingRequest) -> EventEnvelope:
        data = QuoteResponse.model_validate(quote).model_dump(mode="json")
        scopes = booking_scopes(booking) + [user_channel(quote.operator_id)]
        return await self.publish(event, _unique(scopes), data)

    async def publish_trip(self, event: str, trip: ActiveTrip) -> EventEnvelope:
        data = ActiveTripResponse.from_trip(trip).model_dump(mode="json")
        return await self.publish(event, trip_scopes(trip), data)


# Global publisher instance
realtime_publisher = RealtimePublisher()
