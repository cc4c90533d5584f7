"""Realtime channel names and event envelope."""

from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel

# Event names
REQUEST_STATUS_CHANGED = "request.status.changed"
QUOTE_RECEIVED = "quote.received"
QUOTE_ACCEPTED = "quote.accepted"
TRIP_LOCATION_UPDATED = "trip.location.updated"
TRIP_STATUS_CHANGED = "trip.status.changed"
PAYMENT_REFUND_REQUESTED = "payment.refund.requested"

ALL_EVENTS = [
    REQUEST_STATUS_CHANGED,
    QUOTE_RECEIVED,
    QUOTE_ACCEPTED,
    TRIP_LOCATION_UPDATED,
    TRIP_STATUS_CHANGED,
    PAYMENT_REFUND_REQUESTED,
]


def tenant_channel(tenant_id: int) -> str:
    return f"tenant:{tenant_id}"


def request_channel(request_id: int) -> str:
    return f"request:{request_id}"


def trip_channel(trip_id: int) -> str:
    return f"trip:{trip_id}"


def user_channel(user_id: int) -> str:
    return f"user:{user_id}"


class EventEnvelope(BaseModel):
    """Full-entity payload published on every scope channel."""

    event: str
    timestamp: datetime
    scopes: List[str]
    data: Dict[str, Any]
