"""
Booking lifecycle transition and authorization tables.

PASSENGER_ONBOARD and IN_PROGRESS form one "trip underway" phase: ARRIVED
may move to either, PASSENGER_ONBOARD may move on to IN_PROGRESS, and both
may complete.
"""

from typing import Dict, FrozenSet, Set, Tuple

from concierge_backend.app.models.booking_enums import BookingStatus
from concierge_backend.app.models.booking_request import BookingRequest
from concierge_backend.app.models.enums import UserRole
from concierge_backend.app.schemas.actor import Actor

S = BookingStatus

TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    S.NEW: frozenset({S.SOURCING, S.CANCELLED}),
    S.SOURCING: frozenset({S.QUOTING, S.CANCELLED}),
    S.QUOTING: frozenset({S.OPERATOR_ASSIGNED, S.CANCELLED}),
    S.OPERATOR_ASSIGNED: frozenset({S.DRIVER_ASSIGNED, S.CANCELLED}),
    S.DRIVER_ASSIGNED: frozenset({S.DRIVER_EN_ROUTE, S.CANCELLED}),
    S.DRIVER_EN_ROUTE: frozenset({S.ARRIVED, S.CANCELLED}),
    S.ARRIVED: frozenset({S.PASSENGER_ONBOARD, S.IN_PROGRESS, S.CANCELLED}),
    S.PASSENGER_ONBOARD: frozenset({S.IN_PROGRESS, S.COMPLETED, S.CANCELLED}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset({S.BILLING}),
    S.BILLING: frozenset({S.PAID}),
    S.PAID: frozenset(),
    S.CANCELLED: frozenset(),
}

# No generic transition leaves these; billing runs through settle().
TERMINAL_STATUSES = frozenset({S.COMPLETED, S.PAID, S.CANCELLED})

# Targets owned by a dedicated operation rather than transition().
MANAGED_TARGETS: Dict[BookingStatus, str] = {
    S.OPERATOR_ASSIGNED: "assign_operator",
    S.DRIVER_ASSIGNED: "assign_driver",
    S.BILLING: "settle",
    S.PAID: "settle",
}

UNDERWAY_STATUSES = frozenset({S.PASSENGER_ONBOARD, S.IN_PROGRESS})

# Statuses during which the tick process runs.
TRACKED_STATUSES = frozenset({
    S.DRIVER_EN_ROUTE,
    S.ARRIVED,
    S.PASSENGER_ONBOARD,
    S.IN_PROGRESS,
})

REQUESTER = "requester"
ASSIGNED_DRIVER = "assigned_driver"
ASSIGNED_OPERATOR = "assigned_operator"

_DRIVER_OR_SYSTEM = frozenset({ASSIGNED_DRIVER, UserRole.SYSTEM})
_COMPLETERS = frozenset({ASSIGNED_DRIVER, UserRole.ADMIN, UserRole.SYSTEM})

EDGE_PARTIES: Dict[Tuple[BookingStatus, BookingStatus], FrozenSet] = {
    (S.NEW, S.SOURCING): frozenset({REQUESTER, UserRole.ADMIN, UserRole.SYSTEM}),
    (S.SOURCING, S.QUOTING): frozenset({UserRole.ADMIN, UserRole.SYSTEM}),
    (S.DRIVER_ASSIGNED, S.DRIVER_EN_ROUTE): frozenset({ASSIGNED_DRIVER}),
    (S.DRIVER_EN_ROUTE, S.ARRIVED): _DRIVER_OR_SYSTEM,
    (S.ARRIVED, S.PASSENGER_ONBOARD): _DRIVER_OR_SYSTEM,
    (S.ARRIVED, S.IN_PROGRESS): _DRIVER_OR_SYSTEM,
    (S.PASSENGER_ONBOARD, S.IN_PROGRESS): _DRIVER_OR_SYSTEM,
    (S.PASSENGER_ONBOARD, S.COMPLETED): _COMPLETERS,
    (S.IN_PROGRESS, S.COMPLETED): _COMPLETERS,
}

CANCEL_PARTIES = frozenset({REQUESTER, UserRole.ADMIN})


def actor_parties(booking: BookingRequest, actor: Actor) -> Set:
    """Role plus the relationships the actor holds to this booking."""
    parties = {actor.role}
    if actor.user_id == booking.requester_id:
        parties.add(REQUESTER)
    if actor.role == UserRole.DRIVER and actor.user_id == booking.assigned_driver_id:
        parties.add(ASSIGNED_DRIVER)
    if actor.role == UserRole.OPERATOR and actor.user_id == booking.assigned_operator_id:
        parties.add(ASSIGNED_OPERATOR)
    return parties


def is_edge_allowed(current: BookingStatus, target: BookingStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def is_authorized(booking: BookingRequest, target: BookingStatus, actor: Actor) -> bool:
    allowed = CANCEL_PARTIES if target == S.CANCELLED else EDGE_PARTIES.get((booking.status, target), frozenset())
    return bool(allowed & actor_parties(booking, actor))
