"""
Booking lifecycle enumerations.
"""

import enum


class BookingStatus(str, enum.Enum):
    """Booking request status, in lifecycle order."""
    NEW = "NEW"
    SOURCING = "SOURCING"  # Open for operator bids
    QUOTING = "QUOTING"  # At least one quote received
    OPERATOR_ASSIGNED = "OPERATOR_ASSIGNED"  # Quote accepted
    DRIVER_ASSIGNED = "DRIVER_ASSIGNED"  # Active trip created
    DRIVER_EN_ROUTE = "DRIVER_EN_ROUTE"  # Driver accepted the job
    ARRIVED = "ARRIVED"  # Driver at pickup
    PASSENGER_ONBOARD = "PASSENGER_ONBOARD"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    BILLING = "BILLING"  # Capture in flight
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class ServiceType(str, enum.Enum):
    """Trip service type."""
    POINT_TO_POINT = "POINT_TO_POINT"
    HOURLY_CHARTER = "HOURLY_CHARTER"


class VehicleCategory(str, enum.Enum):
    """Vehicle categories with a default rate in the pricing catalog."""
    LUXURY_SEDAN = "Luxury Sedan"
    LUXURY_SUV = "Luxury SUV"
    EXECUTIVE_SPRINTER = "Executive Sprinter"
    FIRST_CLASS_LIMO = "First Class Limo"


class QuoteStatus(str, enum.Enum):
    """Operator quote status."""
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"


class DeclineReason(str, enum.Enum):
    """Why a quote ended DECLINED."""
    EXPIRED = "EXPIRED"  # Swept past expires_at
    OUTBID = "OUTBID"  # A sibling quote was accepted
    WITHDRAWN = "WITHDRAWN"  # Operator pulled the bid
    REJECTED = "REJECTED"  # Requester turned it down
    REQUEST_CLOSED = "REQUEST_CLOSED"  # Request cancelled while bidding


class TripAction(str, enum.Enum):
    """Driver-triggered trip actions that do not depend on the tick process."""
    ARRIVE = "ARRIVE"
    PICKUP = "PICKUP"
    COMPLETE = "COMPLETE"
