"""
Booking request schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional
from concierge_backend.app.models.booking_enums import BookingStatus, ServiceType


class Location(BaseModel):
    """Address plus coordinates."""
    address: str = Field(..., min_length=1, max_length=500)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class TripSpec(BaseModel):
    """
    Schema for creating a booking request.

    Required-field checks that depend on the service type (duration for
    hourly charters, dropoff or distance for point-to-point) are enforced by
    the booking state machine so they surface as ValidationError.
    """
    service_type: ServiceType
    pickup: Optional[Location] = None
    dropoff: Optional[Location] = None
    scheduled_at: Optional[datetime] = None
    duration_hours: Optional[float] = None
    duration_days: Optional[int] = None
    distance_km: Optional[float] = None
    vehicle_category: Optional[str] = None
    vehicle_sub_category: Optional[str] = None
    passenger_count: int = Field(1, ge=1)
    luggage_count: int = Field(0, ge=0)
    vip_preferences: List[str] = []


class TransitionRequest(BaseModel):
    """Schema for a generic status transition."""
    target_status: BookingStatus
    metadata: Dict[str, Any] = {}


class CancelRequest(BaseModel):
    """Schema for cancelling a booking."""
    reason: str = Field(..., min_length=1, max_length=1000)


class DriverAssignment(BaseModel):
    """Schema for assigning a driver and vehicle to a booking."""
    driver_id: int = Field(..., gt=0)
    vehicle_id: int = Field(..., gt=0)


class BookingResponse(BaseModel):
    """Schema for booking request response."""
    id: int
    tenant_id: int
    requester_id: int
    status: BookingStatus
    version: int
    service_type: ServiceType
    pickup_address: str
    pickup_lat: float
    pickup_lng: float
    dropoff_address: Optional[str]
    dropoff_lat: Optional[float]
    dropoff_lng: Optional[float]
    scheduled_at: datetime
    duration_hours: Optional[float]
    duration_days: Optional[int]
    distance_km: Optional[float]
    vehicle_category: str
    vehicle_sub_category: Optional[str]
    passenger_count: int
    luggage_count: int
    vip_preferences: Optional[List[str]]
    estimated_price: float
    final_price: Optional[float]
    selected_quote_id: Optional[int]
    assigned_operator_id: Optional[int]
    assigned_driver_id: Optional[int]
    assigned_vehicle_id: Optional[int]
    cancellation_reason: Optional[str]
    cancelled_at: Optional[datetime]
    cancelled_by: Optional[int]
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class BookingListResponse(BaseModel):
    """Schema for paginated booking list."""
    bookings: List[BookingResponse]
    total: int
    limit: int
    offset: int
