"""
Active trip and tracking schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional
from concierge_backend.app.models.booking_enums import BookingStatus, TripAction


class LocationRecord(BaseModel):
    """Schema for ingesting a driver GPS fix."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    heading: Optional[float] = Field(None, ge=0, lt=360)
    recorded_at: Optional[datetime] = None


class ManualStatusRequest(BaseModel):
    """Schema for a driver-triggered trip action."""
    action: TripAction


class CurrentLocation(BaseModel):
    latitude: float
    longitude: float
    heading: float
    speed_kmh: float
    recorded_at: Optional[datetime]


class RouteResponse(BaseModel):
    pickup_lat: float
    pickup_lng: float
    pickup_address: str
    dropoff_lat: float
    dropoff_lng: float
    dropoff_address: Optional[str]
    waypoints: List[List[float]]
    total_distance_km: float
    total_duration_minutes: float


class ActiveTripResponse(BaseModel):
    """Schema for the live tracking view of a trip."""
    id: int
    tenant_id: int
    booking_id: int
    requester_id: int
    driver_id: int
    vehicle_id: int
    status: BookingStatus
    current_location: CurrentLocation
    route: RouteResponse
    progress: float
    estimated_arrival: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    updated_at: datetime

    @classmethod
    def from_trip(cls, trip) -> "ActiveTripResponse":
        return cls(
            id=trip.id,
            tenant_id=trip.tenant_id,
            booking_id=trip.booking_id,
            requester_id=trip.requester_id,
            driver_id=trip.driver_id,
            vehicle_id=trip.vehicle_id,
            status=trip.status,
            current_location=CurrentLocation(
                latitude=trip.current_lat,
                longitude=trip.current_lng,
                heading=trip.heading,
                speed_kmh=trip.speed_kmh,
                recorded_at=trip.location_recorded_at,
            ),
            route=RouteResponse(
                pickup_lat=trip.pickup_lat,
                pickup_lng=trip.pickup_lng,
                pickup_address=trip.pickup_address,
                dropoff_lat=trip.dropoff_lat,
                dropoff_lng=trip.dropoff_lng,
                dropoff_address=trip.dropoff_address,
                waypoints=trip.waypoints,
                total_distance_km=trip.total_distance_km,
                total_duration_minutes=trip.total_duration_minutes,
            ),
            progress=trip.progress,
            estimated_arrival=trip.estimated_arrival,
            started_at=trip.started_at,
            completed_at=trip.completed_at,
            updated_at=trip.updated_at,
        )


class TripLocationResponse(BaseModel):
    """Schema for one breadcrumb of the trip's GPS trail."""
    id: int
    trip_id: int
    latitude: float
    longitude: float
    heading: Optional[float]
    speed_kmh: Optional[float]
    progress: float
    source: str
    recorded_at: datetime

    class Config:
        from_attributes = True
