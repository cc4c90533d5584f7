"""
Active Trip database model.

Live tracking record created once a driver is assigned to a booking.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, Float, String, DateTime, Enum, JSON, ForeignKey
from concierge_backend.app.db.session import Base
from concierge_backend.app.models.booking_enums import BookingStatus


class ActiveTrip(Base):
    """
    Active Trip model.

    1:1 with a BookingRequest. Status mirrors the trip-phase subset of the
    booking status; location, progress and ETA are written only by the
    trip tracker.
    """
    __tablename__ = "active_trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # References
    tenant_id = Column(Integer, nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey('booking_requests.id'), nullable=False, unique=True, index=True)
    requester_id = Column(Integer, nullable=False)
    driver_id = Column(Integer, nullable=False, index=True)
    vehicle_id = Column(Integer, nullable=False)

    status = Column(Enum(BookingStatus), default=BookingStatus.DRIVER_ASSIGNED, nullable=False, index=True)

    # Current location
    current_lat = Column(Float, nullable=False)
    current_lng = Column(Float, nullable=False)
    heading = Column(Float, default=0.0, nullable=False)  # 0-360
    speed_kmh = Column(Float, default=0.0, nullable=False)
    location_recorded_at = Column(DateTime, nullable=True)

    # Route
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    pickup_address = Column(String(500), nullable=False)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)
    dropoff_address = Column(String(500), nullable=True)
    waypoints = Column(JSON, nullable=False)  # Ordered [[lat, lng], ...]
    total_distance_km = Column(Float, nullable=False)
    total_duration_minutes = Column(Float, nullable=False)

    # Progress
    progress = Column(Float, default=0.0, nullable=False)  # 0-100
    tick_count = Column(Integer, default=0, nullable=False)
    estimated_arrival = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<ActiveTrip(id={self.id}, booking={self.booking_id}, status='{self.status.value}', progress={self.progress})>"
