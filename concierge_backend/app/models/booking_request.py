"""
Booking Request database model.

One row per trip solicitation. Mutated only through the booking state
machine; cancellation and completion are terminal states, never deletes.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, DateTime, Enum, JSON, Text
from concierge_backend.app.db.session import Base
from concierge_backend.app.models.booking_enums import BookingStatus, ServiceType


class BookingRequest(Base):
    """
    Booking Request model.

    Holds the trip spec, the advisory fare estimate, the settled price and
    the operator/driver/vehicle references populated as the lifecycle advances.
    """
    __tablename__ = "booking_requests"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ownership
    tenant_id = Column(Integer, nullable=False, index=True)
    requester_id = Column(Integer, nullable=False, index=True)

    # Lifecycle
    status = Column(Enum(BookingStatus), default=BookingStatus.NEW, nullable=False, index=True)
    version = Column(Integer, default=0, nullable=False)

    # Trip spec
    service_type = Column(Enum(ServiceType), nullable=False)
    pickup_address = Column(String(500), nullable=False)
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_address = Column(String(500), nullable=True)
    dropoff_lat = Column(Float, nullable=True)
    dropoff_lng = Column(Float, nullable=True)
    scheduled_at = Column(DateTime, nullable=False)
    duration_hours = Column(Float, nullable=True)  # Hourly only
    duration_days = Column(Integer, nullable=True)  # Hourly only
    distance_km = Column(Float, nullable=True)
    vehicle_category = Column(String(100), nullable=False)
    vehicle_sub_category = Column(String(100), nullable=True)
    passenger_count = Column(Integer, default=1, nullable=False)
    luggage_count = Column(Integer, default=0, nullable=False)
    vip_preferences = Column(JSON, nullable=True)

    # Pricing
    estimated_price = Column(Float, nullable=False)
    final_price = Column(Float, nullable=True)

    # Assignment
    selected_quote_id = Column(Integer, nullable=True)
    assigned_operator_id = Column(Integer, nullable=True, index=True)
    assigned_driver_id = Column(Integer, nullable=True, index=True)
    assigned_vehicle_id = Column(Integer, nullable=True)

    # Payment
    payment_ref = Column(String(255), nullable=True)

    # Cancellation
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(Integer, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<BookingRequest(id={self.id}, tenant={self.tenant_id}, status='{self.status.value}')>"
