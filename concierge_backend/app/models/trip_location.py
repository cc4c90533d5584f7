"""
Trip Location database model.

Stores the GPS breadcrumb trail for live trip tracking.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, Float, String, ForeignKey, DateTime
from concierge_backend.app.db.session import Base


class TripLocation(Base):
    """
    Trip Location model.

    One row per simulated tick or ingested driver GPS fix.
    """
    __tablename__ = "trip_locations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # References
    trip_id = Column(Integer, ForeignKey('active_trips.id'), nullable=False, index=True)
    driver_id = Column(Integer, nullable=False)

    # GPS coordinates
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    heading = Column(Float, nullable=True)
    speed_kmh = Column(Float, nullable=True)
    progress = Column(Float, nullable=False)
    source = Column(String(20), nullable=False)  # SIMULATED or GPS

    # Timing
    recorded_at = Column(DateTime, nullable=False)  # When GPS was recorded
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)  # When inserted to DB

    def __repr__(self):
        return f"<TripLocation(trip_id={self.trip_id}, lat={self.latitude}, lng={self.longitude})>"
