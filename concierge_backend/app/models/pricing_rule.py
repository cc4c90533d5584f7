"""
Pricing Rule database model.

Per-tenant, per-vehicle-category rate table consumed by the fare engine.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, DateTime, UniqueConstraint
from concierge_backend.app.db.session import Base


class PricingRule(Base):
    """
    Pricing Rule model.

    One row per (tenant, vehicle category). Rate updates overwrite the row;
    rules are never deleted.
    """
    __tablename__ = "pricing_rules"
    __table_args__ = (
        UniqueConstraint("tenant_id", "vehicle_category", name="uq_pricing_rule_tenant_category"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    tenant_id = Column(Integer, nullable=False, index=True)
    vehicle_category = Column(String(100), nullable=False)

    # Rates
    hourly_rate = Column(Float, nullable=False)
    base_fare_p2p = Column(Float, nullable=False)
    per_distance_unit_rate = Column(Float, nullable=False)  # Per km
    minimum_billable_hours = Column(Float, nullable=False)
    driver_commission_fraction = Column(Float, nullable=False)  # 0-1

    # Audit
    updated_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<PricingRule(tenant={self.tenant_id}, category='{self.vehicle_category}', hourly={self.hourly_rate})>"
