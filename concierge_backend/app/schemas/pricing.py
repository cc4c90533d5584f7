"""
Pricing schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from concierge_backend.app.models.booking_enums import ServiceType


class PricingRuleUpdate(BaseModel):
    """Schema for a rate update. Omitted fields keep their current value."""
    hourly_rate: Optional[float] = Field(None, ge=0)
    base_fare_p2p: Optional[float] = Field(None, ge=0)
    per_distance_unit_rate: Optional[float] = Field(None, ge=0)
    minimum_billable_hours: Optional[float] = Field(None, ge=0)
    driver_commission_fraction: Optional[float] = Field(None, ge=0, le=1)


class PricingRuleResponse(BaseModel):
    """Schema for displaying an effective pricing rule."""
    vehicle_category: str
    hourly_rate: float
    base_fare_p2p: float
    per_distance_unit_rate: float
    minimum_billable_hours: float
    driver_commission_fraction: float
    is_default: bool = False
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FareEstimateRequest(BaseModel):
    """Schema for an ad hoc fare estimate."""
    service_type: ServiceType
    vehicle_category: str
    distance_km: float = 0.0
    duration_days: int = 1
    duration_hours: float = 0.0
    location: str = ""


class FareComponents(BaseModel):
    base_fare: float
    distance_fare: float
    time_fare: float


class FareEstimateResponse(BaseModel):
    """Full fare breakdown for display and audit."""
    subtotal: float
    tax_rate: float
    tax: float
    platform_fee: float
    total: float
    display_total: float
    driver_payout: float
    effective_hours: Optional[float]
    breakdown: FareComponents
