"""
Quote marketplace schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional
from concierge_backend.app.models.booking_enums import QuoteStatus, DeclineReason


class QuoteSubmit(BaseModel):
    """Schema for an operator bid."""
    vehicle_id: int = Field(..., gt=0)
    price: float = Field(..., gt=0)
    eta_minutes: int = Field(15, ge=0)
    operator_rating: Optional[float] = Field(None, ge=0, le=5)
    notes: Optional[str] = Field(None, max_length=2000)


class QuoteResponse(BaseModel):
    """Schema for quote response."""
    id: int
    request_id: int
    operator_id: int
    vehicle_id: int
    price: float
    eta_minutes: int
    operator_rating: Optional[float]
    notes: Optional[str]
    status: QuoteStatus
    decline_reason: Optional[DeclineReason]
    created_at: datetime
    expires_at: datetime
    decided_at: Optional[datetime]
    best_value: bool = False

    class Config:
        from_attributes = True


class QuoteListResponse(BaseModel):
    """Quotes for one request, cheapest first."""
    request_id: int
    estimated_price: float
    quotes: List[QuoteResponse]
