"""
Operator Quote database model.

A priced, time-bounded bid by an operator against an open booking request.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, Float, String, Text, DateTime, Enum, ForeignKey
from concierge_backend.app.db.session import Base
from concierge_backend.app.models.booking_enums import QuoteStatus, DeclineReason


class OperatorQuote(Base):
    """
    Operator Quote model.

    At most one quote per request ever holds ACCEPTED; once it does, every
    sibling is DECLINED.
    """
    __tablename__ = "operator_quotes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    tenant_id = Column(Integer, nullable=False, index=True)
    request_id = Column(Integer, ForeignKey('booking_requests.id'), nullable=False, index=True)
    operator_id = Column(Integer, nullable=False, index=True)
    vehicle_id = Column(Integer, nullable=False)

    # Offer
    price = Column(Float, nullable=False)
    eta_minutes = Column(Integer, nullable=False)
    operator_rating = Column(Float, nullable=True)  # 1-5
    notes = Column(Text, nullable=True)

    # State
    status = Column(Enum(QuoteStatus), default=QuoteStatus.PENDING, nullable=False, index=True)
    decline_reason = Column(Enum(DeclineReason), nullable=True)

    # Timing
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    decided_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<OperatorQuote(id={self.id}, request={self.request_id}, price={self.price}, status='{self.status.value}')>"
