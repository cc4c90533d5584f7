"""
Audit Log Database Model.

Tracks booking lifecycle, marketplace settlement, pricing and payment events.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, JSON
from concierge_backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - BOOKING_CREATED / BOOKING_STATUS_CHANGED / BOOKING_CANCELLED
    - QUOTE_SUBMITTED / QUOTE_ACCEPTED / QUOTE_DECLINED
    - DRIVER_ASSIGNED
    - PRICING_RULE_UPDATED
    - PAYMENT_PREAUTHORIZED / PAYMENT_CAPTURED / REFUND_REQUESTED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    tenant_id = Column(Integer, index=True, nullable=True)

    # Who performed the action (SYSTEM actions carry the system role)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_role = Column(String(50), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Which entity was acted upon
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(Integer, index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
