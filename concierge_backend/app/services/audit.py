"""
Audit logging service for booking lifecycle, marketplace and payment events.

Entries are added to the caller's session and committed together with the
state change they describe.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from concierge_backend.app.models.audit_log import AuditLog
from concierge_backend.app.schemas.actor import Actor


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_STATUS_CHANGED = "BOOKING_STATUS_CHANGED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"

    QUOTE_SUBMITTED = "QUOTE_SUBMITTED"
    QUOTE_ACCEPTED = "QUOTE_ACCEPTED"
    QUOTE_DECLINED = "QUOTE_DECLINED"
    QUOTES_EXPIRED = "QUOTES_EXPIRED"

    DRIVER_ASSIGNED = "DRIVER_ASSIGNED"
    TRIP_STARTED = "TRIP_STARTED"

    PRICING_RULE_UPDATED = "PRICING_RULE_UPDATED"

    PAYMENT_PREAUTHORIZED = "PAYMENT_PREAUTHORIZED"
    PAYMENT_CAPTURED = "PAYMENT_CAPTURED"
    PAYMENT_CAPTURE_FAILED = "PAYMENT_CAPTURE_FAILED"
    REFUND_REQUESTED = "REFUND_REQUESTED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor: Optional[Actor] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    tenant_id: Optional[int] = None
) -> AuditLog:
    """
    Record an event in the audit log.

    Args:
        db: Database session (caller commits)
        action: Action being performed (use AuditAction constants)
        actor: Who performed it (None for anonymous system housekeeping)
        entity_type: Kind of entity acted upon ("booking", "quote", ...)
        entity_id: ID of that entity
        metadata: Additional context as JSON
        tenant_id: Tenant scope; defaults to the actor's tenant

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        tenant_id=tenant_id if tenant_id is not None else (actor.tenant_id if actor else None),
        actor_id=actor.user_id if actor else None,
        actor_role=actor.role.value if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=metadata
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    tenant_id: int,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Returns:
        List of AuditLog instances, oldest first
    """
    query = select(AuditLog).where(AuditLog.tenant_id == tenant_id)

    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)

    if entity_id is not None:
        query = query.where(AuditLog.entity_id == entity_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.order_by(AuditLog.id).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
