"""
Security guards for role-based access control.

Coarse endpoint-level role checks. Edge-level authorization (who may move a
booking between two states) lives in the booking state machine.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from concierge_backend.app.models.enums import UserRole
from concierge_backend.app.core.dependencies import get_current_actor
from concierge_backend.app.schemas.actor import Actor


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/bookings/{booking_id}/quotes")
        async def submit_quote(actor: Actor = Depends(require_role([UserRole.OPERATOR]))):
            ...

    Args:
        allowed_roles: List of UserRole enums that are allowed to access the endpoint

    Returns:
        FastAPI dependency function that validates user role

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return actor

    return role_checker


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Dependency for admin-only endpoints."""
    if actor.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )

    return actor
