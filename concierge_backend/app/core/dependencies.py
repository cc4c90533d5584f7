"""
Authentication dependencies for FastAPI.

Resolves the bearer token into an Actor (user, role, tenant) that every
booking, marketplace and tracking operation takes as its authorization input.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from concierge_backend.app.core.exceptions import AuthenticationError
from concierge_backend.app.core.jwt import decode_access_token
from concierge_backend.app.models.enums import UserRole
from concierge_backend.app.schemas.actor import Actor

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """
    FastAPI dependency for JWT authentication.

    Checks:
    1. Validates JWT token signature and expiry
    2. Requires user_id, role and tenant_id claims
    3. Rejects roles unknown to this service (and the internal SYSTEM role)

    Raises:
        AuthenticationError: 401 if authentication fails for any reason
    """
    token = credentials.credentials

    # 1. Decode and validate JWT
    payload = decode_access_token(token)
    if payload is None:
        raise AuthenticationError()

    # 2. Required claims
    user_id = payload.get("user_id")
    tenant_id = payload.get("tenant_id")
    if not user_id or tenant_id is None:
        raise AuthenticationError("Invalid token payload")

    # 3. Role must be one a caller may hold
    try:
        role = UserRole(payload.get("role"))
    except ValueError:
        raise AuthenticationError("Invalid role in token")
    if role == UserRole.SYSTEM:
        raise AuthenticationError("Internal role cannot be used by callers")

    return Actor(
        user_id=user_id,
        role=role,
        tenant_id=tenant_id,
        username=payload.get("sub"),
    )
