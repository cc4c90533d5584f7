"""
Caller identity resolved from the identity service token.
"""

from pydantic import BaseModel
from typing import Optional
from concierge_backend.app.models.enums import UserRole


class Actor(BaseModel):
    """(user, role, tenant) triple every domain operation authorizes against."""
    user_id: int
    role: UserRole
    tenant_id: int
    username: Optional[str] = None

    @classmethod
    def system(cls, tenant_id: int) -> "Actor":
        """Internal actor used by the trip tracker, billing and the quote sweep."""
        return cls(user_id=0, role=UserRole.SYSTEM, tenant_id=tenant_id, username="system")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_system(self) -> bool:
        return self.role == UserRole.SYSTEM
