from pydantic import BaseModel
from typing import Optional
from uuid import UUID


class UserRole:
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MANAGER = "manager"
    VIEWER = "viewer"


LEDGER_WRITE_ROLES = [UserRole.ADMIN, UserRole.MANAGER, UserRole.SUPER_ADMIN]
LEDGER_READ_ROLES = LEDGER_WRITE_ROLES + [UserRole.VIEWER]


class AuthContext(BaseModel):
    """Who is calling and on behalf of which distributor"""
    user_id: UUID
    tenant_id: Optional[UUID] = None
    user_role: Optional[str] = None

    @property
    def is_super_admin(self) -> bool:
        return self.user_role == UserRole.SUPER_ADMIN
