"""
Authentication dependencies for FastAPI.

Identity is resolved upstream; here we only verify the signed context
token and expose who is calling (user, tenant, role).
"""
from uuid import UUID
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt

from app.common.exceptions import AuthorizationError, ForbiddenError
from app.modules.auth.schemas import AuthContext, LEDGER_READ_ROLES, LEDGER_WRITE_ROLES
from app.modules.auth.utils import decode_token

# Security scheme
security = HTTPBearer(auto_error=False)


class AuthDependencies:
    """Reusable authentication dependencies."""

    @staticmethod
    def get_auth_context(
        credentials: HTTPAuthorizationCredentials = Depends(security),
    ) -> AuthContext:
        if credentials is None:
            raise AuthorizationError()

        try:
            payload = decode_token(credentials.credentials)
        except jwt.PyJWTError:
            raise AuthorizationError()

        user_id = payload.get("sub")
        if user_id is None:
            raise AuthorizationError()

        tenant_id = payload.get("tenant_id")
        try:
            return AuthContext(
                user_id=UUID(user_id),
                tenant_id=UUID(tenant_id) if tenant_id else None,
                user_role=payload.get("user_role"),
            )
        except ValueError:
            raise AuthorizationError("Malformed token claims")

    @staticmethod
    def require_role(allowed_roles: list[str]):
        """
        Dependency requiring one of the given roles within a tenant.
        """
        def role_checker(auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)):
            if not auth_context.tenant_id:
                raise ForbiddenError("A distributor (tenant) must be selected")

            if auth_context.user_role not in allowed_roles:
                raise ForbiddenError(f"One of these roles is required: {', '.join(allowed_roles)}")

            return auth_context
        return role_checker

    @staticmethod
    def require_super_admin():
        def checker(auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)):
            if not auth_context.is_super_admin:
                raise ForbiddenError("Super admin access required")
            return auth_context
        return checker


get_auth_context = AuthDependencies.get_auth_context
require_ledger_write = AuthDependencies.require_role(LEDGER_WRITE_ROLES)
require_ledger_read = AuthDependencies.require_role(LEDGER_READ_ROLES)
require_super_admin = AuthDependencies.require_super_admin()
