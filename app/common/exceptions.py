"""
Error taxonomy for ledger operations.

Each kind is an HTTPException so routers can let it propagate untouched;
the handler in app.main renders it as {"success": false, "error", "details"}.
"""
from fastapi import HTTPException, status


class LedgerError(HTTPException):
    kind = "PersistenceError"
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str, status_code: int = None, headers: dict = None):
        super().__init__(
            status_code=status_code or self.status_code_default,
            detail=detail,
            headers=headers,
        )


class ValidationError(LedgerError):
    """Bad input or a business rule violation (overpayment, wrong type)"""
    kind = "ValidationError"
    status_code_default = status.HTTP_400_BAD_REQUEST


class NotFoundError(LedgerError):
    """Entity missing, in another tenant, or its driver is not ACTIVE/RETAIL"""
    kind = "NotFoundError"
    status_code_default = status.HTTP_404_NOT_FOUND


class AuthorizationError(LedgerError):
    kind = "AuthorizationError"
    status_code_default = status.HTTP_401_UNAUTHORIZED

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class ForbiddenError(LedgerError):
    kind = "AuthorizationError"
    status_code_default = status.HTTP_403_FORBIDDEN


class PersistenceError(LedgerError):
    """Storage failure; the transaction has been rolled back"""
    kind = "PersistenceError"

    def __init__(self, detail: str = "Internal error while saving changes"):
        super().__init__(detail)
