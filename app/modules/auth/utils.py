from datetime import datetime, timedelta, timezone
from typing import Optional
import jwt
from app.core.config import settings


def create_context_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT context token carrying sub (user id), tenant_id and user_role.
    Tokens are issued by the identity service; this helper exists for
    internal callers and tests.
    """
    to_encode = {k: str(v) if v is not None else None for k, v in data.items()}
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire, "type": "context"})
    return jwt.encode(to_encode, settings.APP_SECRET_STRING, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """Raises jwt.PyJWTError on bad signature or expiry."""
    return jwt.decode(token, settings.APP_SECRET_STRING, algorithms=[settings.ALGORITHM])
