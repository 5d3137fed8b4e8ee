"""
Bearer token authentication for accounts.

Tokens are HS256 JWTs signed with JWT_SECRET; the subject is the account id.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Header, HTTPException

from backend.app.core.settings import get_settings

JWT_ALGORITHM = "HS256"
ACCOUNT_ROLE_CLAIM = "account"


def create_account_jwt(account_id: int) -> str:
    """
    Create JWT token for account authentication.

    Args:
        account_id: Account primary key

    Returns:
        JWT token string
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(account_id),
        "role": ACCOUNT_ROLE_CLAIM,
        "exp": now + timedelta(hours=settings.JWT_EXPIRY_HOURS),
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_account_jwt(token: str) -> Optional[int]:
    """
    Decode JWT token and return the account id or None if the token is invalid.
    """
    try:
        payload = jwt.decode(token, get_settings().jwt_secret, algorithms=[JWT_ALGORITHM])
        if payload.get("role") != ACCOUNT_ROLE_CLAIM:
            return None
        return int(payload["sub"])
    except (jwt.InvalidTokenError, ValueError, KeyError):
        return None


async def get_current_account_id(
    authorization: Optional[str] = Header(None)
) -> int:
    """
    FastAPI dependency to get and validate the current account from a JWT.

    Expects Authorization header in format: "Bearer <token>"

    Raises:
        HTTPException 401: If authentication fails
    """
    if not authorization:
        raise HTTPException(
            status_code=401,
            detail="Authentication required"
        )

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=401,
            detail="Invalid Authorization header format. Expected: Bearer <token>"
        )

    account_id = decode_account_jwt(parts[1])
    if account_id is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid or expired token"
        )

    return account_id
