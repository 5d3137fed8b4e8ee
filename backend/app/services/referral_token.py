"""
Attribution token carried in the referral cookie.

The token is a self-contained HS256 JWT holding {referrerId, referralCode,
issuedAt}; no server-side session is involved. Anything that fails to
verify, misses a field or is older than the validity window decodes to None.
Consumers cannot tell a bad token from no token at all.
"""
import time
from typing import Optional

import jwt
from pydantic import BaseModel, Field, ValidationError
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.settings import get_settings

JWT_ALGORITHM = "HS256"
TOKEN_TYPE = "referral"
MS_PER_DAY = 24 * 60 * 60 * 1000


class ReferralTokenData(BaseModel):
    """Decoded attribution token."""
    referrer_id: int
    referral_code: str = Field(min_length=1)
    issued_at: int  # milliseconds since epoch


def now_ms() -> int:
    return int(time.time() * 1000)


def is_valid(issued_at: int, now: Optional[int] = None) -> bool:
    """True while now - issued_at is inside the validity window (30 days by default)."""
    if now is None:
        now = now_ms()
    window = get_settings().REFERRAL_VALIDITY_DAYS * MS_PER_DAY
    return now - issued_at < window


def encode(referrer_id: int, referral_code: str, issued_at: Optional[int] = None) -> str:
    if issued_at is None:
        issued_at = now_ms()
    payload = {
        "typ": TOKEN_TYPE,
        "referrerId": referrer_id,
        "referralCode": referral_code,
        "issuedAt": issued_at,
    }
    return jwt.encode(payload, get_settings().referral_token_secret, algorithm=JWT_ALGORITHM)


def decode(token: Optional[str], now: Optional[int] = None) -> Optional[ReferralTokenData]:
    """
    Decode and validate an attribution token.

    Returns:
        ReferralTokenData, or None for missing, forged, malformed or expired tokens
    """
    if not token or not isinstance(token, str):
        return None

    try:
        payload = jwt.decode(token, get_settings().referral_token_secret, algorithms=[JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None

    if not isinstance(payload, dict) or payload.get("typ") != TOKEN_TYPE:
        return None

    try:
        data = ReferralTokenData(
            referrer_id=payload["referrerId"],
            referral_code=payload["referralCode"],
            issued_at=payload["issuedAt"],
        )
    except (KeyError, ValidationError):
        return None

    if not is_valid(data.issued_at, now):
        return None
    return data


# --- Cookie transport ---

def cookie_options() -> dict:
    """HttpOnly, SameSite=Lax, Secure in production, 30 days, path /."""
    settings = get_settings()
    return {
        "max_age": settings.referral_cookie_max_age,
        "path": "/",
        "secure": settings.is_production,
        "httponly": True,
        "samesite": "lax",
    }


def read_cookie(request: Request) -> Optional[str]:
    return request.cookies.get(get_settings().REFERRAL_COOKIE_NAME)


def read_token(request: Request) -> Optional[ReferralTokenData]:
    """Decoded token from the request cookie, None when absent or invalid."""
    return decode(read_cookie(request))


def set_cookie(response: Response, token: str) -> None:
    response.set_cookie(get_settings().REFERRAL_COOKIE_NAME, token, **cookie_options())


def clear_cookie(response: Response) -> None:
    options = cookie_options()
    response.delete_cookie(
        get_settings().REFERRAL_COOKIE_NAME,
        path=options["path"],
        secure=options["secure"],
        httponly=options["httponly"],
        samesite=options["samesite"],
    )
