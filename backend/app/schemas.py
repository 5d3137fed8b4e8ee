import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from backend.app.core.validation import sanitize_user_input

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class CamelModel(BaseModel):
    """JSON uses camelCase (referralCode, totalReferrals, ...); Python stays snake_case."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# --- Accounts ---
class RegisterRequest(CamelModel):
    email: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email address")
        return v

    @field_validator("first_name", "last_name")
    @classmethod
    def sanitize_names(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return sanitize_user_input(v, max_length=100).strip() or None


class LoginRequest(CamelModel):
    email: str
    password: str


class DeleteAccountRequest(CamelModel):
    # Optional so a missing password is answered with 400, not a validation 422
    password: Optional[str] = None


class AccountResponse(CamelModel):
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    referral_code: str
    referred_by: Optional[int] = None
    total_referrals: int = 0
    created_at: Optional[datetime] = None


class AuthResponse(CamelModel):
    token: str
    account: AccountResponse


# --- Referrals ---
class ReferralRedirectResponse(CamelModel):
    success: bool
    redirect_url: str
    already_attributed: bool = False


class ReferralLinkResponse(CamelModel):
    referral_code: str
    referral_link: str
    total_referrals: int = 0


class GenerateLinkRequest(CamelModel):
    # Optional so a missing email is answered with 400, not a validation 422
    email: Optional[str] = None


class ReferredUser(CamelModel):
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: Optional[datetime] = None


class ReferrerSummary(CamelModel):
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    referral_code: str


class ReferralStatsResponse(ReferralLinkResponse):
    referred_users: List[ReferredUser] = []
    referred_by: Optional[ReferrerSummary] = None
