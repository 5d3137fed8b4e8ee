# backend/app/services/__init__.py
"""
Services layer for business logic.
Keeps API endpoints thin and business logic testable and reusable.
"""

from backend.app.services.accounts import (
    AccountStore,
    AccountServiceError,
    AccountNotFoundError,
    AccountExistsError,
    InvalidCredentialsError,
    WeakPasswordError,
)
from backend.app.services.referral_codes import (
    ReferralCodeGenerator,
    ReferralCodeExhaustedError,
)
from backend.app.services.referrals import (
    ReferralService,
    ReferralServiceError,
    ReferralCodeNotFoundError,
    ReferralResolution,
    SignupAttributor,
)
from backend.app.services.registration import (
    RegistrationService,
    ReferralCodeConflictError,
)

__all__ = [
    # Accounts
    "AccountStore",
    "AccountServiceError",
    "AccountNotFoundError",
    "AccountExistsError",
    "InvalidCredentialsError",
    "WeakPasswordError",
    # Referral codes
    "ReferralCodeGenerator",
    "ReferralCodeExhaustedError",
    # Referrals
    "ReferralService",
    "ReferralServiceError",
    "ReferralCodeNotFoundError",
    "ReferralResolution",
    "SignupAttributor",
    # Registration
    "RegistrationService",
    "ReferralCodeConflictError",
]
