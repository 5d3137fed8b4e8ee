# backend/app/services/registration.py
"""
Registration service - account creation and password login.
"""

from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.metrics import accounts_created_total
from backend.app.core.password_utils import hash_password, validate_password_strength, verify_password
from backend.app.core.settings import get_settings
from backend.app.models.user import User
from backend.app.services.accounts import (
    AccountExistsError,
    AccountServiceError,
    AccountStore,
    InvalidCredentialsError,
    WeakPasswordError,
    normalize_email,
)
from backend.app.services.referral_token import ReferralTokenData
from backend.app.services.referrals import SignupAttributor

logger = get_logger(__name__)

# Unique constraints as named by SQLite (table.column) and PostgreSQL (constraint name)
REFERRAL_CODE_CONFLICT_MARKERS = ("users.referral_code", "uq_users_referral_code")
EMAIL_CONFLICT_MARKERS = ("users.email", "uq_users_email")


def _violated(e: IntegrityError, markers) -> bool:
    # Only the driver message; str(e) also holds the INSERT listing every column
    message = str(e.orig) if e.orig is not None else ""
    return any(marker in message for marker in markers)


class ReferralCodeConflictError(ServiceError):
    def __init__(self, attempts: int):
        super().__init__(f"Referral code kept colliding after {attempts} insert attempts", 500)


class PasswordVerificationError(AccountServiceError):
    def __init__(self):
        super().__init__("Password verification failed", 400)


class RegistrationService:
    """Service class for account signup and login."""

    def __init__(self, session: AsyncSession, attributor: Optional[SignupAttributor] = None):
        self.session = session
        self.store = AccountStore(session)
        self.attributor = attributor or SignupAttributor(session)

    async def register(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        referral: Optional[ReferralTokenData] = None,
    ) -> User:
        """
        Create an account, attributing it to a referrer when a valid token is given.

        The insert is optimistic: if another signup grabbed the same referral
        code in the meantime, the transaction (including the referrer's counter
        increment) is rolled back and the whole attempt starts over.

        Raises:
            WeakPasswordError: password fails the strength rules
            AccountExistsError: email already registered
            ReferralCodeConflictError: insert kept hitting code conflicts
        """
        email = normalize_email(email)
        ok, errors = validate_password_strength(password)
        if not ok:
            raise WeakPasswordError(errors)

        if await self.store.get_by_email(email):
            raise AccountExistsError(email)

        password_hash = hash_password(password)
        max_attempts = get_settings().SIGNUP_MAX_ATTEMPTS

        for attempt in range(1, max_attempts + 1):
            data = {
                "email": email,
                "password_hash": password_hash,
                "first_name": first_name,
                "last_name": last_name,
                "role": "user",
            }
            data = await self.attributor.before_create(data, referral)

            user = User(**data)
            self.session.add(user)
            try:
                await self.session.commit()
            except IntegrityError as e:
                await self.session.rollback()
                if _violated(e, EMAIL_CONFLICT_MARKERS):
                    # Lost a race on the email constraint
                    raise AccountExistsError(email) from e
                if not _violated(e, REFERRAL_CODE_CONFLICT_MARKERS):
                    raise
                logger.warning(
                    "Referral code conflict on insert, retrying",
                    attempt=attempt,
                    referral_code=data["referral_code"],
                )
                continue

            # id and column defaults are populated by the flush; no refresh needed
            accounts_created_total.inc()
            logger.info(
                "Account created",
                account_id=user.id,
                referral_code=user.referral_code,
                referred_by=user.referred_by,
            )
            return user

        raise ReferralCodeConflictError(max_attempts)

    async def authenticate(self, email: str, password: str) -> User:
        """
        Raises:
            InvalidCredentialsError: unknown email, wrong password or inactive account
        """
        user = await self.store.get_by_email(email)
        if not user or not user.is_active or not verify_password(password, user.password_hash):
            raise InvalidCredentialsError()
        return user

    async def delete_account(self, account: User, password: str) -> None:
        """
        Delete an account after re-checking its password.

        Accounts it referred keep their referred_by pointer; the referrer's
        link stops resolving and pending attribution cookies for it are ignored.

        Raises:
            PasswordVerificationError: missing or wrong password
        """
        if not password or not verify_password(password, account.password_hash):
            logger.warning("Account deletion refused, password check failed", account_id=account.id)
            raise PasswordVerificationError()

        account_id = account.id
        await self.store.delete(account_id)
        await self.session.commit()
        logger.info("Account deleted", account_id=account_id)
