# backend/app/services/referrals.py
"""
Referral service - resolving referral links and attributing signups.

Flow:
1. A visitor opens /referral/{code}: ReferralService.resolve() checks the code
   and hands back a fresh attribution token unless the visitor already holds
   a valid one (first touch wins).
2. The visitor signs up later: SignupAttributor.before_create() assigns the
   new account its own code and, if the token still points at an existing
   account, sets referred_by and bumps that account's total_referrals.

Attribution is best-effort: a failure there never blocks account creation.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.metrics import referral_attributions_total, referral_link_visits_total
from backend.app.core.settings import get_settings
from backend.app.models.user import User
from backend.app.services import referral_token
from backend.app.services.accounts import AccountNotFoundError, AccountStore, normalize_email
from backend.app.services.referral_codes import ReferralCodeGenerator, is_referral_code
from backend.app.services.referral_token import ReferralTokenData

logger = get_logger(__name__)


class ReferralServiceError(ServiceError):
    """Base exception for referral errors."""


class ReferralCodeNotFoundError(ReferralServiceError):
    def __init__(self, code: str):
        self.code = code
        super().__init__("Invalid referral code", 404)


class ReferralResolution(BaseModel):
    """Outcome of a referral link visit."""
    referrer_id: int
    referral_code: str
    # None when the visitor already carries a valid token; nothing to write then
    token: Optional[str] = None
    already_attributed: bool = False


def referral_link(code: str) -> str:
    base_url = get_settings().PUBLIC_BASE_URL.rstrip("/")
    return f"{base_url}/referral/{code}"


class ReferralService:
    """Read side of the referral program plus link resolution."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.store = AccountStore(session)

    async def resolve(self, code: Optional[str], current_token: Optional[str] = None) -> ReferralResolution:
        """
        Validate a referral code and decide whether to issue an attribution token.

        Args:
            code: Code from the referral link
            current_token: Raw attribution cookie already on the request, if any

        Raises:
            ReferralCodeNotFoundError: empty or malformed code, or no account holds it
        """
        code = (code or "").strip()
        if not is_referral_code(code):
            # Empty or not 7 digits: no account can hold it
            referral_link_visits_total.labels(outcome="not_found").inc()
            raise ReferralCodeNotFoundError(code)

        referrer = await self.store.get_by_referral_code(code)
        if referrer is None:
            referral_link_visits_total.labels(outcome="not_found").inc()
            logger.info("Referral link with unknown code", referral_code=code)
            raise ReferralCodeNotFoundError(code)

        existing = referral_token.decode(current_token)
        if existing is not None:
            referral_link_visits_total.labels(outcome="already_attributed").inc()
            logger.info(
                "Referral link ignored, visitor already attributed",
                referral_code=code,
                attributed_to=existing.referrer_id,
            )
            return ReferralResolution(
                referrer_id=referrer.id,
                referral_code=code,
                already_attributed=True,
            )

        referral_link_visits_total.labels(outcome="issued").inc()
        logger.info("Referral token issued", referral_code=code, referrer_id=referrer.id)
        return ReferralResolution(
            referrer_id=referrer.id,
            referral_code=code,
            token=referral_token.encode(referrer.id, code),
        )

    def get_link_info(self, account: User) -> Dict[str, Any]:
        return {
            "referral_code": account.referral_code,
            "referral_link": referral_link(account.referral_code),
            "total_referrals": account.total_referrals or 0,
        }

    async def get_link_info_by_email(self, email: str) -> Dict[str, Any]:
        """
        Raises:
            AccountNotFoundError: no account with that email
        """
        account = await self.store.get_by_email(email)
        if account is None:
            raise AccountNotFoundError(normalize_email(email))
        return self.get_link_info(account)

    async def get_stats(self, account: User) -> Dict[str, Any]:
        """Link info plus the referred accounts and who referred this account."""
        referred = await self.store.list_referred(account.id)

        referred_by = None
        if account.referred_by is not None:
            referrer = await self.store.get_by_id(account.referred_by)
            if referrer is None:
                # Referrer was deleted after attribution; pointer stays, nothing to show
                logger.info("Dangling referred_by", account_id=account.id, referred_by=account.referred_by)
            else:
                referred_by = referrer

        stats = self.get_link_info(account)
        stats["referred_users"] = referred
        stats["referred_by"] = referred_by
        return stats

    async def reconcile_total_referrals(self) -> int:
        """
        Raise total_referrals to the real number of referred accounts where it lags.

        Counters are never lowered: accounts deleted after attribution still count.
        Returns the number of accounts fixed.
        """
        counts = await self.store.referred_counts()
        fixed = 0
        for referrer_id, real_count in counts.items():
            referrer = await self.store.get_by_id(referrer_id)
            if referrer is None:
                continue
            current = referrer.total_referrals or 0
            if current < real_count:
                logger.info(
                    "Reconcile referral counter drift",
                    account_id=referrer_id,
                    old_total=current,
                    new_total=real_count,
                )
                await self.store.increment_total_referrals(referrer_id, real_count - current)
                fixed += 1

        if fixed:
            await self.session.commit()
        return fixed


class SignupAttributor:
    """
    Account-creation hook for the referral program.

    before_create() runs inside the signup transaction, before the account row
    is inserted. The referrer's counter increment therefore commits or rolls
    back together with the new account.
    """

    def __init__(self, session: AsyncSession, code_generator: Optional[ReferralCodeGenerator] = None):
        self.session = session
        self.store = AccountStore(session)
        self.code_generator = code_generator or ReferralCodeGenerator(self.store)

    async def before_create(
        self,
        data: Dict[str, Any],
        token: Optional[ReferralTokenData],
    ) -> Dict[str, Any]:
        """
        Prepare new-account data.

        Args:
            data: Pending account fields; referral_code / referred_by are filled in place
            token: Attribution token decoded from the request cookies, if any

        Returns:
            The same dict
        """
        if not data.get("referral_code"):
            data["referral_code"] = await self.code_generator.generate()

        if data.get("referred_by") is not None:
            # Already processed
            return data

        if token is None or not referral_token.is_valid(token.issued_at):
            referral_attributions_total.labels(outcome="no_token").inc()
            return data

        try:
            await self._attribute(data, token)
        except Exception:
            logger.exception(
                "Referral attribution failed, continuing signup without it",
                referrer_id=token.referrer_id,
                referral_code=token.referral_code,
            )
            # Nothing of the new account is written yet, so this only drops the attribution
            await self.session.rollback()
            data.pop("referred_by", None)
            referral_attributions_total.labels(outcome="failed").inc()

        return data

    async def _attribute(self, data: Dict[str, Any], token: ReferralTokenData) -> None:
        referrer = await self.store.get_by_id(token.referrer_id)
        if referrer is None:
            logger.warning("Referral skipped, referrer no longer exists", referrer_id=token.referrer_id)
            referral_attributions_total.labels(outcome="dangling_referrer").inc()
            return

        if data.get("email") and normalize_email(data["email"]) == referrer.email:
            logger.warning("Referral skipped, self-referral", referrer_id=referrer.id)
            referral_attributions_total.labels(outcome="self_referral").inc()
            return

        if not await self.store.increment_total_referrals(referrer.id):
            # Deleted between lookup and update
            logger.warning("Referral skipped, referrer vanished", referrer_id=referrer.id)
            referral_attributions_total.labels(outcome="dangling_referrer").inc()
            return

        data["referred_by"] = referrer.id
        referral_attributions_total.labels(outcome="attributed").inc()
        logger.info(
            "Referral attributed",
            referrer_id=referrer.id,
            referral_code=token.referral_code,
        )
