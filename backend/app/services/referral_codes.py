"""
Referral code generation.

Codes are 7-digit decimal strings in [1000000, 9999999]. The uniqueness
check here is only a pre-check: the unique constraint on users.referral_code
decides, and RegistrationService retries the insert when it loses a race.
"""
import re
import secrets
from typing import Callable, Optional

from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.metrics import referral_code_collisions_total
from backend.app.core.settings import get_settings
from backend.app.services.accounts import AccountStore

logger = get_logger(__name__)

CODE_MIN = 1_000_000
CODE_MAX = 9_999_999
CODE_PATTERN = re.compile(r"^[1-9][0-9]{6}$")


class ReferralCodeExhaustedError(ServiceError):
    def __init__(self, attempts: int):
        super().__init__(f"Could not generate a unique referral code after {attempts} attempts", 500)


def draw_code() -> str:
    """Uniform random 7-digit code."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


def is_referral_code(value) -> bool:
    return isinstance(value, str) and bool(CODE_PATTERN.match(value))


class ReferralCodeGenerator:
    """Draw codes until one is not held by any account, up to max_attempts."""

    def __init__(
        self,
        store: AccountStore,
        max_attempts: Optional[int] = None,
        draw: Callable[[], str] = draw_code,
    ):
        self.store = store
        self.max_attempts = max_attempts or get_settings().REFERRAL_CODE_MAX_ATTEMPTS
        self._draw = draw

    async def generate(self) -> str:
        """
        Returns:
            A code no account holds at the time of the check

        Raises:
            ReferralCodeExhaustedError: every draw collided
        """
        for attempt in range(1, self.max_attempts + 1):
            code = self._draw()
            if not await self.store.referral_code_exists(code):
                return code
            referral_code_collisions_total.inc()
            logger.info("Referral code already taken, redrawing", attempt=attempt)

        logger.error("Referral code generation exhausted", attempts=self.max_attempts)
        raise ReferralCodeExhaustedError(self.max_attempts)
