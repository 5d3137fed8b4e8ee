# backend/app/services/accounts.py
"""
Account store - the referral-relevant reads and writes against the users table.

Every other referral component goes through AccountStore; it never commits,
the caller owns the transaction.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete, exists, func, select, update
from typing import Dict, List, Optional

from backend.app.core.exceptions import ServiceError
from backend.app.models.user import User


class AccountServiceError(ServiceError):
    """Base exception for account errors."""


class AccountNotFoundError(AccountServiceError):
    def __init__(self, identifier):
        super().__init__(f"Account {identifier} not found", 404)


class AccountExistsError(AccountServiceError):
    def __init__(self, email: str):
        super().__init__(f"Account with email {email} already exists", 409)


class InvalidCredentialsError(AccountServiceError):
    def __init__(self):
        super().__init__("Invalid email or password", 401)


class WeakPasswordError(AccountServiceError):
    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("; ".join(errors), 400)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


class AccountStore:
    """Repository for account rows used by the referral flow."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, account_id: int) -> Optional[User]:
        result = await self.session.execute(
            select(User).where(User.id == account_id)
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(
            select(User).where(User.email == normalize_email(email))
        )
        return result.scalar_one_or_none()

    async def get_by_referral_code(self, code: str) -> Optional[User]:
        result = await self.session.execute(
            select(User).where(User.referral_code == code).limit(1)
        )
        return result.scalar_one_or_none()

    async def referral_code_exists(self, code: str) -> bool:
        result = await self.session.execute(
            select(exists().where(User.referral_code == code))
        )
        return bool(result.scalar())

    async def increment_total_referrals(self, account_id: int, delta: int = 1) -> bool:
        """
        Atomically add `delta` to an account's referral counter.

        Runs as a single UPDATE ... SET total_referrals = total_referrals + :delta,
        so concurrent signups for the same referrer never lose an increment.

        Returns:
            False if the account no longer exists
        """
        if delta < 0:
            raise ValueError("total_referrals never decreases")
        result = await self.session.execute(
            update(User)
            .where(User.id == account_id)
            .values(total_referrals=User.total_referrals + delta)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_referred(self, account_id: int) -> List[User]:
        """Accounts whose referred_by points at account_id, newest first."""
        result = await self.session.execute(
            select(User)
            .where(User.referred_by == account_id)
            .order_by(User.created_at.desc(), User.id.desc())
        )
        return list(result.scalars().all())

    async def referred_counts(self) -> Dict[int, int]:
        """Map referrer id -> number of accounts pointing at it."""
        result = await self.session.execute(
            select(User.referred_by, func.count(User.id))
            .where(User.referred_by.is_not(None))
            .group_by(User.referred_by)
        )
        return {referrer_id: count for referrer_id, count in result.all()}

    async def delete(self, account_id: int) -> bool:
        """
        Delete an account.

        Accounts it referred keep their referred_by pointer.
        """
        result = await self.session.execute(
            delete(User).where(User.id == account_id)
        )
        return result.rowcount == 1
