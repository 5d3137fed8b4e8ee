from typing import AsyncGenerator
from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from backend.app.core.auth import get_current_account_id
from backend.app.core.database import async_session
from backend.app.models.user import User
from backend.app.services.accounts import AccountStore


# One database session per request
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


async def get_current_account(
    account_id: int = Depends(get_current_account_id),
    session: AsyncSession = Depends(get_session),
) -> User:
    """Authenticated account; 401 if it was deleted or deactivated after the token was issued."""
    account = await AccountStore(session).get_by_id(account_id)
    if account is None or not account.is_active:
        raise HTTPException(status_code=401, detail="Account not found or inactive")
    return account
