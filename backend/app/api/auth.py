"""
Account endpoints: signup, login, the current account and deletion.

Signup is where referral attribution happens: the attribution cookie set by
the referral link is read here and consumed.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_current_account, get_session
from backend.app.core.auth import create_account_jwt
from backend.app.core.exceptions import ServiceError, raise_http
from backend.app.core.limiter import limiter
from backend.app.core.logging import get_logger
from backend.app.models.user import User
from backend.app.schemas import (
    AccountResponse,
    AuthResponse,
    DeleteAccountRequest,
    LoginRequest,
    RegisterRequest,
)
from backend.app.services import referral_token
from backend.app.services.registration import RegistrationService

router = APIRouter()
logger = get_logger(__name__)


@router.post("/register", response_model=AuthResponse)
@limiter.limit("10/minute")
async def register(
    request: Request,
    response: Response,
    data: RegisterRequest,
    session: AsyncSession = Depends(get_session),
):
    """
    Create an account.

    A valid attribution cookie links the new account to its referrer.
    """
    referral = referral_token.read_token(request)
    logger.info("Registering account", has_referral=referral is not None)

    service = RegistrationService(session)
    try:
        account = await service.register(
            email=data.email,
            password=data.password,
            first_name=data.first_name,
            last_name=data.last_name,
            referral=referral,
        )
    except ServiceError as e:
        raise_http(e)

    if referral_token.read_cookie(request) is not None:
        # Token consumed (or useless); the browser should not carry it into another signup
        referral_token.clear_cookie(response)

    return AuthResponse(
        token=create_account_jwt(account.id),
        account=AccountResponse.model_validate(account),
    )


@router.post("/login", response_model=AuthResponse)
@limiter.limit("10/minute")
async def login(
    request: Request,
    data: LoginRequest,
    session: AsyncSession = Depends(get_session),
):
    """Exchange email and password for a bearer token."""
    service = RegistrationService(session)
    try:
        account = await service.authenticate(data.email, data.password)
    except ServiceError as e:
        raise_http(e)

    return AuthResponse(
        token=create_account_jwt(account.id),
        account=AccountResponse.model_validate(account),
    )


@router.get("/me", response_model=AccountResponse)
async def get_me(account: User = Depends(get_current_account)):
    """Current account."""
    return AccountResponse.model_validate(account)


@router.post("/delete")
@limiter.limit("5/minute")
async def delete_account(
    request: Request,
    data: DeleteAccountRequest,
    account: User = Depends(get_current_account),
    session: AsyncSession = Depends(get_session),
):
    """
    Delete the current account; the password is asked again.

    Accounts it referred keep pointing at it (their referredBy reads as null).
    """
    if not data.password:
        raise HTTPException(status_code=400, detail="Password is required")

    try:
        await RegistrationService(session).delete_account(account, data.password)
    except ServiceError as e:
        raise_http(e)
    return {"success": True}
