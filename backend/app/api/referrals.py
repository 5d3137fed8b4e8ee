"""
Referral endpoints.

link_router serves the browser-facing /referral/{code} link (always a redirect);
router serves the JSON API under /api/referral.
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_current_account, get_session
from backend.app.core.exceptions import ServiceError, raise_http
from backend.app.core.limiter import limiter
from backend.app.core.logging import get_logger
from backend.app.core.settings import get_settings
from backend.app.models.user import User
from backend.app.schemas import (
    GenerateLinkRequest,
    ReferralLinkResponse,
    ReferralRedirectResponse,
    ReferralStatsResponse,
    ReferredUser,
    ReferrerSummary,
)
from backend.app.services import referral_token
from backend.app.services.referrals import ReferralCodeNotFoundError, ReferralService

link_router = APIRouter()
router = APIRouter()
logger = get_logger(__name__)


@link_router.get("/referral/{code}", include_in_schema=False)
@limiter.limit("60/minute")
async def follow_referral_link(
    request: Request,
    code: str,
    session: AsyncSession = Depends(get_session),
):
    """
    Referral link visited in a browser.

    Always redirects to the landing page; the attribution cookie is written
    only for a valid code when the visitor has no valid cookie yet.
    """
    landing_url = get_settings().REFERRAL_LANDING_URL
    response = RedirectResponse(url=landing_url, status_code=307)

    service = ReferralService(session)
    try:
        resolution = await service.resolve(code, referral_token.read_cookie(request))
    except ReferralCodeNotFoundError:
        return response
    except SQLAlchemyError:
        # The visitor still lands on the site, just without attribution
        logger.exception("Referral link lookup failed", referral_code=code)
        return response

    if resolution.token:
        referral_token.set_cookie(response, resolution.token)
    return response


@router.get("/redirect/{code}", response_model=ReferralRedirectResponse)
@limiter.limit("60/minute")
async def resolve_referral_code(
    request: Request,
    code: str,
    session: AsyncSession = Depends(get_session),
):
    """JSON variant of the referral link for SPA clients."""
    landing_url = get_settings().REFERRAL_LANDING_URL
    service = ReferralService(session)
    try:
        resolution = await service.resolve(code, referral_token.read_cookie(request))
    except ReferralCodeNotFoundError:
        return JSONResponse(
            status_code=404,
            content=ReferralRedirectResponse(success=False, redirect_url=landing_url).model_dump(by_alias=True),
        )

    body = ReferralRedirectResponse(
        success=True,
        redirect_url=landing_url,
        already_attributed=resolution.already_attributed,
    )
    response = JSONResponse(content=body.model_dump(by_alias=True))
    if resolution.token:
        referral_token.set_cookie(response, resolution.token)
    return response


@router.get("/stats", response_model=ReferralStatsResponse)
async def get_referral_stats(
    account: User = Depends(get_current_account),
    session: AsyncSession = Depends(get_session),
):
    """Referral code, link, counter, referred accounts and own referrer."""
    stats = await ReferralService(session).get_stats(account)
    referred_by = stats["referred_by"]
    return ReferralStatsResponse(
        referral_code=stats["referral_code"],
        referral_link=stats["referral_link"],
        total_referrals=stats["total_referrals"],
        referred_users=[ReferredUser.model_validate(u) for u in stats["referred_users"]],
        referred_by=ReferrerSummary.model_validate(referred_by) if referred_by else None,
    )


@router.get("/generate", response_model=ReferralLinkResponse)
async def get_referral_link(
    account: User = Depends(get_current_account),
    session: AsyncSession = Depends(get_session),
):
    """Referral link for the current account."""
    return ReferralLinkResponse(**ReferralService(session).get_link_info(account))


@router.post("/generate", response_model=ReferralLinkResponse)
@limiter.limit("10/minute")
async def get_referral_link_by_email(
    request: Request,
    data: GenerateLinkRequest,
    session: AsyncSession = Depends(get_session),
):
    """Referral link for an account looked up by email."""
    if not data.email or not data.email.strip():
        raise HTTPException(status_code=400, detail="Email is required")

    try:
        info = await ReferralService(session).get_link_info_by_email(data.email)
    except ServiceError as e:
        raise_http(e)
    return ReferralLinkResponse(**info)
