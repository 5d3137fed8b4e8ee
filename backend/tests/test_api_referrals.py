"""
API tests for referral links and the /api/referral endpoints.
"""
import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.user import User
from backend.app.services import referral_token
from backend.tests.conftest import (
    auth_header_for,
    cookie_header,
    create_account,
    extract_cookie_value,
    extract_set_cookie,
)


class TestReferralLink:
    """GET /referral/{code}"""

    @pytest.mark.asyncio
    async def test_valid_code_sets_cookie_and_redirects(self, client: AsyncClient, referrer: User):
        response = await client.get("/referral/4821093")

        assert response.status_code == 307
        assert response.headers["location"] == "/"

        header = extract_set_cookie(response)
        assert header is not None
        assert "HttpOnly" in header
        assert "Max-Age=2592000" in header
        assert "Path=/" in header
        assert "samesite=lax" in header.lower()

        data = referral_token.decode(extract_cookie_value(response))
        assert data.referrer_id == referrer.id
        assert data.referral_code == "4821093"

    @pytest.mark.asyncio
    async def test_second_visit_keeps_first_cookie(
        self, client: AsyncClient, referrer: User, other_account: User
    ):
        first = await client.get("/referral/4821093")
        token = extract_cookie_value(first)

        second = await client.get(f"/referral/{other_account.referral_code}", headers=cookie_header(token))

        assert second.status_code == 307
        assert extract_set_cookie(second) is None

    @pytest.mark.asyncio
    async def test_invalid_code_redirects_without_cookie(self, client: AsyncClient, referrer: User):
        response = await client.get("/referral/0000000")

        assert response.status_code == 307
        assert response.headers["location"] == "/"
        assert extract_set_cookie(response) is None

    @pytest.mark.asyncio
    async def test_stale_cookie_is_overwritten(self, client: AsyncClient, referrer: User, other_account: User):
        stale = referral_token.encode(
            other_account.id,
            other_account.referral_code,
            issued_at=referral_token.now_ms() - 31 * referral_token.MS_PER_DAY,
        )

        response = await client.get("/referral/4821093", headers=cookie_header(stale))

        assert referral_token.decode(extract_cookie_value(response)).referrer_id == referrer.id

    @pytest.mark.asyncio
    async def test_database_failure_still_redirects(self, client: AsyncClient, referrer: User, monkeypatch):
        from backend.app.services.referrals import ReferralService

        async def failing_resolve(self, code, current_token=None):
            raise OperationalError("SELECT users.id FROM users", {}, Exception("database is locked"))

        monkeypatch.setattr(ReferralService, "resolve", failing_resolve)

        response = await client.get("/referral/4821093")

        assert response.status_code == 307
        assert response.headers["location"] == "/"
        assert extract_set_cookie(response) is None


class TestReferralRedirectApi:
    """GET /api/referral/redirect/{code}"""

    @pytest.mark.asyncio
    async def test_valid_code(self, client: AsyncClient, referrer: User):
        response = await client.get("/api/referral/redirect/4821093")

        assert response.status_code == 200
        assert response.json() == {"success": True, "redirectUrl": "/", "alreadyAttributed": False}
        assert extract_cookie_value(response) is not None

    @pytest.mark.asyncio
    async def test_already_attributed(self, client: AsyncClient, referrer: User):
        token = referral_token.encode(referrer.id, referrer.referral_code)

        response = await client.get("/api/referral/redirect/4821093", headers=cookie_header(token))

        assert response.status_code == 200
        assert response.json()["alreadyAttributed"] is True
        assert extract_set_cookie(response) is None

    @pytest.mark.asyncio
    async def test_unknown_code(self, client: AsyncClient, referrer: User):
        response = await client.get("/api/referral/redirect/9999999")

        assert response.status_code == 404
        assert response.json() == {"success": False, "redirectUrl": "/", "alreadyAttributed": False}
        assert extract_set_cookie(response) is None


class TestSignupThroughLink:
    """Referral link visit followed by /auth/register."""

    @pytest.mark.asyncio
    async def test_signup_with_cookie_is_attributed(
        self, client: AsyncClient, test_session: AsyncSession, referrer: User
    ):
        visit = await client.get("/referral/4821093")
        token = extract_cookie_value(visit)

        response = await client.post(
            "/auth/register",
            json={"email": "bob@example.com", "password": "Str0ngPassw0rd", "firstName": "Bob"},
            headers=cookie_header(token),
        )

        assert response.status_code == 200
        account = response.json()["account"]
        assert account["referredBy"] == referrer.id
        assert account["totalReferrals"] == 0
        assert len(account["referralCode"]) == 7

        # Cookie consumed
        cleared = extract_set_cookie(response)
        assert cleared is not None
        assert "Max-Age=0" in cleared

        await test_session.refresh(referrer)
        assert referrer.total_referrals == 3

    @pytest.mark.asyncio
    async def test_signup_with_forged_cookie(self, client: AsyncClient, test_session: AsyncSession, referrer: User):
        response = await client.post(
            "/auth/register",
            json={"email": "bob@example.com", "password": "Str0ngPassw0rd"},
            headers=cookie_header("forged.token.value"),
        )

        assert response.status_code == 200
        assert response.json()["account"]["referredBy"] is None
        await test_session.refresh(referrer)
        assert referrer.total_referrals == 2

    @pytest.mark.asyncio
    async def test_signup_after_referrer_deleted(
        self, client: AsyncClient, test_session: AsyncSession, referrer: User
    ):
        from backend.app.services.accounts import AccountStore

        token = referral_token.encode(referrer.id, referrer.referral_code)
        await AccountStore(test_session).delete(referrer.id)
        await test_session.commit()

        response = await client.post(
            "/auth/register",
            json={"email": "bob@example.com", "password": "Str0ngPassw0rd"},
            headers=cookie_header(token),
        )

        assert response.status_code == 200
        assert response.json()["account"]["referredBy"] is None


class TestReferralStats:
    """GET /api/referral/stats"""

    @pytest.mark.asyncio
    async def test_requires_auth(self, client: AsyncClient):
        response = await client.get("/api/referral/stats")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_stats(self, client: AsyncClient, test_session: AsyncSession, referrer: User):
        bob = await create_account(
            test_session, "bob@example.com", "3000001", referred_by=referrer.id, first_name="Bob"
        )

        response = await client.get("/api/referral/stats", headers=auth_header_for(referrer.id))

        assert response.status_code == 200
        data = response.json()
        assert data["referralCode"] == "4821093"
        assert data["referralLink"] == "http://localhost:3000/referral/4821093"
        assert data["totalReferrals"] == 2
        assert [u["id"] for u in data["referredUsers"]] == [bob.id]
        assert data["referredUsers"][0]["firstName"] == "Bob"
        assert data["referredBy"] is None

    @pytest.mark.asyncio
    async def test_stats_of_referred_account(self, client: AsyncClient, test_session: AsyncSession, referrer: User):
        bob = await create_account(test_session, "bob@example.com", "3000001", referred_by=referrer.id)

        response = await client.get("/api/referral/stats", headers=auth_header_for(bob.id))

        data = response.json()
        assert data["referredBy"]["id"] == referrer.id
        assert data["referredBy"]["referralCode"] == "4821093"
        assert "email" not in data["referredBy"]

    @pytest.mark.asyncio
    async def test_stats_with_dangling_referred_by(self, client: AsyncClient, test_session: AsyncSession):
        orphan = await create_account(test_session, "orphan@example.com", "3000009", referred_by=98765)

        response = await client.get("/api/referral/stats", headers=auth_header_for(orphan.id))

        assert response.status_code == 200
        assert response.json()["referredBy"] is None


class TestGenerateLink:
    """GET and POST /api/referral/generate"""

    @pytest.mark.asyncio
    async def test_get_for_current_account(self, client: AsyncClient, referrer: User):
        response = await client.get("/api/referral/generate", headers=auth_header_for(referrer.id))

        assert response.status_code == 200
        assert response.json() == {
            "referralCode": "4821093",
            "referralLink": "http://localhost:3000/referral/4821093",
            "totalReferrals": 2,
        }

    @pytest.mark.asyncio
    async def test_get_with_unknown_account(self, client: AsyncClient):
        response = await client.get("/api/referral/generate", headers=auth_header_for(424242))
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_post_by_email(self, client: AsyncClient, referrer: User):
        response = await client.post("/api/referral/generate", json={"email": "Alice@Example.com"})

        assert response.status_code == 200
        assert response.json()["referralCode"] == "4821093"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{}, {"email": ""}, {"email": "   "}])
    async def test_post_without_email(self, client: AsyncClient, body):
        response = await client.post("/api/referral/generate", json=body)

        assert response.status_code == 400
        assert response.json()["detail"] == "Email is required"

    @pytest.mark.asyncio
    async def test_post_unknown_email(self, client: AsyncClient, referrer: User):
        response = await client.post("/api/referral/generate", json={"email": "nobody@example.com"})
        assert response.status_code == 404


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_metrics_exposes_referral_counters(self, client: AsyncClient, referrer: User):
        await client.get("/referral/4821093")

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "referral_link_visits_total" in response.text

    @pytest.mark.asyncio
    async def test_request_id_header(self, client: AsyncClient):
        response = await client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert response.headers["x-request-id"] == "abc-123"
