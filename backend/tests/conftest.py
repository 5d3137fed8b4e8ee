"""
Test fixtures for the referral backend tests.

Provides:
- In-memory SQLite database for isolated testing
- Async test client with proper session management
- Account factories and auth/cookie helpers
"""
# IMPORTANT: Set environment variables BEFORE any other imports
import os

os.environ["ENVIRONMENT"] = "development"
os.environ["JWT_SECRET"] = "test_jwt_secret_0123456789abcdef0123456789"
os.environ["REFERRAL_TOKEN_SECRET"] = "test_referral_secret_0123456789abcdef0123"
# App engine is created at import; tests override get_session with their own engine
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["PUBLIC_BASE_URL"] = "http://localhost:3000"
os.environ["REFERRAL_LANDING_URL"] = "/"

import pytest
from http.cookies import SimpleCookie
from typing import AsyncGenerator, Optional

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

from backend.app.core.auth import create_account_jwt
from backend.app.core.base import Base
from backend.app.core.limiter import limiter
from backend.app.core.password_utils import hash_password
from backend.app.core.settings import get_settings
from backend.app.main import app
from backend.app.api.deps import get_session
from backend.app.models.user import User


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_PASSWORD = "Secret123"
# bcrypt is slow on purpose; hash once for all factory-made accounts
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)

# Rate limits would trip across tests sharing the same client address
limiter.enabled = False


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """
    Fresh in-memory database per test.

    StaticPool keeps a single connection so every session sees the same
    in-memory database; tables are created before and dropped after each test.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """
    File-backed SQLite database for concurrency tests.

    Unlike the in-memory StaticPool setup, every session checks out its own
    connection, so transactions are really separate.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'referrals.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Database session for fixtures and service-level tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for testing API endpoints.

    Every request gets its own session, like in production.
    """
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# --- Test Data Factories ---

async def create_account(
    session: AsyncSession,
    email: str,
    referral_code: str,
    total_referrals: int = 0,
    referred_by: Optional[int] = None,
    first_name: str = "Test",
    last_name: str = "User",
) -> User:
    """Insert an account directly, bypassing registration."""
    account = User(
        email=email,
        password_hash=TEST_PASSWORD_HASH,
        first_name=first_name,
        last_name=last_name,
        referral_code=referral_code,
        total_referrals=total_referrals,
        referred_by=referred_by,
    )
    session.add(account)
    await session.commit()
    await session.refresh(account)
    return account


@pytest.fixture
async def referrer(test_session: AsyncSession) -> User:
    """Account A from the worked example: code 4821093 with two referrals already."""
    return await create_account(
        test_session,
        email="alice@example.com",
        referral_code="4821093",
        total_referrals=2,
        first_name="Alice",
        last_name="Referrer",
    )


@pytest.fixture
async def other_account(test_session: AsyncSession) -> User:
    return await create_account(
        test_session,
        email="oscar@example.com",
        referral_code="5550001",
        first_name="Oscar",
    )


# --- Helpers ---

def auth_header_for(account_id: int) -> dict:
    """Bearer header for any account id."""
    return {"Authorization": f"Bearer {create_account_jwt(account_id)}"}


def referral_cookie_name() -> str:
    return get_settings().REFERRAL_COOKIE_NAME


def extract_set_cookie(response, name: Optional[str] = None) -> Optional[str]:
    """Raw Set-Cookie header for `name` (the referral cookie by default), or None."""
    name = name or referral_cookie_name()
    for header in response.headers.get_list("set-cookie"):
        if header.split("=", 1)[0].strip() == name:
            return header
    return None


def extract_cookie_value(response, name: Optional[str] = None) -> Optional[str]:
    header = extract_set_cookie(response, name)
    if header is None:
        return None
    cookie = SimpleCookie()
    cookie.load(header)
    morsel = cookie.get(name or referral_cookie_name())
    return morsel.value if morsel else None


def cookie_header(token: str) -> dict:
    """Send the referral cookie explicitly instead of relying on the client jar."""
    return {"Cookie": f"{referral_cookie_name()}={token}"}
