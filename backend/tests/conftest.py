"""Shared test configuration and fixtures.

Uses a transactional rollback strategy per test for full isolation:
- Each test gets its own transaction that rolls back after the test.
- ``TEST_DATABASE_URL`` selects the database; without it the suite runs on
  an in-memory SQLite database through aiosqlite.
"""

import os
import uuid
from collections.abc import AsyncGenerator
from datetime import date, timedelta
from decimal import Decimal

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from marketplace.auth.jwt import create_token_pair
from marketplace.auth.passwords import hash_password
from marketplace.database import Base, get_db
from marketplace.main import app
from marketplace.models.listing import Listing
from marketplace.models.user import User

_test_db_url = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


def _make_engine():
    if _test_db_url.startswith("sqlite"):
        # One shared connection, otherwise every checkout sees an empty database
        return create_async_engine(
            _test_db_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(_test_db_url, echo=False, pool_pre_ping=True)


# ---------------------------------------------------------------------------
# Session-scoped: create / drop all tables once per test session
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def test_engine():
    """Create a session-scoped engine tied to the session event loop."""
    engine = _make_engine()
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def setup_test_db(test_engine):
    """Create all tables at the start of the session and drop them at the end."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# ---------------------------------------------------------------------------
# Per-test: transactional rollback for isolation
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_session(test_engine, setup_test_db) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session wrapped in a transaction that always rolls back."""
    async with test_engine.connect() as connection:
        transaction = await connection.begin()
        session = AsyncSession(bind=connection, expire_on_commit=False)

        try:
            yield session
        finally:
            await session.close()
            await transaction.rollback()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to use the test DB session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers shared by test modules
# ---------------------------------------------------------------------------


async def make_user(
    db_session: AsyncSession,
    *,
    user_type: str | None = "particulier",
    role: str = "user",
    prefix: str = "user",
) -> User:
    unique = uuid.uuid4().hex[:8]
    user = User(
        email=f"{prefix}-{unique}@test.com",
        hashed_password=hash_password("testpass123"),
        name=f"{prefix.title()} User",
        user_type=user_type,
        is_active=True,
        role=role,
    )
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


def headers_for(user: User) -> dict[str, str]:
    tokens = create_token_pair(str(user.id))
    return {"Authorization": f"Bearer {tokens['access_token']}"}


async def make_listing(
    db_session: AsyncSession,
    owner: User,
    *,
    listing_type: str = "short_term",
    is_active: bool = True,
    entitlement_source: str | None = None,
    **fields,
) -> Listing:
    values = {
        "title": "Studio Cocody",
        "city": "Abidjan",
        "country": "CI",
        "price_per_night": Decimal("20000"),
        "minimum_stay": 1,
        **fields,
    }
    listing = Listing(
        owner_id=owner.id,
        listing_type=listing_type,
        is_active=is_active,
        entitlement_source=entitlement_source,
        **values,
    )
    db_session.add(listing)
    await db_session.flush()
    await db_session.refresh(listing)
    return listing


def days_from_today(n: int) -> date:
    return date.today() + timedelta(days=n)


# ---------------------------------------------------------------------------
# Convenience fixtures: accounts
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """A particulier account with the default free quota."""
    return await make_user(db_session, prefix="owner")


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict[str, str]:
    return headers_for(test_user)


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    """A second account, used as the guest side of reservations."""
    return await make_user(db_session, prefix="guest")


@pytest_asyncio.fixture
async def other_headers(other_user: User) -> dict[str, str]:
    return headers_for(other_user)


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await make_user(db_session, role="admin", user_type=None, prefix="admin")


@pytest_asyncio.fixture
async def admin_headers(admin_user: User) -> dict[str, str]:
    return headers_for(admin_user)
