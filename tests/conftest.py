"""Shared pytest fixtures: in-memory stores, a real database session, rate limiter storage, and an API client."""

import datetime
import itertools
import logging
import os
import uuid
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from limits.aio.storage import MemoryStorage
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shortlinks.config import Settings, get_settings
from shortlinks.database import Base
from shortlinks.dependencies import get_account_store, get_link_store, get_rate_limiter
from shortlinks.errors import Conflict
from shortlinks.main import app
from shortlinks.models import Account, ShortLink
from shortlinks.rate_limiter import FixedWindowRateLimiter
from shortlinks.stores import EMAIL_IN_USE, SLUG_IN_USE


# ============================================================================
# IN-MEMORY FAKES
# ============================================================================


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class InMemoryShortLinkStore:
    """ShortLinkStore honouring the same uniqueness and ownership rules as the SQL store."""

    def __init__(self) -> None:
        self.links: dict[uuid.UUID, ShortLink] = {}
        self._order: dict[uuid.UUID, int] = {}
        self._seq = itertools.count()

    async def get_by_id(self, link_id: uuid.UUID) -> ShortLink | None:
        return self.links.get(link_id)

    async def slug_exists(self, slug: str, exclude_id: uuid.UUID | None = None) -> bool:
        return any(link.slug == slug and link.id != exclude_id for link in self.links.values())

    async def add(self, link: ShortLink) -> ShortLink:
        if await self.slug_exists(link.slug):
            raise Conflict(SLUG_IN_USE)
        link.id = link.id or uuid.uuid4()
        link.visit_count = link.visit_count or 0
        link.created_at = link.updated_at = _now()
        self.links[link.id] = link
        self._order[link.id] = next(self._seq)
        return link

    async def save(self, link: ShortLink) -> ShortLink:
        if await self.slug_exists(link.slug, exclude_id=link.id):
            raise Conflict(SLUG_IN_USE)
        link.updated_at = _now()
        self.links[link.id] = link
        return link

    async def increment_visits(self, slug: str) -> ShortLink | None:
        link = next((link for link in self.links.values() if link.slug == slug), None)
        if link is None:
            return None
        link.visit_count += 1
        link.updated_at = _now()
        return link

    async def assign_owner(self, link_id: uuid.UUID, owner_id: uuid.UUID) -> ShortLink | None:
        link = self.links.get(link_id)
        if link is None or link.owner_id is not None:
            return None
        link.owner_id = owner_id
        link.updated_at = _now()
        return link

    async def list_by_owner(self, owner_id: uuid.UUID) -> list[ShortLink]:
        owned = [link for link in self.links.values() if link.owner_id == owner_id]
        return sorted(owned, key=lambda link: self._order[link.id], reverse=True)


class InMemoryAccountStore:
    def __init__(self) -> None:
        self.accounts: dict[uuid.UUID, Account] = {}

    async def get_by_id(self, account_id: uuid.UUID) -> Account | None:
        return self.accounts.get(account_id)

    async def get_by_email(self, email: str) -> Account | None:
        return next((account for account in self.accounts.values() if account.email == email), None)

    async def add(self, account: Account) -> Account:
        if await self.get_by_email(account.email) is not None:
            raise Conflict(EMAIL_IN_USE)
        account.id = account.id or uuid.uuid4()
        account.created_at = account.updated_at = _now()
        self.accounts[account.id] = account
        return account


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        PUBLIC_BASE_URL="https://sho.rt",
        JWT_SECRET="test-secret",
        BCRYPT_ROUNDS=4,
    )


@pytest.fixture
def link_store() -> InMemoryShortLinkStore:
    return InMemoryShortLinkStore()


@pytest.fixture
def account_store() -> InMemoryAccountStore:
    return InMemoryAccountStore()


@pytest_asyncio.fixture
async def db_session(tmp_path) -> AsyncGenerator[AsyncSession, None]:
    """A session on a real database with freshly created tables.

    Uses ``TEST_DATABASE_URL`` when set (e.g. a disposable Postgres), otherwise
    a SQLite file under the test's temporary directory.
    """
    url = os.environ.get("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'shortlinks.db'}")
    engine = create_async_engine(url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def limiter_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def ctx(link_store, account_store, settings) -> SimpleNamespace:
    """A minimal request context for building services directly."""
    return SimpleNamespace(
        links=link_store,
        accounts=account_store,
        settings=settings,
        logger=logging.getLogger("shortlinks.tests"),
    )


@pytest.fixture
def rate_limiter(limiter_storage) -> FixedWindowRateLimiter:
    app_settings = get_settings()
    return FixedWindowRateLimiter(
        limiter_storage,
        points=app_settings.RATE_LIMIT_POINTS,
        window_seconds=app_settings.RATE_LIMIT_WINDOW_SECONDS,
    )


@pytest_asyncio.fixture
async def client(link_store, account_store, rate_limiter) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_link_store] = lambda: link_store
    app.dependency_overrides[get_account_store] = lambda: account_store
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def register_user(client: AsyncClient, email: str = "alice@example.com", password: str = "secret123") -> dict:
    """Register through the API and return ``{"id", "token", "headers"}``."""
    response = await client.post(
        "/api/auth/register",
        json={"username": email.split("@")[0] + "_user", "email": email, "password": password},
    )
    assert response.status_code == 201, response.text
    data = response.json()["data"]
    token = data["meta"]["token"]
    return {"id": data["id"], "token": token, "headers": {"Authorization": f"Bearer {token}"}}


@pytest.fixture
def register():
    return register_user
