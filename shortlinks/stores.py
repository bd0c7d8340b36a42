"""Storage interfaces and their SQLAlchemy implementations.

Services never touch the session directly; they are handed a
``ShortLinkStore`` and an ``AccountStore``. The SQL implementations below are
the only production ones. Tests substitute in-memory fakes honouring the same
contracts.

Contracts
=========
::
    ShortLinkStore
    ├─ get_by_id(id)               -> ShortLink | None
    ├─ slug_exists(slug, exclude)  -> bool
    ├─ add(link)                   -> ShortLink   (Conflict on duplicate slug)
    ├─ save(link)                  -> ShortLink   (Conflict on duplicate slug)
    ├─ increment_visits(slug)      -> ShortLink | None   (atomic +1)
    ├─ assign_owner(id, owner_id)  -> ShortLink | None   (only while unowned)
    └─ list_by_owner(owner_id)     -> list[ShortLink]    (newest first)

    AccountStore
    ├─ get_by_id(id)      -> Account | None
    ├─ get_by_email(email) -> Account | None
    └─ add(account)       -> Account   (Conflict on duplicate email)
"""

import uuid
from typing import Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.errors import Conflict
from shortlinks.models import Account, ShortLink

__all__ = [
    "AccountStore",
    "ShortLinkStore",
    "SqlAccountStore",
    "SqlShortLinkStore",
]

SLUG_IN_USE = "The custom slug is already in use"
EMAIL_IN_USE = "User with this email already exists"


class ShortLinkStore(Protocol):
    async def get_by_id(self, link_id: uuid.UUID) -> ShortLink | None: ...

    async def slug_exists(self, slug: str, exclude_id: uuid.UUID | None = None) -> bool: ...

    async def add(self, link: ShortLink) -> ShortLink: ...

    async def save(self, link: ShortLink) -> ShortLink: ...

    async def increment_visits(self, slug: str) -> ShortLink | None: ...

    async def assign_owner(self, link_id: uuid.UUID, owner_id: uuid.UUID) -> ShortLink | None: ...

    async def list_by_owner(self, owner_id: uuid.UUID) -> list[ShortLink]: ...


class AccountStore(Protocol):
    async def get_by_id(self, account_id: uuid.UUID) -> Account | None: ...

    async def get_by_email(self, email: str) -> Account | None: ...

    async def add(self, account: Account) -> Account: ...


class SqlShortLinkStore:
    def __init__(self, db: AsyncSession):
        self._db = db

    async def get_by_id(self, link_id: uuid.UUID) -> ShortLink | None:
        return await self._db.get(ShortLink, link_id)

    async def slug_exists(self, slug: str, exclude_id: uuid.UUID | None = None) -> bool:
        stmt = select(ShortLink.id).where(ShortLink.slug == slug)
        if exclude_id is not None:
            stmt = stmt.where(ShortLink.id != exclude_id)
        result = await self._db.execute(stmt.limit(1))
        return result.first() is not None

    async def add(self, link: ShortLink) -> ShortLink:
        self._db.add(link)
        return await self._commit_link(link)

    async def save(self, link: ShortLink) -> ShortLink:
        # updated_at is bumped by the column's onupdate on flush
        self._db.add(link)
        return await self._commit_link(link)

    async def increment_visits(self, slug: str) -> ShortLink | None:
        stmt = (
            update(ShortLink)
            .where(ShortLink.slug == slug)
            .values(visit_count=ShortLink.visit_count + 1, updated_at=func.now())
            .returning(ShortLink)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        link = result.scalar_one_or_none()
        await self._db.commit()
        return link

    async def assign_owner(self, link_id: uuid.UUID, owner_id: uuid.UUID) -> ShortLink | None:
        stmt = (
            update(ShortLink)
            .where(ShortLink.id == link_id, ShortLink.owner_id.is_(None))
            .values(owner_id=owner_id, updated_at=func.now())
            .returning(ShortLink)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        link = result.scalar_one_or_none()
        await self._db.commit()
        return link

    async def list_by_owner(self, owner_id: uuid.UUID) -> list[ShortLink]:
        result = await self._db.execute(
            select(ShortLink)
            .where(ShortLink.owner_id == owner_id)
            .order_by(ShortLink.created_at.desc())
        )
        return list(result.scalars().all())

    async def _commit_link(self, link: ShortLink) -> ShortLink:
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            raise Conflict(SLUG_IN_USE) from exc
        await self._db.refresh(link)
        return link


class SqlAccountStore:
    def __init__(self, db: AsyncSession):
        self._db = db

    async def get_by_id(self, account_id: uuid.UUID) -> Account | None:
        return await self._db.get(Account, account_id)

    async def get_by_email(self, email: str) -> Account | None:
        result = await self._db.execute(select(Account).where(Account.email == email))
        return result.scalar_one_or_none()

    async def add(self, account: Account) -> Account:
        self._db.add(account)
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            raise Conflict(EMAIL_IN_USE) from exc
        await self._db.refresh(account)
        return account
