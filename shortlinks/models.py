"""SQLAlchemy ORM models for the link shortener application.

Data Model Layout
=================
::
    accounts table
    ├─ id (UUID PRIMARY KEY)
    ├─ display_name (VARCHAR(100) NOT NULL)
    ├─ email (VARCHAR(320) UNIQUE, INDEXED)
    ├─ password_hash (VARCHAR(255) NOT NULL)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW())
    └─ updated_at (TIMESTAMPTZ, DEFAULT NOW(), ON UPDATE)

    short_links table
    ├─ id (UUID PRIMARY KEY)
    ├─ slug (VARCHAR(32) UNIQUE, INDEXED)
    ├─ original_url (TEXT NOT NULL)
    ├─ visit_count (INTEGER DEFAULT 0)
    ├─ owner_id (UUID NULL, FK accounts.id, INDEXED)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW())
    └─ updated_at (TIMESTAMPTZ, DEFAULT NOW(), ON UPDATE)

Key Behaviours
===============
- slug is unique; the constraint is the final guard against racing inserts.
- owner_id is write-once. Stores only ever set it while it is still NULL.
- visit_count is only changed through an atomic ``visit_count + 1`` update.

Classes:
    Account:  A registered user.
    ShortLink:  A slug mapped to a destination URL.
"""

import datetime
import uuid

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from shortlinks.database import Base

__all__ = ["Account", "ShortLink"]


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, email='{self.email}')>"


class ShortLink(Base):
    __tablename__ = "short_links"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    slug: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    visit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("accounts.id"), index=True, nullable=True
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ShortLink(id={self.id}, slug='{self.slug}', visit_count={self.visit_count})>"
