"""Pydantic schemas for request/response validation.

All wire names are camelCase (``originalUrl``, ``customSlug``, ...) while the
Python attributes stay snake_case. Responses follow a small resource-document
shape::

    {"data": {"type": "urls", "id": "...", "attributes": {...}, "relationships": {...}}}

Schema Hierarchy
=================
::
    Requests
    ├─ LinkCreate      originalUrl, customSlug?
    ├─ LinkUpdate      originalUrl?, customSlug?
    ├─ RegisterRequest displayName|username, email, password
    └─ LoginRequest    email, password

    Responses
    ├─ LinkDocument / LinkCollection  (LinkResource → LinkAttributes)
    ├─ RedirectInfo                   originalUrl, slug, visitCount
    ├─ AccountDocument                (AccountResource → AccountAttributes, TokenMeta?)
    ├─ ErrorDocument                  errors: [ErrorObject]
    └─ HealthResponse
"""

import datetime
import uuid
from typing import Literal

import validators
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from shortlinks.enums import HealthStatus

__all__ = [
    "AccountAttributes",
    "AccountDocument",
    "AccountResource",
    "ErrorDocument",
    "ErrorObject",
    "HealthResponse",
    "LinkAttributes",
    "LinkCollection",
    "LinkCreate",
    "LinkDocument",
    "LinkResource",
    "LinkUpdate",
    "LoginRequest",
    "RedirectInfo",
    "RegisterRequest",
    "Relationship",
    "ResourceIdentifier",
    "TokenMeta",
]

MAX_PASSWORD_BYTES = 72


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class LinkCreate(CamelModel):
    original_url: str
    custom_slug: str | None = None


class LinkUpdate(CamelModel):
    original_url: str | None = None
    custom_slug: str | None = None


def _normalize_email(value: str) -> str:
    value = value.strip().lower()
    if not validators.email(value):
        raise ValueError("Must be a valid email")
    return value


class RegisterRequest(CamelModel):
    display_name: str = Field(
        min_length=3,
        max_length=100,
        validation_alias=AliasChoices("displayName", "username", "display_name"),
    )
    email: str
    password: str = Field(min_length=6)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalize_email(v)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
        return v


class LoginRequest(CamelModel):
    email: str
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalize_email(v)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ResourceIdentifier(CamelModel):
    type: str
    id: uuid.UUID


class Relationship(CamelModel):
    data: ResourceIdentifier


class LinkAttributes(CamelModel):
    original_url: str
    short_url: str
    slug: str
    qr_code: str
    visit_count: int
    created_at: datetime.datetime
    updated_at: datetime.datetime


class LinkResource(CamelModel):
    type: Literal["urls"] = "urls"
    id: uuid.UUID
    attributes: LinkAttributes
    relationships: dict[str, Relationship] = Field(default_factory=dict)


class LinkDocument(CamelModel):
    data: LinkResource


class LinkCollection(CamelModel):
    data: list[LinkResource]


class RedirectInfo(CamelModel):
    original_url: str
    slug: str
    visit_count: int


class AccountAttributes(CamelModel):
    email: str
    display_name: str
    created_at: datetime.datetime
    updated_at: datetime.datetime


class TokenMeta(CamelModel):
    token: str


class AccountResource(CamelModel):
    type: Literal["users"] = "users"
    id: uuid.UUID
    attributes: AccountAttributes
    meta: TokenMeta | None = None


class AccountDocument(CamelModel):
    data: AccountResource


class ErrorObject(CamelModel):
    status: str
    title: str
    detail: str


class ErrorDocument(CamelModel):
    errors: list[ErrorObject]


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
