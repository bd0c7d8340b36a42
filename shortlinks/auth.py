"""Stateless bearer-token authentication.

Two gates sit in front of the routes:

- ``current_identity`` runs for every request (it is registered as an
  application-wide dependency). It never rejects. A missing, malformed,
  expired or forged token yields ``ANONYMOUS``; a valid one yields an
  ``Identity``.
- ``require_identity`` is added per route and turns ``ANONYMOUS`` into 401.

Tokens are HS256 JWTs carrying ``{sub, id, email, exp}``. There is no refresh
and no revocation; expiry is the only way a token stops working.
"""

import datetime
import logging
import uuid
from dataclasses import dataclass
from typing import Union

import bcrypt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from shortlinks.config import Settings, get_settings
from shortlinks.errors import Unauthenticated

__all__ = [
    "ANONYMOUS",
    "Anonymous",
    "Caller",
    "Identity",
    "create_access_token",
    "current_identity",
    "decode_access_token",
    "hash_password",
    "require_identity",
    "verify_password",
]

logger = logging.getLogger("shortlinks")

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    id: uuid.UUID
    email: str

    @property
    def is_authenticated(self) -> bool:
        return True


@dataclass(frozen=True)
class Anonymous:
    @property
    def is_authenticated(self) -> bool:
        return False


ANONYMOUS = Anonymous()

Caller = Union[Identity, Anonymous]


def create_access_token(identity: Identity, settings: Settings, expires_delta: datetime.timedelta | None = None) -> str:
    expire = datetime.datetime.now(datetime.timezone.utc) + (
        expires_delta or datetime.timedelta(hours=settings.JWT_EXPIRE_HOURS)
    )
    claims = {
        "sub": str(identity.id),
        "id": str(identity.id),
        "email": identity.email,
        "exp": expire,
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str, settings: Settings) -> Caller:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        logger.debug(f"Ignoring invalid bearer token: {exc}")
        return ANONYMOUS

    try:
        return Identity(id=uuid.UUID(str(payload.get("id") or payload["sub"])), email=str(payload["email"]))
    except (KeyError, ValueError):
        logger.debug("Ignoring bearer token with incomplete claims")
        return ANONYMOUS


def hash_password(password: str, rounds: int = 10) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


async def current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> Caller:
    identity: Caller = ANONYMOUS
    if credentials is not None and credentials.credentials:
        identity = decode_access_token(credentials.credentials, settings)
    return identity


async def require_identity(identity: Caller = Depends(current_identity)) -> Identity:
    if not isinstance(identity, Identity):
        raise Unauthenticated("Authentication required")
    return identity
