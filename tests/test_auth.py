"""Token, password and identity-gate tests."""

import datetime
import uuid

import pytest
from httpx import AsyncClient
from jose import jwt

from shortlinks.auth import (
    ANONYMOUS,
    Identity,
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)


@pytest.fixture
def identity() -> Identity:
    return Identity(id=uuid.uuid4(), email="alice@example.com")


def test_token_round_trip(identity, settings) -> None:
    token = create_access_token(identity, settings)
    assert decode_access_token(token, settings) == identity


def test_token_expires_after_configured_hours(identity, settings) -> None:
    token = create_access_token(identity, settings)
    claims = jwt.get_unverified_claims(token)

    expected = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=24)
    assert abs(claims["exp"] - expected.timestamp()) < 60
    assert claims["id"] == str(identity.id)
    assert claims["email"] == identity.email


def test_expired_token_is_anonymous(identity, settings) -> None:
    token = create_access_token(identity, settings, expires_delta=datetime.timedelta(seconds=-5))
    assert decode_access_token(token, settings) is ANONYMOUS


def test_token_signed_with_other_secret_is_anonymous(identity, settings) -> None:
    forged = settings.model_copy(update={"JWT_SECRET": "someone-else"})
    token = create_access_token(identity, forged)
    assert decode_access_token(token, settings) is ANONYMOUS


def test_garbage_token_is_anonymous(settings) -> None:
    assert decode_access_token("not.a.jwt", settings) is ANONYMOUS


def test_token_without_identity_claims_is_anonymous(settings) -> None:
    token = jwt.encode({"email": "a@b.co"}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    assert decode_access_token(token, settings) is ANONYMOUS


def test_identity_states() -> None:
    assert Identity(id=uuid.uuid4(), email="a@b.co").is_authenticated
    assert not ANONYMOUS.is_authenticated


def test_password_hash_and_verify() -> None:
    hashed = hash_password("secret123", rounds=4)
    assert hashed != "secret123"
    assert verify_password("secret123", hashed)
    assert not verify_password("wrong-password", hashed)


def test_verify_password_against_malformed_hash() -> None:
    assert not verify_password("secret123", "not-a-bcrypt-hash")


@pytest.mark.asyncio
async def test_required_route_without_token_is_401(client: AsyncClient) -> None:
    response = await client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.json()["errors"][0]["title"] == "Unauthorized"


@pytest.mark.asyncio
async def test_required_route_with_invalid_token_is_401(client: AsyncClient) -> None:
    response = await client.get("/api/auth/me", headers={"Authorization": "Bearer nonsense"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_optional_route_ignores_invalid_token(client: AsyncClient) -> None:
    response = await client.post(
        "/api/urls",
        json={"originalUrl": "https://example.com"},
        headers={"Authorization": "Bearer nonsense"},
    )
    assert response.status_code == 201
    assert response.json()["data"]["relationships"] == {}


@pytest.mark.asyncio
async def test_non_bearer_scheme_is_anonymous(client: AsyncClient) -> None:
    response = await client.get("/api/auth/me", headers={"Authorization": "Basic YWxpY2U6c2VjcmV0"})
    assert response.status_code == 401
