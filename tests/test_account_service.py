"""Unit tests for AccountService against the in-memory account store."""

import uuid
from unittest.mock import patch

import pytest

from shortlinks.account_service import AccountService
from shortlinks.auth import Identity, decode_access_token, verify_password
from shortlinks.errors import Conflict, NotFound, Unauthenticated
from shortlinks.schemas import LoginRequest, RegisterRequest


@pytest.fixture
def service(ctx) -> AccountService:
    return AccountService.from_context(ctx)


def _registration(email: str = "alice@example.com", password: str = "secret123") -> RegisterRequest:
    return RegisterRequest(display_name="alice", email=email, password=password)


@pytest.mark.asyncio
async def test_register_hashes_password_and_issues_token(service, account_store, settings) -> None:
    session = await service.register(_registration())

    stored = account_store.accounts[session.account.id]
    assert stored.password_hash != "secret123"
    assert stored.password_hash.startswith("$2")

    identity = decode_access_token(session.token, settings)
    assert identity == Identity(id=session.account.id, email="alice@example.com")


@pytest.mark.asyncio
async def test_register_duplicate_email_is_conflict(service, account_store) -> None:
    await service.register(_registration())

    with pytest.raises(Conflict):
        await service.register(_registration(password="another-one"))
    assert len(account_store.accounts) == 1


@pytest.mark.asyncio
async def test_register_normalizes_email_case(service) -> None:
    await service.register(_registration(email="Alice@Example.com"))

    with pytest.raises(Conflict):
        await service.register(_registration(email="alice@example.com"))


@pytest.mark.asyncio
async def test_login_with_correct_password(service, settings) -> None:
    registered = await service.register(_registration())

    session = await service.login(LoginRequest(email="alice@example.com", password="secret123"))

    assert session.account.id == registered.account.id
    assert decode_access_token(session.token, settings).id == registered.account.id


@pytest.mark.asyncio
async def test_login_failures_are_indistinguishable(service) -> None:
    await service.register(_registration())

    with pytest.raises(Unauthenticated) as wrong_password:
        await service.login(LoginRequest(email="alice@example.com", password="not-it"))
    with pytest.raises(Unauthenticated) as unknown_email:
        await service.login(LoginRequest(email="nobody@example.com", password="secret123"))

    assert wrong_password.value.detail == unknown_email.value.detail


@pytest.mark.asyncio
async def test_me_returns_account(service) -> None:
    registered = await service.register(_registration())

    account = await service.me(Identity(id=registered.account.id, email="alice@example.com"))
    assert account.display_name == "alice"


@pytest.mark.asyncio
async def test_me_for_deleted_account(service) -> None:
    with pytest.raises(NotFound):
        await service.me(Identity(id=uuid.uuid4(), email="ghost@example.com"))


@pytest.mark.asyncio
async def test_login_with_unknown_email_still_checks_a_password(service) -> None:
    with patch("shortlinks.account_service.verify_password", wraps=verify_password) as checked:
        with pytest.raises(Unauthenticated):
            await service.login(LoginRequest(email="nobody@example.com", password="secret123"))

    checked.assert_called_once()
    assert checked.call_args.args[0] == "secret123"
