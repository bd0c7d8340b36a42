"""Account registration, login and lookup.

Passwords are hashed with bcrypt in the threadpool so hashing does not stall
the event loop. Login answers unknown emails and wrong passwords with the
same 401 so a client cannot tell which one was wrong.
"""

import functools
from dataclasses import dataclass

from starlette.concurrency import run_in_threadpool

from shortlinks.auth import Identity, create_access_token, hash_password, verify_password
from shortlinks.errors import Conflict, NotFound, Unauthenticated
from shortlinks.models import Account
from shortlinks.schemas import LoginRequest, RegisterRequest
from shortlinks.stores import EMAIL_IN_USE

__all__ = ["AccountService", "AccountSession"]

INVALID_CREDENTIALS = "Invalid email or password"


@functools.lru_cache
def _placeholder_hash(rounds: int) -> str:
    """Hash checked when the email is unknown, so both login failures cost one bcrypt round."""
    return hash_password("placeholder-password", rounds)


@dataclass(frozen=True)
class AccountSession:
    account: Account
    token: str


class AccountService:
    def __init__(self, ctx: "RequestContext"):
        self._accounts = ctx.accounts
        self._logger = ctx.logger
        self._settings = ctx.settings

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "AccountService":
        return cls(ctx)

    async def register(self, request: RegisterRequest) -> AccountSession:
        """Create an account and issue its first token.

        Raises:
            Conflict: The email is already registered.
        """
        if await self._accounts.get_by_email(request.email) is not None:
            self._logger.info(f"Registration refused, email in use: {request.email}")
            raise Conflict(EMAIL_IN_USE)

        password_hash = await run_in_threadpool(hash_password, request.password, self._settings.BCRYPT_ROUNDS)
        account = await self._accounts.add(
            Account(display_name=request.display_name, email=request.email, password_hash=password_hash)
        )
        self._logger.info(f"Account registered: {account.id}")
        return AccountSession(account=account, token=self._issue_token(account))

    async def login(self, request: LoginRequest) -> AccountSession:
        account = await self._accounts.get_by_email(request.email)
        if account is not None:
            password_hash = account.password_hash
        else:
            password_hash = await run_in_threadpool(_placeholder_hash, self._settings.BCRYPT_ROUNDS)
        password_ok = await run_in_threadpool(verify_password, request.password, password_hash)
        if account is None or not password_ok:
            self._logger.info(f"Failed login for {request.email}")
            raise Unauthenticated(INVALID_CREDENTIALS)

        self._logger.info(f"Account logged in: {account.id}")
        return AccountSession(account=account, token=self._issue_token(account))

    async def me(self, caller: Identity) -> Account:
        account = await self._accounts.get_by_id(caller.id)
        if account is None:
            raise NotFound("User not found")
        return account

    def _issue_token(self, account: Account) -> str:
        return create_access_token(Identity(id=account.id, email=account.email), self._settings)
