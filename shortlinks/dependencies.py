"""Dependency injection with a singleton service manager.

Shared resources (settings, logger, rate limiter) live on a
process-wide ``ServiceManager``. Per-request resources (the database session
and the stores wrapping it) are bundled into a ``RequestContext`` from which
the services are built.

Dependency Graph
================
::
    get_db ──► get_link_store ────┐
          └──► get_account_store ─┤
    get_service_manager ──────────┴──► get_request_context ──► get_link_service
                                                           └──► get_account_service

    get_service_manager ──► get_rate_limiter ──► enforce_rate_limit
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.account_service import AccountService
from shortlinks.config import Settings, get_settings
from shortlinks.database import get_db
from shortlinks.errors import RateLimited
from shortlinks.link_service import ShortLinkService
from shortlinks.rate_limiter import FixedWindowRateLimiter, redis_storage
from shortlinks.stores import AccountStore, ShortLinkStore, SqlAccountStore, SqlShortLinkStore

__all__ = [
    "RequestContext",
    "ServiceManager",
    "enforce_rate_limit",
    "get_account_service",
    "get_account_store",
    "get_link_service",
    "get_link_store",
    "get_rate_limiter",
    "get_request_context",
    "get_service_manager",
]


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton holder for resources shared by all requests."""

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        """Initialize shared resources once at startup."""
        if not self._initialized:
            self.settings = get_settings()
            self.logger = self._setup_logger()
            self.rate_limiter = FixedWindowRateLimiter(
                redis_storage(self.settings.REDIS_URL),
                points=self.settings.RATE_LIMIT_POINTS,
                window_seconds=self.settings.RATE_LIMIT_WINDOW_SECONDS,
                key_prefix=self.settings.RATE_LIMIT_KEY_PREFIX,
                fail_open=self.settings.RATE_LIMIT_FAIL_OPEN,
            )
            self._initialized = True

    def _setup_logger(self) -> logging.Logger:
        logger = logging.getLogger("shortlinks")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL)
        return logger

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        self._initialized = False


_service_manager = ServiceManager()


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Everything a service needs for one request.

    Attributes:
        links: Short link store bound to this request's session
        accounts: Account store bound to this request's session
        service_manager: Singleton with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID supplied by the caller, if any
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    links: ShortLinkStore
    accounts: AccountStore
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=time.time)

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


def get_link_store(db: AsyncSession = Depends(get_db)) -> ShortLinkStore:
    return SqlShortLinkStore(db)


def get_account_store(db: AsyncSession = Depends(get_db)) -> AccountStore:
    return SqlAccountStore(db)


async def get_request_context(
    request: Request,
    links: ShortLinkStore = Depends(get_link_store),
    accounts: AccountStore = Depends(get_account_store),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        links=links,
        accounts=accounts,
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
    )


def get_link_service(ctx: RequestContext = Depends(get_request_context)) -> ShortLinkService:
    return ShortLinkService.from_context(ctx)


def get_account_service(ctx: RequestContext = Depends(get_request_context)) -> AccountService:
    return AccountService.from_context(ctx)


async def get_rate_limiter(manager: ServiceManager = Depends(get_service_manager)) -> FixedWindowRateLimiter:
    return manager.rate_limiter


async def enforce_rate_limit(
    request: Request,
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
) -> None:
    client_key = request.client.host if request.client and request.client.host else "anonymous"
    decision = await limiter.consume(client_key)
    if not decision.allowed:
        logging.getLogger("shortlinks").warning(
            f"Rate limit exceeded for {client_key} on {request.method} {request.url.path}"
        )
        raise RateLimited(
            "You have exceeded the rate limit. Please try again later.",
            headers={"Retry-After": str(decision.retry_after)},
        )
