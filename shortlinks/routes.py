"""FastAPI route definitions for the link shortener REST API.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    POST /api/urls                        [rate limited, identity optional]
        └─ LinkDocument (201) or 400/409/429
    GET  /api/urls/redirect/:slug
        └─ RedirectInfo (200) or 404
    GET  /api/urls/:slug                  [deprecated]
        └─ 302 Redirect or 404
    GET  /api/urls/details/:id            [identity optional]
        └─ LinkDocument (200) or 403/404
    PUT  /api/urls/:id                    [identity required]
        └─ LinkDocument (200) or 400/401/403/404/409
    GET  /api/urls/user/urls              [identity required]
        └─ LinkCollection (200) or 401
    PUT  /api/urls/:id/assign-to-user     [identity required]
        └─ LinkDocument (200) or 401/404/409

    POST /api/auth/register               [rate limited]
        └─ AccountDocument (201) or 400/409/429
    POST /api/auth/login                  [rate limited]
        └─ AccountDocument (200) or 400/401/429
    GET  /api/auth/me                     [identity required]
        └─ AccountDocument (200) or 401/404

Key Behaviours
===============
- Every request passes the optional-identity gate (registered on the app).
- Rate-limited routes consume a permit before anything else runs.
- Errors are rendered as ``{"errors": [{status, title, detail}]}`` by the
  handlers in ``shortlinks.errors``.
"""

import logging

import redis.asyncio as redis
from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.account_service import AccountService, AccountSession
from shortlinks.auth import Caller, Identity, current_identity, require_identity
from shortlinks.database import get_db
from shortlinks.dependencies import (
    RequestContext,
    enforce_rate_limit,
    get_account_service,
    get_link_service,
    get_request_context,
)
from shortlinks.enums import HealthStatus
from shortlinks.link_service import LinkView, ShortLinkService
from shortlinks.models import Account
from shortlinks.redis import get_redis
from shortlinks.schemas import (
    AccountAttributes,
    AccountDocument,
    AccountResource,
    ErrorDocument,
    HealthResponse,
    LinkAttributes,
    LinkCollection,
    LinkCreate,
    LinkDocument,
    LinkResource,
    LinkUpdate,
    LoginRequest,
    RedirectInfo,
    RegisterRequest,
    Relationship,
    ResourceIdentifier,
    TokenMeta,
)

__all__ = ["auth_router", "health_router", "urls_router"]

logger = logging.getLogger("shortlinks")

ERROR_RESPONSES = {
    400: {"model": ErrorDocument},
    401: {"model": ErrorDocument},
    403: {"model": ErrorDocument},
    404: {"model": ErrorDocument},
    409: {"model": ErrorDocument},
    429: {"model": ErrorDocument},
}

health_router = APIRouter(tags=["health"])
urls_router = APIRouter(prefix="/api/urls", tags=["urls"], responses=ERROR_RESPONSES)
auth_router = APIRouter(prefix="/api/auth", tags=["auth"], responses=ERROR_RESPONSES)


def link_resource(view: LinkView) -> LinkResource:
    link = view.link
    relationships = {}
    if link.owner_id is not None:
        relationships["user"] = Relationship(data=ResourceIdentifier(type="users", id=link.owner_id))
    return LinkResource(
        id=link.id,
        attributes=LinkAttributes(
            original_url=link.original_url,
            short_url=view.short_url,
            slug=link.slug,
            qr_code=view.qr_code,
            visit_count=link.visit_count,
            created_at=link.created_at,
            updated_at=link.updated_at,
        ),
        relationships=relationships,
    )


def account_document(account: Account, token: str | None = None) -> AccountDocument:
    return AccountDocument(
        data=AccountResource(
            id=account.id,
            attributes=AccountAttributes(
                email=account.email,
                display_name=account.display_name,
                created_at=account.created_at,
                updated_at=account.updated_at,
            ),
            meta=TokenMeta(token=token) if token is not None else None,
        )
    )


def session_document(session: AccountSession) -> AccountDocument:
    return account_document(session.account, session.token)


# ============================================================================
# HEALTH
# ============================================================================


@health_router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    cache: redis.Redis = Depends(get_redis),
) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await cache.ping()
    except Exception as e:
        logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=status, database=db_status, cache=cache_status)


# ============================================================================
# URLS
# ============================================================================


@urls_router.post(
    "",
    response_model=LinkDocument,
    status_code=201,
    dependencies=[Depends(enforce_rate_limit)],
)
async def create_short_link(
    payload: LinkCreate,
    identity: Caller = Depends(current_identity),
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_link_service),
) -> LinkDocument:
    ctx.logger.info(f"Link creation requested: {payload.original_url} custom_slug={payload.custom_slug}")
    view = await service.create(payload, identity)
    ctx.logger.info(f"Link creation finished in {ctx.get_duration():.1f}ms")
    return LinkDocument(data=link_resource(view))


@urls_router.get("/redirect/{slug}", response_model=RedirectInfo)
async def get_redirect_info(
    slug: str,
    service: ShortLinkService = Depends(get_link_service),
) -> RedirectInfo:
    link = await service.resolve(slug)
    return RedirectInfo(original_url=link.original_url, slug=link.slug, visit_count=link.visit_count)


@urls_router.get("/details/{link_id}", response_model=LinkDocument)
async def get_link_details(
    link_id: str,
    identity: Caller = Depends(current_identity),
    service: ShortLinkService = Depends(get_link_service),
) -> LinkDocument:
    view = await service.get_details(link_id, identity)
    return LinkDocument(data=link_resource(view))


@urls_router.get("/user/urls", response_model=LinkCollection)
async def list_my_links(
    identity: Identity = Depends(require_identity),
    service: ShortLinkService = Depends(get_link_service),
) -> LinkCollection:
    views = await service.list_owned(identity)
    return LinkCollection(data=[link_resource(view) for view in views])


@urls_router.get("/{slug}", deprecated=True, response_class=RedirectResponse, status_code=302)
async def redirect_to_original(
    slug: str,
    service: ShortLinkService = Depends(get_link_service),
) -> RedirectResponse:
    link = await service.resolve(slug)
    return RedirectResponse(url=link.original_url, status_code=302)


@urls_router.put("/{link_id}", response_model=LinkDocument)
async def update_link(
    link_id: str,
    payload: LinkUpdate,
    identity: Identity = Depends(require_identity),
    service: ShortLinkService = Depends(get_link_service),
) -> LinkDocument:
    view = await service.update(link_id, payload, identity)
    return LinkDocument(data=link_resource(view))


@urls_router.put("/{link_id}/assign-to-user", response_model=LinkDocument)
async def assign_link_to_user(
    link_id: str,
    identity: Identity = Depends(require_identity),
    service: ShortLinkService = Depends(get_link_service),
) -> LinkDocument:
    view = await service.claim(link_id, identity)
    return LinkDocument(data=link_resource(view))


# ============================================================================
# AUTH
# ============================================================================


@auth_router.post(
    "/register",
    response_model=AccountDocument,
    status_code=201,
    dependencies=[Depends(enforce_rate_limit)],
)
async def register(
    payload: RegisterRequest,
    service: AccountService = Depends(get_account_service),
) -> AccountDocument:
    return session_document(await service.register(payload))


@auth_router.post(
    "/login",
    response_model=AccountDocument,
    dependencies=[Depends(enforce_rate_limit)],
)
async def login(
    payload: LoginRequest,
    service: AccountService = Depends(get_account_service),
) -> AccountDocument:
    return session_document(await service.login(payload))


@auth_router.get("/me", response_model=AccountDocument, response_model_exclude_none=True)
async def get_current_account(
    identity: Identity = Depends(require_identity),
    service: AccountService = Depends(get_account_service),
) -> AccountDocument:
    return account_document(await service.me(identity))
