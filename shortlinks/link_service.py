"""Link Service Layer - Resolution and Management

This module holds the business rules for short links: creating them,
resolving slugs to destinations, and the owner-scoped management operations.

Architecture Overview
=====================
::
    ┌──────────────────────────────────────────────────────────┐
    │                     ShortLinkService                     │
    │  ┌───────────────┐  ┌───────────────┐  ┌──────────────┐  │
    │  │  Resolution   │  │  Management   │  │  Presenting  │  │
    │  │ • resolve     │  │ • create      │  │ • short URL  │  │
    │  │               │  │ • update      │  │ • QR code    │  │
    │  │               │  │ • list_owned  │  │              │  │
    │  │               │  │ • claim       │  │              │  │
    │  │               │  │ • get_details │  │              │  │
    │  └───────────────┘  └───────────────┘  └──────────────┘  │
    └──────────────────────────────────────────────────────────┘
              │                   │                  │
              ▼                   ▼                  ▼
    ┌──────────────────┐ ┌──────────────────┐ ┌──────────────┐
    │  ShortLinkStore  │ │  SlugAllocator   │ │   qrcode     │
    └──────────────────┘ └──────────────────┘ └──────────────┘

Link Creation Flow
------------------
::
    ┌─────────────┐
    │ POST /urls  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Validate    │──── invalid ───► 400
    │ destination │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Allocate    │──── custom taken ───► 409
    │ slug        │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Insert      │──── generated slug raced ───► next candidate
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Render QR   │
    └──────┬──────┘
           ▼
          201

Ownership Rules
---------------
- An unowned link may be updated by any authenticated caller and read by
  anyone.
- An owned link may only be read or updated by its owner (403 otherwise).
- Claiming sets the owner exactly once. The store only writes ``owner_id``
  while it is still NULL, so two racing claims cannot both succeed.
"""

import time
import uuid
from dataclasses import dataclass
from typing import Optional

import validators
from prometheus_client import Counter, Histogram

from shortlinks.auth import Caller, Identity
from shortlinks.enums import RequestStatus
from shortlinks.errors import Conflict, Forbidden, InvalidInput, NotFound
from shortlinks.models import ShortLink
from shortlinks.qr import render_qr_data_url
from shortlinks.schemas import LinkCreate, LinkUpdate
from shortlinks.slugs import SlugAllocationError, SlugAllocator

__all__ = ["LinkView", "ShortLinkService", "is_valid_url"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

LINK_CREATION_REQUESTS_TOTAL = Counter(
    "shortlinks_creation_requests_total",
    "Total short link creation requests",
    ["status"],
)
LINK_CREATION_DURATION = Histogram(
    "shortlinks_creation_duration_seconds",
    "Time taken to create short links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
LINK_RESOLUTIONS_TOTAL = Counter(
    "shortlinks_resolutions_total",
    "Total slug resolution requests",
    ["status"],
)


def is_valid_url(value: str | None) -> bool:
    # simple_host admits single-label hosts such as localhost or intranet names
    return bool(value) and bool(validators.url(value, simple_host=True))


@dataclass(frozen=True)
class LinkView:
    """A link together with its public short URL and rendered QR code."""

    link: ShortLink
    short_url: str
    qr_code: str


class ShortLinkService:
    """Service class for short link resolution and management.

    Example:
        >>> service = ShortLinkService.from_context(ctx)
        >>> view = await service.create(LinkCreate(original_url="https://example.com"), ANONYMOUS)
        >>> print(view.link.slug, view.short_url)
    """

    def __init__(self, ctx: "RequestContext"):
        self._links = ctx.links
        self._accounts = ctx.accounts
        self._logger = ctx.logger
        self._settings = ctx.settings
        self._allocator = SlugAllocator(
            ctx.links,
            length=ctx.settings.SLUG_LENGTH,
            max_attempts=ctx.settings.SLUG_MAX_ATTEMPTS,
            min_custom_length=ctx.settings.CUSTOM_SLUG_MIN_LENGTH,
            max_custom_length=ctx.settings.CUSTOM_SLUG_MAX_LENGTH,
        )

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "ShortLinkService":
        return cls(ctx)

    # ========================================================================
    # RESOLUTION
    # ========================================================================

    async def resolve(self, slug: str) -> ShortLink:
        """Count a visit to ``slug`` and return the updated link.

        The increment is a single atomic update in the store, so concurrent
        resolutions of the same slug never lose a visit.

        Raises:
            InvalidInput: If the slug is empty.
            NotFound: If no link has this slug.
        """
        if not slug or not slug.strip():
            raise InvalidInput("Invalid or missing slug parameter")

        link = await self._links.increment_visits(slug)
        if link is None:
            LINK_RESOLUTIONS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
            self._logger.info(f"Resolution miss for slug: {slug}")
            raise NotFound("The requested URL does not exist")

        LINK_RESOLUTIONS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.debug(f"Resolved {slug} -> {link.original_url} (visits={link.visit_count})")
        return link

    # ========================================================================
    # MANAGEMENT
    # ========================================================================

    async def create(self, request: LinkCreate, caller: Caller) -> LinkView:
        """Create a new short link.

        Args:
            request: Destination and optional custom slug.
            caller: The requesting identity; an authenticated caller becomes
                the owner.

        Returns:
            LinkView: The stored link with its short URL and QR code.

        Raises:
            InvalidInput: Malformed destination or custom slug.
            Conflict: The custom slug is already taken.
            SlugAllocationError: No free generated slug within the budget.
        """
        start_time = time.perf_counter()
        try:
            self._require_valid_url(request.original_url)
            owner_id = await self._resolve_owner(caller)

            custom_slug = _supplied(request.custom_slug)
            if custom_slug is not None:
                slug = await self._allocator.claim_custom(custom_slug)
                link = await self._links.add(self._new_link(slug, request.original_url, owner_id))
            else:
                link = await self._insert_with_generated_slug(request.original_url, owner_id)
        except (InvalidInput, Conflict) as exc:
            status = RequestStatus.CONFLICT if isinstance(exc, Conflict) else RequestStatus.VALIDATION_ERROR
            LINK_CREATION_REQUESTS_TOTAL.labels(status=status).inc()
            self._logger.warning(f"Link creation rejected: {exc.detail}")
            raise
        except Exception as exc:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.error(f"Link creation error: {exc}")
            raise
        finally:
            LINK_CREATION_DURATION.observe(time.perf_counter() - start_time)

        LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Link created: {link.slug} -> {link.original_url} owner={link.owner_id}")
        return self.present(link)

    async def update(self, raw_id: str, request: LinkUpdate, caller: Identity) -> LinkView:
        """Change the destination and/or slug of a link the caller may edit.

        Raises:
            NotFound: Unknown (or malformed) id.
            Forbidden: The link belongs to another account.
            InvalidInput: Malformed destination or slug.
            Conflict: The new slug belongs to a different link.
        """
        link = await self._get_link(raw_id)
        if link.owner_id is not None and link.owner_id != caller.id:
            self._logger.warning(f"Update of {link.id} refused for {caller.id}")
            raise Forbidden("You do not have permission to update this URL")

        original_url = _supplied(request.original_url)
        if original_url is not None:
            self._require_valid_url(original_url)
            link.original_url = original_url

        custom_slug = _supplied(request.custom_slug)
        if custom_slug is not None:
            link.slug = await self._allocator.claim_custom(custom_slug, exclude_id=link.id)

        link = await self._links.save(link)
        self._logger.info(f"Link updated: {link.id} slug={link.slug} -> {link.original_url}")
        return self.present(link)

    async def list_owned(self, caller: Identity) -> list[LinkView]:
        links = await self._links.list_by_owner(caller.id)
        return [self.present(link) for link in links]

    async def claim(self, raw_id: str, caller: Identity) -> LinkView:
        """Attach an anonymous link to the caller's account.

        Raises:
            NotFound: Unknown link, or the caller's account no longer exists.
            Conflict: The link already has an owner.
        """
        link = await self._get_link(raw_id)
        if link.owner_id is not None:
            raise Conflict("This URL is already assigned to a user")

        account = await self._accounts.get_by_id(caller.id)
        if account is None:
            raise NotFound("User not found")

        claimed = await self._links.assign_owner(link.id, account.id)
        if claimed is None:
            # another claim won between our read and the conditional update
            raise Conflict("This URL is already assigned to a user")

        self._logger.info(f"Link {claimed.id} claimed by {account.id}")
        return self.present(claimed)

    async def get_details(self, raw_id: str, caller: Caller) -> LinkView:
        link = await self._get_link(raw_id)
        if link.owner_id is not None and (not isinstance(caller, Identity) or caller.id != link.owner_id):
            raise Forbidden("You do not have permission to view this URL")
        return self.present(link)

    def present(self, link: ShortLink) -> LinkView:
        short_url = f"{self._settings.PUBLIC_BASE_URL.rstrip('/')}/{link.slug}"
        return LinkView(link=link, short_url=short_url, qr_code=render_qr_data_url(short_url))

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    async def _insert_with_generated_slug(self, original_url: str, owner_id: Optional[uuid.UUID]) -> ShortLink:
        # one candidate per attempt, whether it was taken already or lost the insert
        for attempt in range(1, self._allocator.max_attempts + 1):
            try:
                slug = await self._allocator.next_generated(attempts=1)
            except SlugAllocationError:
                continue
            try:
                return await self._links.add(self._new_link(slug, original_url, owner_id))
            except Conflict:
                self._logger.warning(f"Generated slug {slug} lost an insert race (attempt {attempt})")
        raise SlugAllocationError("Could not allocate a unique slug")

    async def _resolve_owner(self, caller: Caller) -> Optional[uuid.UUID]:
        if not isinstance(caller, Identity):
            return None
        account = await self._accounts.get_by_id(caller.id)
        return account.id if account is not None else None

    async def _get_link(self, raw_id: str) -> ShortLink:
        try:
            link_id = uuid.UUID(raw_id)
        except (TypeError, ValueError):
            raise NotFound("URL not found") from None
        link = await self._links.get_by_id(link_id)
        if link is None:
            raise NotFound("URL not found")
        return link

    @staticmethod
    def _new_link(slug: str, original_url: str, owner_id: Optional[uuid.UUID]) -> ShortLink:
        return ShortLink(slug=slug, original_url=original_url, visit_count=0, owner_id=owner_id)

    @staticmethod
    def _require_valid_url(value: str) -> None:
        if not is_valid_url(value):
            raise InvalidInput("The provided URL is not valid", title="Invalid URL")


def _supplied(value: str | None) -> str | None:
    """Treat missing and blank optional fields the same way."""
    if value is None or not value.strip():
        return None
    return value.strip()
