"""Slug generation and allocation.

Flow Diagram — SlugAllocator
============================
::
    ┌──────────────┐
    │ custom slug? │
    └──────┬───────┘
    YES    │         NO
    ┌──────┴───────────────┐
    ▼                      ▼
┌──────────┐       ┌──────────────┐
│ validate │       │ nanoid(6)    │◄─────┐
│ shape    │       │ candidate    │      │
└────┬─────┘       └──────┬───────┘      │
     ▼                    ▼              │ taken and
┌──────────┐       ┌──────────────┐      │ attempts left
│ exists?  │       │ exists?      │──────┘
└────┬─────┘       └──────┬───────┘
 YES │ NO                 │ free
 409 ▼                    ▼
  return slug        return slug

Key Behaviours
===============
- Custom slugs are never substituted. A taken custom slug is a Conflict.
- Generated slugs are retried up to ``SLUG_MAX_ATTEMPTS`` times, then
  ``SlugAllocationError`` is raised.
- The allocator only checks. The unique constraint on insert is the real
  guard, so callers retry generated slugs that lose an insert race.
"""

import re
import uuid

from nanoid import generate

from shortlinks.errors import Conflict, InvalidInput, ShortLinkError
from shortlinks.stores import SLUG_IN_USE, ShortLinkStore

__all__ = [
    "ALPHABET",
    "SlugAllocationError",
    "SlugAllocator",
    "generate_slug",
    "validate_custom_slug",
]

ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
CUSTOM_SLUG_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


class SlugAllocationError(ShortLinkError):
    """No free generated slug was found within the attempt budget."""


def generate_slug(length: int = 6) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(ALPHABET, length)


def validate_custom_slug(slug: str, min_length: int = 3, max_length: int = 32) -> str:
    """Return the stripped slug or raise ``InvalidInput`` if it is not URL-safe."""
    slug = slug.strip()
    if len(slug) < min_length:
        raise InvalidInput(f"Slug must be at least {min_length} characters")
    if len(slug) > max_length:
        raise InvalidInput(f"Slug must be at most {max_length} characters")
    if not CUSTOM_SLUG_PATTERN.fullmatch(slug):
        raise InvalidInput("Slug may only contain letters, digits, '-' and '_'")
    return slug


class SlugAllocator:
    def __init__(
        self,
        links: ShortLinkStore,
        length: int = 6,
        max_attempts: int = 5,
        min_custom_length: int = 3,
        max_custom_length: int = 32,
    ):
        assert max_attempts >= 1, "max_attempts must be at least 1"
        self._links = links
        self._length = length
        self._min_custom_length = min_custom_length
        self._max_custom_length = max_custom_length
        self.max_attempts = max_attempts

    def validate(self, slug: str) -> str:
        return validate_custom_slug(slug, self._min_custom_length, self._max_custom_length)

    async def claim_custom(self, slug: str, exclude_id: uuid.UUID | None = None) -> str:
        slug = self.validate(slug)
        if await self._links.slug_exists(slug, exclude_id=exclude_id):
            raise Conflict(SLUG_IN_USE)
        return slug

    async def next_generated(self, attempts: int | None = None) -> str:
        for _ in range(attempts or self.max_attempts):
            candidate = generate_slug(self._length)
            if not await self._links.slug_exists(candidate):
                return candidate
        raise SlugAllocationError("Could not allocate a unique slug")
