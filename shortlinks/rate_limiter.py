"""Fixed-window rate limiting on top of the ``limits`` package.

Counters live in Redis through ``limits.aio.storage.RedisStorage``, the same
backend slowapi uses. The fixed-window strategy keeps one counter per client;
the first hit creates it with a TTL of one window, so the window starts at the
client's first request rather than at a wall-clock boundary.

Flow Diagram — FixedWindowRateLimiter.consume()
===============================================
::
    ┌──────────────────┐
    │ strategy.hit()   │──── StorageError ───► fail_open? admit : 503
    │ INCR (+ EXPIRE   │
    │ on first hit)    │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ window stats     │
    │ (reset, left)    │
    └────────┬─────────┘
      within │ over
      allow  │ reject (429, Retry-After = seconds until reset)

Key Behaviours
===============
- The counter is consumed before the protected handler runs.
- ``Retry-After`` is derived from the counter's expiry, never less than 1.
- If the store is unreachable the limiter admits the request and logs a
  warning when ``fail_open`` is set, otherwise it raises ``ServiceUnavailable``.
"""

import logging
import math
import time
from dataclasses import dataclass

from limits import RateLimitItemPerSecond
from limits.aio import strategies
from limits.aio.storage import Storage
from limits.storage import storage_from_string
from limits.errors import StorageError
from prometheus_client import Counter

from shortlinks.errors import ServiceUnavailable

__all__ = [
    "FixedWindowRateLimiter",
    "RateLimitDecision",
    "redis_storage",
]

logger = logging.getLogger("shortlinks")

RATE_LIMIT_REJECTIONS_TOTAL = Counter(
    "shortlinks_rate_limit_rejections_total",
    "Requests rejected by the fixed-window rate limiter",
)
RATE_LIMIT_STORE_ERRORS_TOTAL = Counter(
    "shortlinks_rate_limit_store_errors_total",
    "Rate limiter decisions made without a reachable counter store",
)


def redis_storage(redis_url: str) -> Storage:
    """Async ``limits`` storage for ``redis_url`` that raises ``StorageError`` on outages."""
    return storage_from_string(f"async+{redis_url}", wrap_exceptions=True)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int


class FixedWindowRateLimiter:
    def __init__(
        self,
        storage: Storage,
        points: int = 10,
        window_seconds: int = 1,
        key_prefix: str = "ratelimit",
        fail_open: bool = True,
    ):
        assert points > 0, f"points must be positive, got {points!r}"
        assert window_seconds > 0, f"window_seconds must be positive, got {window_seconds!r}"
        self._strategy = strategies.FixedWindowRateLimiter(storage)
        self._item = RateLimitItemPerSecond(points, window_seconds, namespace=key_prefix)
        self.points = points
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self.fail_open = fail_open

    async def consume(self, client_key: str) -> RateLimitDecision:
        try:
            allowed = await self._strategy.hit(self._item, client_key)
            stats = await self._strategy.get_window_stats(self._item, client_key)
        except StorageError as exc:
            RATE_LIMIT_STORE_ERRORS_TOTAL.inc()
            if not self.fail_open:
                logger.error(f"Rate limiter store unavailable, rejecting {client_key}: {exc}")
                raise ServiceUnavailable("Rate limiting is temporarily unavailable") from exc
            logger.warning(f"Rate limiter store unavailable, admitting {client_key}: {exc}")
            return RateLimitDecision(allowed=True, limit=self.points, remaining=self.points, retry_after=0)

        retry_after = max(1, math.ceil(stats.reset_time - time.time()))
        if not allowed:
            RATE_LIMIT_REJECTIONS_TOTAL.inc()
            return RateLimitDecision(allowed=False, limit=self.points, remaining=0, retry_after=retry_after)
        return RateLimitDecision(
            allowed=True, limit=self.points, remaining=stats.remaining, retry_after=retry_after
        )
