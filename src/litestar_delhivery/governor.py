"""Per-endpoint call budgets and short-term caches.

The carrier publishes quotas per endpoint (requests per 5 minutes per
IP). Budgets are enforced locally before a request leaves the process.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from litestar_delhivery.exceptions import QuotaExceededError
from litestar_delhivery.protocols import CacheStore

logger = logging.getLogger(__name__)

QUOTA_WINDOW_SECONDS = 300.0

TRACK = "track"
FETCH_WAYBILL = "fetch_waybill"
PINCODE_SERVICEABILITY = "pincode_serviceability"

# Requests per 5 minutes; None means the carrier publishes no limit.
DEFAULT_QUOTAS: dict[str, int | None] = {
    PINCODE_SERVICEABILITY: 4500,
    TRACK: 750,
    FETCH_WAYBILL: 5,
}

# Batch size accepted by the tracking endpoint.
MAX_TRACKING_BATCH = 50


@dataclass
class Quota:
    limit: int
    window: float = QUOTA_WINDOW_SECONDS


class RateGovernor:
    """Sliding-window call budgets plus a TTL cache helper."""

    def __init__(
        self,
        cache: CacheStore,
        quotas: dict[str, int | None] | None = None,
        window: float = QUOTA_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache = cache
        self._clock = clock
        source = DEFAULT_QUOTAS if quotas is None else quotas
        self._quotas = {
            key: Quota(limit=limit, window=window)
            for key, limit in source.items()
            if limit is not None
        }
        self._calls: dict[str, deque[float]] = {}

    @property
    def cache(self) -> CacheStore:
        return self._cache

    def _window(self, endpoint_key: str) -> deque[float]:
        calls = self._calls.setdefault(endpoint_key, deque())
        quota = self._quotas.get(endpoint_key)
        if quota is not None:
            horizon = self._clock() - quota.window
            while calls and calls[0] <= horizon:
                calls.popleft()
        return calls

    def remaining(self, endpoint_key: str) -> int | None:
        quota = self._quotas.get(endpoint_key)
        if quota is None:
            return None
        return max(0, quota.limit - len(self._window(endpoint_key)))

    def should_throttle(self, endpoint_key: str) -> bool:
        remaining = self.remaining(endpoint_key)
        return remaining is not None and remaining <= 0

    def record_call(self, endpoint_key: str) -> None:
        if endpoint_key in self._quotas:
            self._window(endpoint_key).append(self._clock())

    def acquire(self, endpoint_key: str) -> None:
        """Reserve one call or raise QuotaExceededError."""
        if self.should_throttle(endpoint_key):
            logger.warning(
                "Call budget exhausted for endpoint %s, refusing request",
                endpoint_key,
            )
            raise QuotaExceededError(endpoint_key)
        self.record_call(endpoint_key)

    async def cached_or_fetch(
        self,
        key: str,
        ttl: float,
        fetch: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Return the cached value for key, or fetch and cache it."""
        cached = await self._cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return cached
        value = await fetch()
        await self._cache.set(key, value, ttl=ttl)
        return value
