from __future__ import annotations

import math
from dataclasses import dataclass

from services.cache import CacheBackend


@dataclass(slots=True)
class RateLimitResult:
    allowed: bool
    current: int
    limit: int
    retry_after: float = 0.0


class CooldownLimiter:
    """Fixed-window hit counter shared through the cache backend."""

    def __init__(self, cache: CacheBackend) -> None:
        self.cache = cache

    async def hit(self, key: str, *, limit: int, window_seconds: float) -> RateLimitResult:
        current = await self.cache.incr(key, ttl=window_seconds)
        if current <= limit:
            return RateLimitResult(allowed=True, current=current, limit=limit)
        remaining = await self.cache.ttl(key)
        return RateLimitResult(
            allowed=False,
            current=current,
            limit=limit,
            retry_after=float(math.ceil(remaining if remaining is not None else window_seconds)),
        )

    async def reset(self, key: str) -> None:
        await self.cache.delete(key)
