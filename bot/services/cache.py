from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import redis.asyncio as redis

from core.config import RedisConfig

LOGGER = logging.getLogger(__name__)


class CacheBackend(Protocol):
    async def get(self, key: str) -> Any: ...
    async def set(self, key: str, value: Any, ttl: float | None = None) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def incr(self, key: str, ttl: float | None = None) -> int: ...
    async def ttl(self, key: str) -> float | None: ...
    async def close(self) -> None: ...


@dataclass(slots=True)
class _MemoryValue:
    value: Any
    expires_at: float | None


class MemoryCache(CacheBackend):
    """Process-local cache. ``clock`` is injectable so expiry can be tested without sleeping."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._store: dict[str, _MemoryValue] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _is_expired(self, entry: _MemoryValue) -> bool:
        if entry.expires_at is None:
            return False
        return self._clock() >= entry.expires_at

    def _live(self, key: str) -> _MemoryValue | None:
        entry = self._store.get(key)
        if entry is not None and self._is_expired(entry):
            self._store.pop(key, None)
            return None
        return entry

    async def get(self, key: str) -> Any:
        async with self._lock:
            entry = self._live(key)
            return entry.value if entry else None

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        async with self._lock:
            expires_at = self._clock() + ttl if ttl else None
            self._store[key] = _MemoryValue(value=value, expires_at=expires_at)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._store.pop(key, None)

    async def incr(self, key: str, ttl: float | None = None) -> int:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                expires_at = self._clock() + ttl if ttl else None
                self._store[key] = _MemoryValue(value=1, expires_at=expires_at)
                return 1
            entry.value = int(entry.value) + 1
            return entry.value

    async def ttl(self, key: str) -> float | None:
        async with self._lock:
            entry = self._live(key)
            if entry is None or entry.expires_at is None:
                return None
            return max(0.0, entry.expires_at - self._clock())

    async def close(self) -> None:
        self._store.clear()


class RedisCache(CacheBackend):
    def __init__(self, url: str) -> None:
        self._client = redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Any:
        return await self._client.get(key)

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        if ttl:
            await self._client.set(key, value, px=int(ttl * 1000))
        else:
            await self._client.set(key, value)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def incr(self, key: str, ttl: float | None = None) -> int:
        # Only the first hit in a window sets the expiry.
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            if ttl:
                pipe.pexpire(key, int(ttl * 1000), nx=True)
            result = await pipe.execute()
        return int(result[0])

    async def ttl(self, key: str) -> float | None:
        remaining = await self._client.pttl(key)
        return remaining / 1000 if remaining and remaining > 0 else None

    async def close(self) -> None:
        await self._client.aclose()


async def build_cache(config: RedisConfig) -> CacheBackend:
    if config.enabled:
        LOGGER.info("Using Redis cache at %s", config.url)
        return RedisCache(config.url)
    return MemoryCache()
