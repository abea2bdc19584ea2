"""Cache backends shared by the signing-key resolver and the user directory."""
from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from typing import Callable, Optional

import redis.asyncio as redis

from .logging import get_logger

logger = get_logger("zelosify.cache")

Clock = Callable[[], float]


class CacheBackend:
    """Minimal async key/value cache with per-entry time-to-live."""

    async def get(self, key: str) -> Optional[bytes]:  # pragma: no cover - interface
        raise NotImplementedError

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def delete(self, key: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class MemoryCache(CacheBackend):
    """Bounded in-process cache with LRU eviction.

    Expired entries are dropped when read. When ``max_entries`` is reached the
    least recently used entry is evicted, so subjects that never come back
    cannot grow the cache without limit.
    """

    def __init__(self, *, max_entries: int = 10_000, clock: Clock = time.monotonic) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, tuple[bytes, Optional[float]]] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._store)

    async def get(self, key: str) -> Optional[bytes]:
        async with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= self._clock():
                self._store.pop(key, None)
                return None
            self._store.move_to_end(key)
            return value

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        async with self._lock:
            expires_at = self._clock() + ttl if ttl else None
            self._store[key] = (value, expires_at)
            self._store.move_to_end(key)
            while len(self._store) > self._max_entries:
                evicted, _ = self._store.popitem(last=False)
                logger.debug("cache_entry_evicted", key=evicted)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._store.pop(key, None)


class RedisCache(CacheBackend):
    """Redis backed cache shared between worker processes."""

    def __init__(self, url: str) -> None:
        self._client = redis.from_url(url)

    async def get(self, key: str) -> Optional[bytes]:
        return await self._client.get(key)

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        await self._client.set(name=key, value=value, ex=ttl)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)


def build_cache(redis_url: str | None, *, max_entries: int = 10_000) -> CacheBackend:
    if redis_url:
        try:
            return RedisCache(redis_url)
        except ValueError:
            logger.warning("redis_cache_initialisation_failed", exc_info=True)
    return MemoryCache(max_entries=max_entries)


__all__ = [
    "CacheBackend",
    "Clock",
    "MemoryCache",
    "RedisCache",
    "build_cache",
]
