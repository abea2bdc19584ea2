"""Short lived subject to Principal cache used by the authentication gate."""
from __future__ import annotations

import json
import time
from typing import Optional

from pydantic import ValidationError

from .cache import CacheBackend, Clock, MemoryCache
from .logging import get_logger
from .principal import Principal

logger = get_logger("zelosify.user_cache")


class UserDirectoryCache:
    """Map identity provider subjects to :class:`Principal` snapshots.

    Every entry records when it was stored. ``lookup`` treats an entry older
    than ``ttl_seconds`` as a miss even if the backend still holds it, so a
    backend without expiry support still honours the TTL.
    """

    def __init__(
        self,
        backend: CacheBackend | None = None,
        *,
        ttl_seconds: int = 300,
        clock: Clock = time.time,
        namespace: str = "users",
    ) -> None:
        self._backend = backend if backend is not None else MemoryCache(clock=clock)
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._namespace = namespace

    def _key(self, subject: str) -> str:
        return f"{self._namespace}:{subject}"

    async def lookup(self, subject: str) -> Optional[Principal]:
        raw = await self._backend.get(self._key(subject))
        if raw is None:
            return None
        try:
            entry = json.loads(raw)
            stored_at = float(entry["stored_at"])
            principal = Principal.model_validate(entry["principal"])
        except (ValueError, KeyError, TypeError, ValidationError):
            logger.warning("user_cache_entry_corrupt", subject=subject)
            await self._backend.delete(self._key(subject))
            return None

        if self._clock() - stored_at > self._ttl_seconds:
            await self._backend.delete(self._key(subject))
            return None
        return principal

    async def store(self, subject: str, principal: Principal) -> None:
        payload = {
            "stored_at": self._clock(),
            "principal": principal.model_dump(mode="json"),
        }
        # Backend expiry is a little longer so lookup() owns the cutoff.
        await self._backend.set(
            self._key(subject),
            json.dumps(payload).encode("utf-8"),
            self._ttl_seconds + 1,
        )

    async def invalidate(self, subject: str) -> None:
        await self._backend.delete(self._key(subject))


__all__ = ["UserDirectoryCache"]
