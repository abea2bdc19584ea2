"""Resolve identity provider signing keys from its published JWKS."""
from __future__ import annotations

import json
import time
from collections import deque
from typing import Any, Awaitable, Callable

import httpx
import jwt

from .cache import CacheBackend, Clock, MemoryCache
from .logging import get_logger

__all__ = [
    "FetchRateLimiter",
    "JWKSFetchError",
    "JWKSKeyNotFoundError",
    "JWKSRateLimitedError",
    "SigningKeyResolver",
]

logger = get_logger("zelosify.jwks")

KeySource = Callable[[], Awaitable[dict[str, Any]]]


class JWKSFetchError(RuntimeError):
    """Raised when the JWKS endpoint cannot be reached or parsed."""


class JWKSKeyNotFoundError(RuntimeError):
    """Raised when a requested key identifier is not present in the JWKS payload."""


class JWKSRateLimitedError(RuntimeError):
    """Raised instead of fetching when the per-minute fetch budget is spent."""


class FetchRateLimiter:
    """Sliding-window limiter shared by every request in the process."""

    def __init__(self, *, max_calls: int, period_seconds: float = 60.0, clock: Clock = time.monotonic) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        self._max_calls = max_calls
        self._period = period_seconds
        self._clock = clock
        self._calls: deque[float] = deque()

    def try_acquire(self) -> bool:
        now = self._clock()
        while self._calls and now - self._calls[0] >= self._period:
            self._calls.popleft()
        if len(self._calls) >= self._max_calls:
            return False
        self._calls.append(now)
        return True


class SigningKeyResolver:
    """Download, cache and rate-limit access to signing keys by ``kid``.

    Keys are cached individually for ``cache_ttl_seconds`` (24 hours by
    default). A cache miss triggers one fetch of the whole key set, bounded
    by :class:`FetchRateLimiter`; callers over the budget fail fast with
    :class:`JWKSRateLimitedError` rather than queueing.
    """

    def __init__(
        self,
        jwks_url: str,
        *,
        cache: CacheBackend | None = None,
        cache_ttl_seconds: int = 86_400,
        requests_per_minute: int = 10,
        request_timeout: float = 10.0,
        clock: Clock = time.monotonic,
        key_source: KeySource | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not jwks_url:
            raise ValueError("JWKS URL must be provided")
        self._jwks_url = jwks_url
        self._cache = cache if cache is not None else MemoryCache(clock=clock)
        self._cache_ttl_seconds = max(cache_ttl_seconds, 1)
        self._request_timeout = max(request_timeout, 0.1)
        self._limiter = FetchRateLimiter(max_calls=requests_per_minute, clock=clock)
        self._key_source = key_source or self._fetch_remote
        self._transport = transport

    @staticmethod
    def _cache_key(kid: str) -> str:
        return f"jwks:{kid}"

    async def _fetch_remote(self) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                timeout=self._request_timeout, transport=self._transport
            ) as client:
                response = await client.get(self._jwks_url, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            raise JWKSFetchError("Unable to fetch JWKS payload") from exc

        if response.status_code != 200:
            raise JWKSFetchError(f"Unexpected JWKS status code: {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise JWKSFetchError("JWKS response is not valid JSON") from exc

    async def refresh(self) -> dict[str, dict[str, Any]]:
        """Fetch the key set and cache every usable entry."""

        if not self._limiter.try_acquire():
            logger.warning("jwks_fetch_rate_limited", url=self._jwks_url)
            raise JWKSRateLimitedError("JWKS fetch rate limit exceeded")

        data = await self._key_source()
        keys = data.get("keys") if isinstance(data, dict) else None
        if not isinstance(keys, list) or not keys:
            raise JWKSFetchError("JWKS payload does not contain signing keys")

        mapping: dict[str, dict[str, Any]] = {}
        for entry in keys:
            if not isinstance(entry, dict):
                continue
            kid = entry.get("kid")
            if not isinstance(kid, str) or not kid:
                continue
            if entry.get("use", "sig") != "sig":
                continue
            mapping[kid] = entry

        if not mapping:
            raise JWKSFetchError("No usable signing keys were found in the JWKS payload")

        for kid, entry in mapping.items():
            await self._cache.set(
                self._cache_key(kid),
                json.dumps(entry).encode("utf-8"),
                self._cache_ttl_seconds,
            )
        logger.info("jwks_refreshed", url=self._jwks_url, key_count=len(mapping))
        return mapping

    async def get_signing_jwk(self, kid: str) -> dict[str, Any]:
        """Return the raw JWK entry for ``kid``, fetching on cache miss."""

        if not kid:
            raise JWKSKeyNotFoundError("Key identifier (kid) must be provided")

        cached = await self._cache.get(self._cache_key(kid))
        if cached is not None:
            return json.loads(cached.decode("utf-8"))

        mapping = await self.refresh()
        entry = mapping.get(kid)
        if entry is None:
            raise JWKSKeyNotFoundError(f"Signing key with kid '{kid}' was not found")
        return entry

    async def resolve(self, kid: str) -> Any:
        """Return the RSA public key object for ``kid``."""

        entry = await self.get_signing_jwk(kid)
        try:
            return jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(entry))
        except (jwt.InvalidKeyError, ValueError, KeyError) as exc:
            raise JWKSKeyNotFoundError(f"Signing key with kid '{kid}' is not an RSA key") from exc
