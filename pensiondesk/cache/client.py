"""
Cache client interface and the in-process implementations.

Background:
    Permission and territory lookups read through a key-value cache. The cache
    is an optimisation only: every implementation must let the application run
    correctly when the backend is missing or broken. That is why each call
    returns a ``CacheResult`` instead of raising, and why ``NullCacheClient``
    exists for deployments with no cache configured.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

from pensiondesk.settings import Settings

from .redis_client import RedisCacheClient
from .result import CacheError, CacheResult

logger = logging.getLogger(__name__)

REDIS_URL_SCHEMES = ("redis://", "rediss://", "unix://")


class CacheClient(Protocol):
    """Key-value store with TTL, used by the permission and territory engines."""

    async def get(self, key: str) -> CacheResult[Any]: ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> CacheResult[None]: ...

    async def delete(self, key: str) -> CacheResult[None]: ...

    async def delete_pattern(self, pattern: str) -> CacheResult[None]: ...

    def is_available(self) -> bool: ...


class NullCacheClient:
    """Disabled mode: every operation is a successful no-op and every read is a miss."""

    async def get(self, key: str) -> CacheResult[Any]:
        return CacheResult.success(None)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> CacheResult[None]:
        return CacheResult.success()

    async def delete(self, key: str) -> CacheResult[None]:
        return CacheResult.success()

    async def delete_pattern(self, pattern: str) -> CacheResult[None]:
        return CacheResult.success()

    def is_available(self) -> bool:
        return False


class MemoryCacheClient:
    """
    In-process cache with per-key TTL.

    Values are stored JSON-encoded so callers get the same copy semantics (and the
    same serialisation failures) as with the Redis backend. Only suitable for a
    single process; there is no cross-process invalidation.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    def _live_entry(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return raw

    async def get(self, key: str) -> CacheResult[Any]:
        raw = self._live_entry(key)
        if raw is None:
            return CacheResult.success(None)
        return CacheResult.success(json.loads(raw))

    async def set(self, key: str, value: Any, ttl_seconds: int) -> CacheResult[None]:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as e:
            return CacheResult.failure(CacheError("set", key, str(e)))
        self._entries[key] = (raw, self._clock() + ttl_seconds)
        return CacheResult.success()

    async def delete(self, key: str) -> CacheResult[None]:
        self._entries.pop(key, None)
        return CacheResult.success()

    async def delete_pattern(self, pattern: str) -> CacheResult[None]:
        matched = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
        for key in matched:
            del self._entries[key]
        logger.debug("Memory cache pattern delete pattern=%s deleted=%d", pattern, len(matched))
        return CacheResult.success()

    def is_available(self) -> bool:
        return True


def build_cache_client(settings: Settings) -> CacheClient:
    """
    Pick the cache implementation for the configured backend.

    A ``redis`` backend without both URL and token is the supported "disabled"
    mode, not an error. So is a URL the redis client cannot speak to (an
    ``https://`` REST endpoint, say); that one is logged as a warning.
    """

    if settings.cache_backend == "memory":
        logger.info("Using in-process memory cache")
        return MemoryCacheClient()

    if settings.cache_backend == "redis" and settings.redis_configured:
        if not settings.redis_url.startswith(REDIS_URL_SCHEMES):
            logger.warning(
                "Unsupported Redis URL scheme (expected one of %s); caching disabled", ", ".join(REDIS_URL_SCHEMES)
            )
            return NullCacheClient()
        logger.info("Using Redis cache")
        return RedisCacheClient.from_url(settings.redis_url, settings.redis_token)

    logger.info("Cache backend not configured (backend=%s); caching disabled", settings.cache_backend)
    return NullCacheClient()
