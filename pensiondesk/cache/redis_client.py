"""
Redis-backed cache client.

The backend is configured with a ``redis://`` / ``rediss://`` URL and an auth
token (sent as the connection password). Values are JSON encoded. Backend and
serialisation errors are returned as failed ``CacheResult`` values; nothing is
retried here.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from .result import CacheError, CacheResult

logger = logging.getLogger(__name__)

_BACKEND_ERRORS = (RedisError, OSError)


class RedisCacheClient:
    """Thin async wrapper around ``redis.asyncio.Redis`` implementing ``CacheClient``."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str, token: str | None) -> RedisCacheClient:
        return cls(redis.Redis.from_url(url, password=token, decode_responses=True))

    async def get(self, key: str) -> CacheResult[Any]:
        try:
            raw = await self._redis.get(key)
        except _BACKEND_ERRORS as e:
            logger.warning("Redis GET failed key=%s error=%s", key, type(e).__name__)
            return CacheResult.failure(CacheError("get", key, str(e)))
        if raw is None:
            return CacheResult.success(None)
        try:
            return CacheResult.success(json.loads(raw))
        except ValueError as e:
            return CacheResult.failure(CacheError("get", key, f"undecodable value: {e}"))

    async def set(self, key: str, value: Any, ttl_seconds: int) -> CacheResult[None]:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as e:
            return CacheResult.failure(CacheError("set", key, str(e)))
        try:
            await self._redis.set(key, raw, ex=ttl_seconds)
        except _BACKEND_ERRORS as e:
            logger.warning("Redis SET failed key=%s error=%s", key, type(e).__name__)
            return CacheResult.failure(CacheError("set", key, str(e)))
        return CacheResult.success()

    async def delete(self, key: str) -> CacheResult[None]:
        try:
            await self._redis.delete(key)
        except _BACKEND_ERRORS as e:
            logger.warning("Redis DEL failed key=%s error=%s", key, type(e).__name__)
            return CacheResult.failure(CacheError("delete", key, str(e)))
        return CacheResult.success()

    async def delete_pattern(self, pattern: str) -> CacheResult[None]:
        try:
            keys = [key async for key in self._redis.scan_iter(match=pattern)]
            if keys:
                await self._redis.delete(*keys)
        except _BACKEND_ERRORS as e:
            logger.warning("Redis pattern delete failed pattern=%s error=%s", pattern, type(e).__name__)
            return CacheResult.failure(CacheError("delete_pattern", pattern, str(e)))
        logger.debug("Redis pattern delete pattern=%s deleted=%d", pattern, len(keys))
        return CacheResult.success()

    def is_available(self) -> bool:
        return True

    async def close(self) -> None:
        await self._redis.aclose()
