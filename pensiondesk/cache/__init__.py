"""
Cache abstraction used by the permission and territory engines.

This package has no dependency on the database or security packages. Pick a
client with ``build_cache_client(settings)`` and inject it into the engines.
"""

from .client import CacheClient, MemoryCacheClient, NullCacheClient, build_cache_client
from .redis_client import RedisCacheClient
from .result import CacheError, CacheResult

__all__ = [
    "CacheClient",
    "CacheError",
    "CacheResult",
    "MemoryCacheClient",
    "NullCacheClient",
    "RedisCacheClient",
    "build_cache_client",
]
