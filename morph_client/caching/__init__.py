"""
Morph caching package.

Cache-aside primitives for rendered views: stores (in-memory and Redis, each
with a blocking and an asyncio flavour), the cache-write policy that jitters
expiries to avoid re-fetch stampedes, and per-key in-flight locks.
"""

from .inflight import KeyedLocks, asyncio_locks, thread_locks
from .policy import CacheTtl, build_cache_key, jittered_ttl, resolve_ttl
from .stores import (
    AsyncMemoryViewStore,
    AsyncRedisViewStore,
    AsyncViewCacheStore,
    CacheEntry,
    MemoryViewStore,
    RedisViewStore,
    ViewCacheStore,
)

__all__ = [
    "AsyncMemoryViewStore",
    "AsyncRedisViewStore",
    "AsyncViewCacheStore",
    "CacheEntry",
    "CacheTtl",
    "KeyedLocks",
    "MemoryViewStore",
    "RedisViewStore",
    "ViewCacheStore",
    "asyncio_locks",
    "build_cache_key",
    "jittered_ttl",
    "resolve_ttl",
    "thread_locks",
]
