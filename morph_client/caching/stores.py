"""
Cache stores for rendered views.

A store maps opaque keys to ``CacheEntry`` values. ``get`` returns ``None`` on
a miss; ``CacheEntry.absent()`` is a cached not-found result and is a hit.
"""

import json
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis
import redis.asyncio as aioredis

from shared.logging import get_logger
from ..domain.view import MorphView


@dataclass(frozen=True)
class CacheEntry:
    """A cached view, or a cached confirmation that the view does not exist."""

    view: Optional[MorphView] = None

    @classmethod
    def absent(cls) -> "CacheEntry":
        return cls(view=None)

    @property
    def is_absent(self) -> bool:
        return self.view is None


class ViewCacheStore(Protocol):
    def get(self, key: str) -> Optional[CacheEntry]: ...

    def set(self, key: str, entry: CacheEntry, ttl: Optional[int]) -> None: ...

    def delete(self, key: str) -> None: ...


class AsyncViewCacheStore(Protocol):
    async def get(self, key: str) -> Optional[CacheEntry]: ...

    async def set(self, key: str, entry: CacheEntry, ttl: Optional[int]) -> None: ...

    async def delete(self, key: str) -> None: ...


def encode_entry(entry: CacheEntry) -> str:
    """Serialize an entry for Redis."""
    if entry.is_absent:
        return json.dumps({"absent": True})
    return json.dumps({"absent": False, "view": entry.view.model_dump()})


def decode_entry(raw) -> CacheEntry:
    """Deserialize an entry written by ``encode_entry``."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    data = json.loads(raw)
    if data.get("absent"):
        return CacheEntry.absent()
    return CacheEntry(view=MorphView.model_validate(data["view"]))


class MemoryViewStore:
    """Process-local store with per-entry expiry. Safe to share between threads."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (entry, expires_at or None)
        self._entries: Dict[str, Tuple[CacheEntry, Optional[float]]] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            entry, expires_at = item
            if expires_at is not None and expires_at <= self._clock():
                del self._entries[key]
                return None
            return entry

    def set(self, key: str, entry: CacheEntry, ttl: Optional[int]) -> None:
        with self._lock:
            expires_at = None if ttl is None else self._clock() + ttl
            self._entries[key] = (entry, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def expires_at(self, key: str) -> Optional[float]:
        """Absolute expiry (store clock) of a live entry."""
        with self._lock:
            item = self._entries.get(key)
            return item[1] if item else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class AsyncMemoryViewStore:
    """Coroutine facade over a ``MemoryViewStore``; both can share one backing store."""

    def __init__(self, store: Optional[MemoryViewStore] = None):
        self.store = store or MemoryViewStore()

    async def get(self, key: str) -> Optional[CacheEntry]:
        return self.store.get(key)

    async def set(self, key: str, entry: CacheEntry, ttl: Optional[int]) -> None:
        self.store.set(key, entry, ttl)

    async def delete(self, key: str) -> None:
        self.store.delete(key)


class RedisViewStore:
    """Redis-backed store using the blocking client."""

    def __init__(self, client: redis.Redis):
        self.redis = client
        self.logger = get_logger("morph.cache.redis")

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisViewStore":
        return cls(redis.Redis.from_url(
            redis_url,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30
        ))

    def get(self, key: str) -> Optional[CacheEntry]:
        raw = self.redis.get(key)
        if raw is None:
            return None
        return decode_entry(raw)

    def set(self, key: str, entry: CacheEntry, ttl: Optional[int]) -> None:
        self.redis.set(key, encode_entry(entry), ex=ttl)
        self.logger.debug("Cached view entry", key=key, ttl=ttl, absent=entry.is_absent)

    def delete(self, key: str) -> None:
        self.redis.delete(key)

    def close(self) -> None:
        self.redis.close()


class AsyncRedisViewStore:
    """Redis-backed store using ``redis.asyncio``."""

    def __init__(self, client: aioredis.Redis):
        self.redis = client
        self.logger = get_logger("morph.cache.redis")

    @classmethod
    def from_url(cls, redis_url: str) -> "AsyncRedisViewStore":
        return cls(aioredis.from_url(
            redis_url,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30
        ))

    async def get(self, key: str) -> Optional[CacheEntry]:
        raw = await self.redis.get(key)
        if raw is None:
            return None
        return decode_entry(raw)

    async def set(self, key: str, entry: CacheEntry, ttl: Optional[int]) -> None:
        await self.redis.set(key, encode_entry(entry), ex=ttl)
        self.logger.debug("Cached view entry", key=key, ttl=ttl, absent=entry.is_absent)

    async def delete(self, key: str) -> None:
        await self.redis.delete(key)

    async def aclose(self) -> None:
        await self.redis.aclose()
