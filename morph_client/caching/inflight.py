"""
Per-key locks so at most one upstream fetch per cache key is in flight.
"""

import asyncio
import threading
import weakref
from typing import Callable, Generic, TypeVar


LockT = TypeVar("LockT")


class KeyedLocks(Generic[LockT]):
    """Hands out one lock per key; unused locks are garbage collected."""

    def __init__(self, factory: Callable[[], LockT]):
        self._factory = factory
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[str, LockT]" = weakref.WeakValueDictionary()

    def get(self, key: str) -> LockT:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._factory()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class _ThreadLock:
    # threading.Lock objects cannot be weakly referenced
    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc):
        self._lock.release()
        return False


def thread_locks() -> "KeyedLocks[_ThreadLock]":
    return KeyedLocks(_ThreadLock)


def asyncio_locks() -> "KeyedLocks[asyncio.Lock]":
    return KeyedLocks(asyncio.Lock)
