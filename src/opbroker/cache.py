"""
Process-wide memoization of backend lookups.

Entries are created on the first successful load and are kept for the
lifetime of the process unless a ``ttl`` is configured. Empty results are
cached too: a vault item that does not exist is not looked up twice.

Concurrency:
    The entry table is guarded by a ``threading.Lock`` and every key has its
    own ``asyncio.Lock``, so two coroutines asking for the same key (for
    example a foreground ``get`` and a template render) trigger one load.
    A loader that raises or is cancelled leaves nothing behind.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Entry:
    value: Any
    stored_at: float


class SecretCache:
    """Keyed memoization with optional expiry."""

    def __init__(
        self, ttl: float | None = None, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._lock = threading.Lock()

    async def get(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        """Return the cached value for ``key``, loading it once if missing."""
        entry = self._lookup(key)
        if entry is not None:
            return entry.value  # type: ignore[no-any-return]

        key_lock = self._key_lock(key)
        try:
            async with key_lock:
                # Another coroutine may have loaded it while we waited.
                entry = self._lookup(key)
                if entry is not None:
                    return entry.value  # type: ignore[no-any-return]

                logger.debug("Cache miss for %s", key)
                value = await loader()
                with self._lock:
                    self._entries[key] = _Entry(value=value, stored_at=self._clock())
                return value
        finally:
            self._release_key_lock(key, key_lock)

    def invalidate(self, key: str | None = None) -> None:
        """Drop one entry, or every entry when ``key`` is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [k for k in self._entries if k.startswith(prefix)]:
                del self._entries[key]

    def namespace(self, prefix: str) -> "CacheNamespace":
        return CacheNamespace(self, prefix)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self._lookup(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _lookup(self, key: str) -> _Entry | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self.ttl is not None and self._clock() - entry.stored_at >= self.ttl:
                del self._entries[key]
                return None
            return entry

    def _key_lock(self, key: str) -> asyncio.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = asyncio.Lock()
            return lock

    def _release_key_lock(self, key: str, lock: asyncio.Lock) -> None:
        # Waiters keep their own reference; only idle locks leave the table.
        with self._lock:
            if not lock.locked() and self._key_locks.get(key) is lock:
                del self._key_locks[key]


class CacheNamespace:
    """View on a SecretCache that prefixes every key."""

    def __init__(self, cache: SecretCache, prefix: str) -> None:
        self._cache = cache
        self._prefix = prefix

    async def get(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        return await self._cache.get(self._key(key), loader)

    def invalidate(self, key: str | None = None) -> None:
        if key is None:
            self._cache.invalidate_prefix(self._prefix + "/")
        else:
            self._cache.invalidate(self._key(key))

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self._key(key) in self._cache

    def _key(self, key: str) -> str:
        return f"{self._prefix}/{key}"
