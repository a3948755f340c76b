"""
Cached liveness check.

Several tools need the same shape: remember that an expensive check (is the
session valid, is the registry login still accepted, is the tunnel up)
succeeded, trust that answer for a while, and re-run the check once it is
stale. ``LivenessCheck`` holds that state once so callers compose it instead
of carrying their own boolean and timestamp.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class LivenessCheck:
    """A boolean check whose successful result is trusted for ``ttl`` seconds.

    Overlapping probes are serialized, so a foreground call and a background
    keep-alive never run the underlying check at the same time.

    Example:
        >>> check = LivenessCheck(ping_registry, ttl=3600)
        >>> if await check.probe():
        ...     ...
    """

    def __init__(
        self,
        check: Callable[[], Awaitable[bool]],
        ttl: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._check = check
        self.ttl = ttl
        self._clock = clock
        self._checked_at: float | None = None
        self._lock = asyncio.Lock()

    @property
    def alive(self) -> bool:
        """Whether the last probe succeeded and is still within the TTL."""
        return self._checked_at is not None and self._clock() - self._checked_at < self.ttl

    @property
    def checked_at(self) -> float | None:
        """Clock value of the last successful check."""
        return self._checked_at

    async def probe(self, force: bool = False) -> bool:
        """Return the cached result while fresh, otherwise run the check.

        Args:
            force: Ignore a fresh cached result and run the check

        Raises:
            Whatever the check raises; the cached result is cleared first.
        """
        async with self._lock:
            if not force and self.alive:
                return True

            self._checked_at = None
            ok = await self._check()
            if ok:
                self._checked_at = self._clock()
            return ok

    def invalidate(self) -> None:
        """Forget the last result so the next probe runs the check."""
        self._checked_at = None
