"""
Session keep-alive.

A long running process re-verifies its 1Password session periodically so it
does not expire silently in the middle of a run. There is at most one worker
per account; it stops on the first failed verification and is re-armed by the
next successful authentication.

Architecture Note:
    Workers are ``asyncio`` tasks on the loop that armed them. The registry is
    shared between foreground calls and the workers themselves and is guarded
    by a ``threading.Lock``. Shutdown goes through each worker's stop event,
    never by flipping shared flags.
"""

import asyncio
import contextlib
import logging
import threading
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Check = Callable[[], Awaitable[bool]]


class KeepAliveWorker:
    """Background task re-running ``check`` every ``interval`` seconds."""

    def __init__(
        self,
        account: str,
        check: Check,
        interval: float,
        on_exit: Callable[["KeepAliveWorker"], None] | None = None,
    ) -> None:
        self.account = account
        self.interval = interval
        self._check = check
        self._on_exit = on_exit
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the worker task. Must be called from within a running event loop."""
        loop = asyncio.get_running_loop()
        if not self.running:
            self._task = loop.create_task(
                self._run(), name=f"opbroker-keepalive-{self.account}"
            )
            logger.debug("Keep-alive started for %s", self.account)

    async def join(self) -> None:
        """Wait until the worker has exited."""
        if self._task is not None:
            await self._task

    async def stop(self) -> None:
        """Signal the worker and wait for it to finish."""
        self._stop.set()
        task = self._task
        if task is None or task is asyncio.current_task():
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        try:
            while True:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                if self._stop.is_set():
                    logger.debug("Keep-alive stopped for %s", self.account)
                    return

                try:
                    ok = await self._check()
                except Exception as e:
                    logger.warning(
                        "1Password session keep alive failed for '%s' (%s)", self.account, e
                    )
                    return
                if not ok:
                    logger.warning("1Password session keep alive failed for '%s'", self.account)
                    return
        finally:
            if self._on_exit is not None:
                self._on_exit(self)


class KeepAliveRegistry:
    """At-most-one keep-alive worker per account."""

    def __init__(self) -> None:
        self._workers: dict[str, KeepAliveWorker] = {}
        self._lock = threading.Lock()

    def arm(self, account: str, check: Check, interval: float) -> bool:
        """Start a worker for ``account`` unless one is already running.

        Returns:
            True if a new worker was started
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, keep-alive for %s not armed", account)
            return False

        with self._lock:
            current = self._workers.get(account)
            if current is not None and current.running:
                return False
            worker = KeepAliveWorker(account, check, interval, on_exit=self._discard)
            self._workers[account] = worker
            worker.start()
            return True

    def worker(self, account: str) -> KeepAliveWorker | None:
        with self._lock:
            return self._workers.get(account)

    def is_watching(self, account: str) -> bool:
        with self._lock:
            worker = self._workers.get(account)
            return worker is not None and worker.running

    async def stop(self, account: str) -> None:
        with self._lock:
            worker = self._workers.pop(account, None)
        if worker is not None:
            await worker.stop()

    async def stop_all(self) -> None:
        with self._lock:
            workers = list(self._workers.values())
            self._workers.clear()
        for worker in workers:
            await worker.stop()

    def _discard(self, worker: KeepAliveWorker) -> None:
        with self._lock:
            if self._workers.get(worker.account) is worker:
                del self._workers[worker.account]
