# ordercache/services/debouncer.py

"""Keystroke debounce on top of the running event loop's timers."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from ordercache.config.settings import Settings

logger = logging.getLogger("ordercache.debounce")

T = TypeVar("T")


class Debouncer(Generic[T]):
    """Run only the last of a burst of calls, after a quiet period.

    Each :meth:`schedule` cancels the pending timer (and its future) and
    arms a new one.  Once a timer fires the work is dispatched as a task
    and is never cancelled by later calls.
    """

    def __init__(self, delay: float | None = None) -> None:
        self.delay: float = (
            Settings.SEARCH_DEBOUNCE if delay is None else delay
        )
        self._handle: asyncio.TimerHandle | None = None
        self._future: asyncio.Future[T] | None = None
        self._running: set[asyncio.Future[T]] = set()

    @property
    def running(self) -> bool:
        """Whether dispatched work is still executing."""
        return bool(self._running)

    @property
    def pending(self) -> bool:
        """Whether a timer is armed and has not fired yet."""
        return self._handle is not None

    def schedule(
        self, work: Callable[[], Awaitable[T]],
    ) -> "asyncio.Future[T]":
        """Arm a timer for *work*; returns a future for its result."""
        loop = asyncio.get_running_loop()
        self.cancel()
        future: asyncio.Future[T] = loop.create_future()
        self._future = future
        self._handle = loop.call_later(
            self.delay, self._fire, work, future,
        )
        return future

    def cancel(self) -> bool:
        """Cancel the armed timer, if any.

        Returns True when a pending call was superseded.
        """
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        if self._future is not None and not self._future.done():
            self._future.cancel()
        self._future = None
        logger.debug("Debounced call cancelled")
        return True

    def _fire(
        self,
        work: Callable[[], Awaitable[T]],
        future: "asyncio.Future[T]",
    ) -> None:
        self._handle = None
        self._future = None
        if future.done():
            return

        async def run() -> T:
            return await work()

        task = asyncio.ensure_future(run())
        self._running.add(task)

        def relay(done: "asyncio.Future[T]") -> None:
            self._running.discard(done)
            if future.done():
                return
            if done.cancelled():
                future.cancel()
                return
            exc = done.exception()
            if exc is not None:
                future.set_exception(exc)
            else:
                future.set_result(done.result())

        task.add_done_callback(relay)
