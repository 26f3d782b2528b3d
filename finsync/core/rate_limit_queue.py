"""Serialized, rate-limited dispatch of calls to the vision model.

The document-understanding endpoint enforces a hard requests-per-minute cap,
so every call to it must pass through one queue instance owned by the
composition root (see finsync.core.services). A second instance would get
its own budget and defeat the limit.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

CallFactory = Callable[[], Awaitable[T]]


class RateLimitedCallQueue:
    """FIFO queue dispatching one call at a time with a minimum start gap.

    The gap is measured between dispatch starts, not completions: a call that
    takes 20s followed by another call with a 15s delay dispatches the second
    one immediately after the first returns.

    Example:
        >>> queue = RateLimitedCallQueue(min_delay=15.0)
        >>> result = await queue.enqueue(lambda: client.analyze(prompt, doc))
    """

    def __init__(
        self,
        min_delay: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize queue.

        Args:
            min_delay: Minimum seconds between the start of consecutive calls
            clock: Monotonic time source, injectable for tests
            sleep: Async sleep function, injectable for tests
        """
        if min_delay < 0:
            raise ValueError("min_delay must be >= 0")
        self.min_delay = min_delay
        self._clock = clock
        self._sleep = sleep
        self._items: deque[tuple[CallFactory[Any], asyncio.Future[Any]]] = deque()
        self._drainer: asyncio.Task[None] | None = None
        self._last_dispatch_at: float | None = None

    @property
    def pending(self) -> int:
        """Number of calls waiting to be dispatched."""
        return len(self._items)

    @property
    def last_dispatch_at(self) -> float | None:
        """Clock value at the most recent dispatch, None before the first call."""
        return self._last_dispatch_at

    async def enqueue(self, call_factory: CallFactory[T]) -> T:
        """Queue a call and wait for its result.

        The factory is invoked only when the call is dispatched. Its exception
        (if any) is raised to this caller alone; the queue keeps draining.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        self._items.append((call_factory, future))
        logger.debug("Queued rate-limited call (pending=%d)", len(self._items))

        if self._drainer is None or self._drainer.done():
            self._drainer = loop.create_task(self._drain())

        return await future

    async def _drain(self) -> None:
        while self._items:
            if self._last_dispatch_at is not None:
                wait = self.min_delay - (self._clock() - self._last_dispatch_at)
                if wait > 0:
                    logger.debug("Rate limiting model call: waiting %.2fs", wait)
                    await self._sleep(wait)

            call_factory, future = self._items.popleft()
            if future.cancelled():
                continue

            self._last_dispatch_at = self._clock()
            try:
                result = await call_factory()
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                raise
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)
