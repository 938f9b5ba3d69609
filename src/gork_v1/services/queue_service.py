from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from typing import Awaitable, Callable, Generic, TypeVar

from gork_v1.services.logger_service import LoggerService


T = TypeVar("T")


class IntakeQueue(Generic[T]):
    """FIFO buffer between intake and the scheduler. Enqueue never blocks."""

    def __init__(self) -> None:
        self._items: deque[T] = deque()
        self._lock = threading.Lock()

    def enqueue(self, item: T) -> int:
        with self._lock:
            self._items.append(item)
            return len(self._items)

    def dequeue(self) -> T | None:
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def clear(self) -> int:
        with self._lock:
            dropped = len(self._items)
            self._items.clear()
        return dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class Scheduler(Generic[T]):
    """Drains an :class:`IntakeQueue` at a fixed rate with a single consumer.

    Each tick takes at most one item and awaits the handler before the next
    tick starts, so handlers never overlap and the tick period is a floor on
    the spacing between two handler starts.
    """

    def __init__(
        self,
        queue: IntakeQueue[T],
        handler: Callable[[T], Awaitable[None]],
        logger: LoggerService,
        *,
        max_per_second: int = 8,
        on_error: Callable[[T, Exception], Awaitable[None]] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.queue = queue
        self.handler = handler
        self.logger = logger
        self.period = 1.0 / max(1, max_per_second)
        self.on_error = on_error
        self._clock = clock
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return bool(self._task and not self._task.done())

    def start(self) -> None:
        if self.running:
            return
        self._running = True
        self._task = asyncio.create_task(self.run(), name="intake-scheduler")

    async def stop(self) -> None:
        self._running = False
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run(self) -> None:
        self._running = True
        while self._running:
            started = self._clock()
            await self.tick()
            elapsed = self._clock() - started
            await self._sleep(max(0.0, self.period - elapsed))

    async def tick(self) -> bool:
        item = self.queue.dequeue()
        if item is None:
            return False
        try:
            await self.handler(item)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.logger.log("queue.handler_failed", error=str(exc)[:300], pending=len(self.queue))
            if self.on_error is not None:
                try:
                    await self.on_error(item, exc)
                except Exception as notify_exc:  # noqa: BLE001
                    self.logger.log("queue.error_notice_failed", error=str(notify_exc)[:300])
        return True
