"""Submission queue: bounds how many remote judge calls are in flight at once."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from gavel.errors import QueueClosedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(eq=False)
class QueueTask:
    factory: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    enqueued_at: float = field(default_factory=time.monotonic)


class SubmissionQueue:
    """FIFO admission control in front of the remote judge.

    A fixed pool of ``width`` workers consumes a channel of pending tasks, so
    no more than ``width`` calls are ever running. Callers blocked behind the
    limit simply wait; each caller receives only its own result or error.
    """

    def __init__(self, width: int = 5, max_pending: int = 0) -> None:
        if width < 1:
            raise ValueError("width must be at least 1")
        self.width = width
        self._max_pending = max_pending
        self._pending: asyncio.Queue[QueueTask] | None = None
        self._workers: list[asyncio.Task] = []
        self._in_flight: set[QueueTask] = set()
        self._closed = False

    async def start(self) -> None:
        if self._workers:
            return
        if self._closed:
            raise QueueClosedError("Submission queue has been closed")
        self._pending = asyncio.Queue(maxsize=self._max_pending)
        self._workers = [
            asyncio.create_task(self._worker(), name=f"judge-queue-worker-{i}")
            for i in range(self.width)
        ]
        logger.debug("Submission queue started with width %d", self.width)

    async def close(self) -> None:
        """Stop the workers and fail every task that has not completed."""
        self._closed = True
        abandoned = list(self._in_flight)
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._in_flight.clear()
        while self._pending is not None and not self._pending.empty():
            abandoned.append(self._pending.get_nowait())
        for task in abandoned:
            if not task.future.done():
                task.future.set_exception(QueueClosedError("Submission queue closed"))

    async def __aenter__(self) -> SubmissionQueue:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def enqueue(self, factory: Callable[[], Awaitable[T]]) -> T:
        """Run ``factory()`` once a slot frees up and return its result."""
        if self._pending is None or self._closed:
            raise QueueClosedError("Submission queue is not running")
        task = QueueTask(factory=factory, future=asyncio.get_running_loop().create_future())
        await self._pending.put(task)
        return await task.future

    def status(self) -> dict[str, int]:
        return {
            "running": len(self._in_flight),
            "queued": self._pending.qsize() if self._pending is not None else 0,
            "width": self.width,
        }

    async def _worker(self) -> None:
        assert self._pending is not None
        while True:
            task = await self._pending.get()
            try:
                if task.future.done():
                    # caller gave up while waiting
                    continue
                self._in_flight.add(task)
                try:
                    result = await task.factory()
                except Exception as exc:
                    if not task.future.done():
                        task.future.set_exception(exc)
                else:
                    if not task.future.done():
                        task.future.set_result(result)
                finally:
                    self._in_flight.discard(task)
            finally:
                self._pending.task_done()
