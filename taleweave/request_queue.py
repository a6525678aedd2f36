"""
FIFO request queue with a minimum spacing between requests.

Callers submit zero-argument coroutine factories and await the returned
future. A single worker drains the queue in order, so only one request is in
flight at a time, and waits until ``min_interval`` seconds have passed since
the previous request finished before starting the next one.

``close()`` stops the worker and fails every pending request with
`QueueClosedError`; later submissions fail the same way.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, Tuple

from taleweave.errors import QueueClosedError
from taleweave.logging_utils import log_deterministic


RequestFactory = Callable[[], Awaitable[Any]]


class RequestQueue:
    def __init__(
        self,
        min_interval: float = 1.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be non-negative")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._pending: "asyncio.Queue[Tuple[RequestFactory, asyncio.Future]]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._last_finished: Optional[float] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return self._pending.qsize()

    def submit(self, factory: RequestFactory) -> "asyncio.Future[Any]":
        if self._closed:
            raise QueueClosedError("Request queue is closed")
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._pending.put_nowait((factory, future))
        # The worker exits once the queue is empty; the next submission restarts it.
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain())
        return future

    async def _drain(self) -> None:
        while not self._pending.empty():
            factory, future = self._pending.get_nowait()
            # The caller gave up on this request before its turn came.
            if future.cancelled():
                continue
            try:
                # The rate-limit wait sits inside the try so a close() during the
                # wait still fails the request that was already dequeued.
                await self._wait_turn()
                result = await factory()
            except asyncio.CancelledError:
                if not future.done():
                    future.set_exception(QueueClosedError("Request queue is closed"))
                raise
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                # Spacing is measured from when the previous request finished,
                # failed requests included.
                self._last_finished = self._clock()

    async def _wait_turn(self) -> None:
        # Nothing to wait for before the first request or with spacing disabled.
        if self._last_finished is None or not self.min_interval:
            return
        remaining = self.min_interval - (self._clock() - self._last_finished)
        if remaining > 0:
            log_deterministic(f"Rate limit: waiting {remaining:.2f}s before next request")
            await self._sleep(remaining)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        # Pending requests are rejected, never dropped silently.
        while not self._pending.empty():
            _, future = self._pending.get_nowait()
            if not future.done():
                future.set_exception(QueueClosedError("Request queue is closed"))


__all__ = ["RequestQueue"]
