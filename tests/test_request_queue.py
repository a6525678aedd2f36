"""Tests for the rate-limited FIFO request queue."""

import asyncio

import pytest

from taleweave.errors import QueueClosedError
from taleweave.request_queue import RequestQueue


class FakeTime:
    """Clock and sleep pair; sleeping advances the clock instantly."""

    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.mark.asyncio
async def test_requests_run_in_submission_order_one_at_a_time():
    queue = RequestQueue(0)
    running = 0
    peak = 0
    order: list[int] = []

    def make(index):
        async def run():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0)
            order.append(index)
            running -= 1
            return index

        return run

    futures = [queue.submit(make(index)) for index in range(5)]
    assert await asyncio.gather(*futures) == [0, 1, 2, 3, 4]
    assert order == [0, 1, 2, 3, 4]
    assert peak == 1
    await queue.close()


@pytest.mark.asyncio
async def test_requests_are_spaced_from_previous_completion():
    fake = FakeTime()
    queue = RequestQueue(1.5, clock=fake.clock, sleep=fake.sleep)

    async def work():
        fake.now += 0.5
        return "done"

    results = await asyncio.gather(queue.submit(work), queue.submit(work), queue.submit(work))
    assert results == ["done", "done", "done"]
    assert fake.sleeps == [1.5, 1.5]

    fake.now += 10
    assert await queue.submit(work) == "done"
    assert fake.sleeps == [1.5, 1.5]
    await queue.close()


@pytest.mark.asyncio
async def test_failures_propagate_and_queue_keeps_draining():
    queue = RequestQueue(0)

    async def boom():
        raise RuntimeError("provider down")

    async def fine():
        return 42

    failed = queue.submit(boom)
    succeeded = queue.submit(fine)
    with pytest.raises(RuntimeError, match="provider down"):
        await failed
    assert await succeeded == 42
    await queue.close()


@pytest.mark.asyncio
async def test_close_rejects_in_flight_pending_and_new_requests():
    queue = RequestQueue(0)
    started = asyncio.Event()

    async def slow():
        started.set()
        await asyncio.sleep(10)

    async def never():  # pragma: no cover - closed before it runs
        return "unreachable"

    in_flight = queue.submit(slow)
    pending = queue.submit(never)
    await started.wait()
    assert len(queue) == 1

    await queue.close()
    assert queue.closed
    with pytest.raises(QueueClosedError):
        await in_flight
    with pytest.raises(QueueClosedError):
        await pending
    with pytest.raises(QueueClosedError):
        queue.submit(never)

    await queue.close()


def test_negative_interval_is_rejected():
    with pytest.raises(ValueError):
        RequestQueue(-1)
