"""Tests for PollingWorker."""

import asyncio

import pytest

from eventrelay.workers import PollingWorker


class Step:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def __call__(self) -> int:
        self.calls += 1
        result = self.results.pop(0) if self.results else 0
        if isinstance(result, Exception):
            raise result
        return result


async def wait_for_calls(step: Step, count: int) -> None:
    for _ in range(200):
        if step.calls >= count:
            return
        await asyncio.sleep(0.005)
    raise AssertionError(f"step ran {step.calls} times, expected {count}")


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_returns_processed_count(self):
        worker = PollingWorker("test", Step(3))
        assert await worker.run_once() == 3
        assert worker.iterations == 1
        assert worker.errors == 0

    @pytest.mark.asyncio
    async def test_errors_are_counted_not_raised(self):
        worker = PollingWorker("test", Step(RuntimeError("db down")))
        assert await worker.run_once() == 0
        assert worker.errors == 1


class TestLoop:
    """Tests for the background loop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        step = Step()
        worker = PollingWorker("test", step, interval_seconds=0.01)

        worker.start()
        assert worker.running
        await wait_for_calls(step, 3)
        await worker.stop()

        assert not worker.running
        calls = step.calls
        await asyncio.sleep(0.03)
        assert step.calls == calls

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        worker = PollingWorker("test", Step(), interval_seconds=0.01)
        worker.start()
        task = worker._task
        worker.start()
        assert worker._task is task
        await worker.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        await PollingWorker("test", Step()).stop()

    @pytest.mark.asyncio
    async def test_wake_skips_the_interval(self):
        step = Step()
        worker = PollingWorker("test", step, interval_seconds=60)
        worker.start()
        await wait_for_calls(step, 1)

        worker.wake()
        await wait_for_calls(step, 2)
        await worker.stop()

    @pytest.mark.asyncio
    async def test_busy_loop_continues_without_sleeping(self):
        step = Step(5, 5, 0)
        worker = PollingWorker("test", step, interval_seconds=60)
        worker.start()
        await wait_for_calls(step, 3)
        await worker.stop()

    @pytest.mark.asyncio
    async def test_survives_failing_iterations(self):
        step = Step(RuntimeError("boom"), RuntimeError("boom"))
        worker = PollingWorker("test", step, interval_seconds=0.01)
        worker.start()
        await wait_for_calls(step, 3)
        await worker.stop()
        assert worker.errors == 2
