"""Background polling loops.

A PollingWorker runs one coroutine over and over: immediately when woken,
otherwise every ``interval_seconds``. Errors in an iteration are logged and
the loop carries on.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class PollingWorker:
    """Runs ``step`` in a loop until stopped.

    Example:
        ```python
        worker = PollingWorker("deliveries", dispatcher.process_due, interval_seconds=1.0)
        worker.start()
        dispatcher.set_enqueue_callback(worker.wake)
        ...
        await worker.stop()
        ```
    """

    def __init__(
        self,
        name: str,
        step: Callable[[], Awaitable[int]],
        interval_seconds: float = 1.0,
    ) -> None:
        self.name = name
        self._step = step
        self._interval = interval_seconds
        self._wake = asyncio.Event()
        self._stopping = False
        self._task: asyncio.Task[None] | None = None
        self.iterations = 0
        self.errors = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._loop(), name=f"eventrelay-{self.name}")
        logger.info("Worker %s started (interval %.2fs)", self.name, self._interval)

    def wake(self) -> None:
        """Run the next iteration now instead of waiting for the interval."""
        self._wake.set()

    async def run_once(self) -> int:
        """Run one iteration. Errors are logged and reported as 0 items."""
        self.iterations += 1
        try:
            return await self._step()
        except Exception as e:
            self.errors += 1
            logger.error("Worker %s iteration failed: %s", self.name, e, exc_info=True)
            return 0

    async def _loop(self) -> None:
        while not self._stopping:
            self._wake.clear()
            processed = await self.run_once()
            if processed:
                logger.debug("Worker %s processed %d items", self.name, processed)
                # More may be waiting; go again without sleeping
                continue
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
            except TimeoutError:
                pass

    async def stop(self) -> None:
        """Stop after the current iteration finishes."""
        if self._task is None:
            return
        self._stopping = True
        self._wake.set()
        try:
            await self._task
        finally:
            self._task = None
        logger.info("Worker %s stopped", self.name)
