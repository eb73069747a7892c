"""Periodic timer driving the agents' sample/poll cycles."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTimer:
    """
    Run an async callback on a fixed interval without overlapping cycles.

    Each tick starts the callback as its own task. If the previous cycle is
    still in flight when a tick fires, that tick is skipped (skip-if-busy).
    Exceptions from the callback are logged and never stop the timer.
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "timer",
        run_immediately: bool = False,
    ) -> None:
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._name = name
        self._run_immediately = run_immediately
        self._loop_task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self.ticks = 0
        self.skipped = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        return self._cycle_task is not None and not self._cycle_task.done()

    def start(self) -> None:
        """Start ticking. No-op if already running."""
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run(), name=self._name)

    async def stop(self) -> None:
        """Cancel the timer and any in-flight cycle."""
        tasks = [t for t in (self._loop_task, self._cycle_task) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"{self._name}: cycle ended with {type(e).__name__}")
        self._loop_task = None
        self._cycle_task = None

    def _tick(self) -> None:
        if self.busy:
            self.skipped += 1
            logger.debug(f"{self._name}: previous cycle still running, tick skipped")
            return
        self.ticks += 1
        self._cycle_task = asyncio.create_task(self._guarded())

    async def _guarded(self) -> None:
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"{self._name}: cycle failed")

    async def _run(self) -> None:
        if self._run_immediately:
            self._tick()
        while True:
            await asyncio.sleep(self.interval_seconds)
            self._tick()
