"""
Asyncio timers used by the sync orchestrator.
"""
import asyncio
import inspect
from typing import Awaitable, Callable, Optional, Union

import structlog

logger = structlog.get_logger(__name__)

TimerCallback = Callable[[], Union[None, Awaitable[None]]]


async def _invoke(callback: TimerCallback, name: str) -> None:
    try:
        result = callback()
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error("timer_callback_failed", timer=name, error=str(e))


class CancellableTimer:
    """
    One-shot delay. start() while pending restarts the countdown.

    The callback runs once after `delay` seconds unless cancel() or another
    start() comes first.
    """

    def __init__(self, delay: float, callback: TimerCallback, name: str = "timer"):
        self.delay = delay
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._firing = False

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done() and not self._firing

    def start(self) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._run())

    reset = start

    def cancel(self) -> None:
        # Once the callback is running it finishes; only the countdown is cancellable
        if self._task is not None and not self._task.done() and not self._firing:
            self._task.cancel()
        if not self._firing:
            self._task = None

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        self._firing = True
        try:
            await _invoke(self.callback, self.name)
        finally:
            self._firing = False

    async def wait(self) -> None:
        """Wait for the current countdown (and its callback) to finish."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass


class PeriodicTimer:
    """Runs a callback every `interval` seconds until stopped."""

    def __init__(self, interval: float, callback: TimerCallback, name: str = "periodic"):
        self.interval = interval
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await _invoke(self.callback, self.name)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
