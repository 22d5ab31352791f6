"""A cancellable asyncio loop that runs a coroutine at a fixed interval."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs ``callback`` every ``interval`` seconds until stopped.

    ``stop()`` is a hard stop: once it returns the callback is never invoked
    again, even if a sleep was already in flight. Stopping from inside the
    callback is allowed; the running invocation finishes and no further one
    starts.
    """

    def __init__(self, interval: float, callback: Callable[[], Awaitable[None]], name: str) -> None:
        if interval <= 0:
            raise ValueError("Interval must be positive.")
        self._interval = interval
        self._callback = callback
        self._name = name
        self._task: asyncio.Task[None] | None = None
        self._stopped = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopped

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError(f"{self._name} has already been started.")
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self._name)

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        task = self._task
        if task is None or task.done():
            return
        if task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self._interval)
            if self._stopped:
                break
            await self._callback()
        logger.debug("%s stopped", self._name)
