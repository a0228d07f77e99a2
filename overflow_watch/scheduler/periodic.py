"""PeriodicTask — a cancellable fixed-interval timer on the event loop.

The callback is awaited to completion before the next sleep, so a task
never overlaps with itself.  Exceptions are logged and the timer keeps
running.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    def __init__(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], Awaitable[object]],
        run_immediately: bool = True,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self._interval = interval_seconds
        self._callback = callback
        self._run_immediately = run_immediately
        self._task: asyncio.Task | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.info("%s already running", self.name)
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("%s started (every %ss)", self.name, self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("%s stopped", self.name)

    async def _loop(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self._interval)
        while True:
            try:
                await self._callback()
            except Exception:
                logger.exception("%s tick failed", self.name)
            self.runs += 1
            await asyncio.sleep(self._interval)
