"""Periodic background loops.

Each PeriodicTask runs one coroutine factory forever: run, log any failure,
sleep for the interval, repeat. A failing cycle never ends the loop; only
`stop()` (cancellation) does.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from whenever import TimeDelta

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger("agent_optimizer.scheduler")


class PeriodicTask:
    """Background loop calling `factory()` every `interval`."""

    def __init__(
        self,
        name: str,
        interval: TimeDelta,
        factory: Callable[[], Awaitable[object]],
        *,
        run_immediately: bool = False,
    ) -> None:
        self.name = name
        self.interval = interval
        self._factory = factory
        self._run_immediately = run_immediately
        self._task: asyncio.Task[None] | None = None
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=self.name)
        logger.info("Started %s (every %.0fs)", self.name, self.interval.total("seconds"))

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Stopped %s", self.name)

    async def _loop(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self.interval.total("seconds"))
        while True:
            try:
                await self._factory()
                self.cycles += 1
            except Exception as e:
                logger.error("Error in %s loop: %s", self.name, e, exc_info=True)

            await asyncio.sleep(self.interval.total("seconds"))
