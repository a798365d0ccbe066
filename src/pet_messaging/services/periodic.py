"""Background job that repeats on a fixed interval."""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog

from ..domain.errors import TransientError

logger = structlog.get_logger()


class PeriodicTask:
    """Runs ``callback`` every ``interval`` seconds until stopped.

    Failures inside a tick are logged; the next tick runs regardless.
    """

    def __init__(self, interval: float, callback: Callable[[], Awaitable[Any]], name: str) -> None:
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

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.callback()
            except TransientError as e:
                logger.info("periodic_tick_transient_failure", task=self.name, error=e.message)
            except Exception as e:
                logger.error("periodic_tick_failed", task=self.name, error=str(e))
