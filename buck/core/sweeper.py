"""Periodic background sweep, started and stopped explicitly by its owner.

Usage::

    sweeper = ExpirySweeper(memory.clean_expired_data, interval=3600)
    sweeper.start()
    ...
    await sweeper.stop()
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from typing import Any

from buck.core.logging import get_logger

logger = get_logger(__name__)


class ExpirySweeper:
    """Runs ``job`` every ``interval`` seconds on the running event loop."""

    def __init__(
        self,
        job: Callable[[], Any],
        *,
        interval: float,
        name: str = "expiry_sweep",
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._job = job
        self._interval = interval
        self._name = name
        self._task: asyncio.Task | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=self._name)
        logger.info("sweeper_started", sweeper=self._name, interval=self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("sweeper_stopped", sweeper=self._name, runs=self.runs)

    async def run_once(self) -> Any:
        """Run the job now. Failures are logged, never raised."""
        try:
            result = self._job()
            if inspect.isawaitable(result):
                result = await result
        except Exception:
            logger.exception("sweeper_job_failed", sweeper=self._name)
            return None
        finally:
            self.runs += 1
        logger.debug("sweeper_job_done", sweeper=self._name, result=result)
        return result

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.run_once()
