"""Fixed-interval background loop shared by the outbox, scheduler and inbox sweep.

A worker calls ``run_once`` every ``interval``. Shutdown is a signal checked
between iterations: ``stop()`` lets an in-flight batch finish before the
loop exits. Errors from ``run_once`` are logged and never escape the loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import timedelta

log = logging.getLogger(__name__)


class PollingWorker:
    """Runs ``run_once`` repeatedly until stopped."""

    def __init__(
        self,
        name: str,
        run_once: Callable[[], Awaitable[int]],
        interval: timedelta,
    ) -> None:
        if interval.total_seconds() <= 0:
            raise ValueError("PollingWorker interval must be positive")
        self.name = name
        self._run_once = run_once
        self._interval_s = interval.total_seconds()
        self._shutdown = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.iterations = 0
        self.errors = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        """Schedule the loop on the running event loop."""
        if self.is_running:
            raise RuntimeError(f"Worker '{self.name}' is already running")
        self._shutdown = asyncio.Event()
        self._task = asyncio.create_task(self.run(), name=f"castor-{self.name}")
        log.info("Worker '%s' started (interval=%ss)", self.name, self._interval_s)
        return self._task

    async def stop(self, timeout: float | None = None) -> None:
        """Signal shutdown and wait for the current iteration to finish.

        After *timeout* seconds the task is cancelled instead.
        """
        self._shutdown.set()
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        except TimeoutError:
            log.warning("Worker '%s' did not stop in %ss; cancelling", self.name, timeout)
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        log.info(
            "Worker '%s' stopped (iterations=%s, errors=%s)",
            self.name,
            self.iterations,
            self.errors,
        )

    async def run(self) -> None:
        """Loop body; usable directly when the caller owns the task."""
        while not self._shutdown.is_set():
            await self.tick()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._shutdown.wait(), self._interval_s)

    async def tick(self) -> int:
        """Run one iteration; returns the number of items handled (0 on error)."""
        self.iterations += 1
        try:
            handled = await self._run_once()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.errors += 1
            log.error("Worker '%s' iteration failed: %s", self.name, e, exc_info=True)
            return 0
        if handled:
            log.debug("Worker '%s' handled %s item(s)", self.name, handled)
        return handled
