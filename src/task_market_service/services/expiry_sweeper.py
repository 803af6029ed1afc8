"""Expiry sweeper — periodically cancels OPEN tasks whose deadline has passed."""

from __future__ import annotations

import asyncio
import sqlite3
from typing import TYPE_CHECKING

from starlette.concurrency import run_in_threadpool

from task_market_service.logging import get_logger

if TYPE_CHECKING:
    from task_market_service.services.task_lifecycle import TaskLifecycleEngine

logger = get_logger(__name__)


class ExpirySweeper:
    """Background loop around ``TaskLifecycleEngine.expire_open_tasks``.

    Started by the lifespan when expiry is enabled and cancelled on
    shutdown. A failed sweep is logged and retried on the next interval.
    """

    def __init__(self, engine: TaskLifecycleEngine, interval_seconds: int) -> None:
        self._engine = engine
        self._interval_seconds = interval_seconds
        self._running = True
        self._task: asyncio.Task[None] | None = None
        self.sweeps = 0
        self.expired_total = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Sweep until stopped."""
        logger.info("Expiry sweeper starting", extra={"interval_seconds": self._interval_seconds})

        while self._running:
            try:
                await self.sweep_once()
                await asyncio.sleep(self._interval_seconds)
            except asyncio.CancelledError:
                logger.info("Expiry sweeper cancelled, shutting down")
                self._running = False
            except sqlite3.Error as exc:
                logger.warning("Expiry sweep failed", extra={"error": str(exc)})
                await asyncio.sleep(self._interval_seconds)
            except Exception:
                logger.exception("Unhandled error in expiry sweep")
                await asyncio.sleep(self._interval_seconds)

        logger.info(
            "Expiry sweeper stopped",
            extra={"sweeps": self.sweeps, "expired_total": self.expired_total},
        )

    async def sweep_once(self) -> int:
        """Run one sweep and return the number of tasks cancelled."""
        expired = await run_in_threadpool(self._engine.expire_open_tasks)
        self.sweeps += 1
        self.expired_total += expired
        return expired

    def start(self) -> None:
        """Schedule the loop on the running event loop."""
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        """Stop the loop and wait for it to finish."""
        self._running = False
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.debug("Expiry sweeper task cancelled")
        self._task = None
