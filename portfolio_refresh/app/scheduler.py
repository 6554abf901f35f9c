"""Periodic job that queues a refresh for every user holding stocks."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import structlog

from ..framework.metrics import MetricsCollector
from ..queue.refresh_queue import RefreshQueue
from ..storage.holdings import HoldingsRepository


class RefreshScheduler:
    """Ticks immediately on start, then every ``interval_ms``.

    A tick only enqueues; rebuilding is left to the worker. No error
    raised inside a tick stops the timer.
    """

    def __init__(
        self,
        holdings: HoldingsRepository,
        queue: RefreshQueue,
        interval_ms: int = 15000,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.holdings = holdings
        self.queue = queue
        self.interval = interval_ms / 1000.0
        self.metrics = metrics
        self.logger = structlog.get_logger("refresh-scheduler")

        self._task: Optional[asyncio.Task] = None
        self.ticks = 0
        self.last_enqueued = 0

    def start(self) -> bool:
        if not self.queue.enabled:
            self.logger.warning("Refresh queue not configured; scheduler disabled")
            return False
        if self._task is None:
            self._task = asyncio.create_task(self.run())
            self.logger.info("Refresh scheduler started", interval_s=self.interval)
        return True

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.logger.info("Refresh scheduler stopped", ticks=self.ticks)

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("Refresh tick failed", error=str(e), exc_info=True)
            await asyncio.sleep(max(0.0, self.interval - (loop.time() - started)))

    async def tick(self) -> int:
        """Enqueue every user with holdings; returns how many were queued."""
        self.ticks += 1
        try:
            user_ids = await self.holdings.users_with_holdings()
        except Exception as e:
            self.logger.warning("Skipping refresh tick; holdings store unavailable", error=str(e))
            if self.metrics:
                self.metrics.record_error(error_type=type(e).__name__, component="refresh-scheduler")
            return 0

        queued = 0
        for user_id in user_ids:
            try:
                await self.queue.enqueue(user_id)
                queued += 1
                status = "success"
            except Exception as e:
                status = "failure"
                self.logger.warning("Scheduled enqueue failed", user_id=user_id, error=str(e))
            if self.metrics:
                self.metrics.record_enqueue("scheduler", status)

        self.last_enqueued = queued
        self.logger.debug("Refresh tick complete", users=len(user_ids), queued=queued)
        return queued

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._task is not None and not self._task.done(),
            "interval_s": self.interval,
            "ticks": self.ticks,
            "last_enqueued": self.last_enqueued,
        }
