"""
Queue worker: drains the refresh stream in paced batches.

Every message is acknowledged whether its rebuild succeeded or not, so
one bad user id cannot stall the group. The delay between batches is
the only throttle on aggregate provider traffic.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import structlog

from .builder import SnapshotBuilder
from ..framework.metrics import MetricsCollector
from ..queue.refresh_queue import RefreshQueue
from ..schemas.models import RefreshMessage
from ..utils.logging import bind_user_id


class RefreshWorker:
    """Single long-lived consumer in the refresh group."""

    def __init__(
        self,
        queue: RefreshQueue,
        builder: SnapshotBuilder,
        consumer_name: str = "ws-worker",
        batch_size: int = 3,
        block_ms: int = 3000,
        batch_delay_ms: int = 5000,
        claim_idle_ms: int = 60000,
        error_backoff_ms: int = 5000,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.queue = queue
        self.builder = builder
        self.consumer_name = consumer_name
        self.batch_size = batch_size
        self.block_ms = block_ms
        self.batch_delay = batch_delay_ms / 1000.0
        self.claim_idle_ms = claim_idle_ms
        self.error_backoff = error_backoff_ms / 1000.0
        self.metrics = metrics
        self.logger = structlog.get_logger("refresh-worker").bind(consumer=consumer_name)

        self.enabled = False
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self._in_batch = False
        self.stats = {"batches": 0, "processed": 0, "skipped": 0, "failed": 0}

    async def start(self) -> bool:
        """Ensure the consumer group exists and start the loop.

        Returns False, leaving the worker disabled, when the queue
        backend is unreachable.
        """
        if not self.queue.enabled:
            self.logger.warning("Refresh queue not configured; worker disabled")
            return False

        try:
            await self.queue.create_group_if_absent()
        except Exception as e:
            self.logger.error("Refresh queue unavailable; worker disabled", error=str(e))
            return False

        self.enabled = True
        self._stopping.clear()
        self._task = asyncio.create_task(self.run())
        self.logger.info(
            "Refresh worker started",
            batch_size=self.batch_size,
            block_ms=self.block_ms,
            batch_delay_s=self.batch_delay,
        )
        return True

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop after the in-flight batch has been processed and acknowledged."""
        if not self._task:
            return

        self._stopping.set()
        if not self._in_batch:
            # Idle or blocked on a read: nothing to finish
            self._task.cancel()

        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.CancelledError:
            pass
        except asyncio.TimeoutError:
            self.logger.warning("Refresh worker did not finish its batch in time", timeout=timeout)

        self._task = None
        self.enabled = False
        self.logger.info("Refresh worker stopped", **self.stats)

    async def run(self) -> None:
        while not self._stopping.is_set():
            try:
                messages = await self._next_batch()
                if not messages:
                    continue

                await self.process_batch(messages)
                await self._pause(self.batch_delay)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("Refresh worker loop error", error=str(e), exc_info=True)
                if self.metrics:
                    self.metrics.record_error(error_type=type(e).__name__, component="refresh-worker")
                await self._pause(self.error_backoff)

    async def _next_batch(self) -> List[RefreshMessage]:
        if self.claim_idle_ms > 0:
            claimed = await self.queue.claim_stale(self.consumer_name, self.claim_idle_ms, self.batch_size)
            if claimed:
                return claimed
        return await self.queue.read_batch(self.consumer_name, self.batch_size, self.block_ms)

    async def process_batch(self, messages: List[RefreshMessage]) -> None:
        self._in_batch = True
        try:
            await asyncio.gather(*(self.process_message(message) for message in messages))
            self.stats["batches"] += 1
        finally:
            self._in_batch = False

    async def process_message(self, message: RefreshMessage) -> str:
        """Rebuild one user's snapshot and acknowledge; returns the outcome."""
        status = "processed"
        log = bind_user_id(self.logger, message.user_id)
        try:
            snapshot = await self.builder.rebuild(message.user_id, trigger="queue")
            if snapshot is None:
                status = "skipped"
                log.info("User no longer exists; skipping")
        except Exception as e:
            status = "failed"
            log.error("Refresh failed", stream_id=message.stream_id, error=str(e))
        finally:
            await self._ack(message)

        self.stats[status] += 1
        if self.metrics:
            self.metrics.record_refresh_message(status)
        return status

    async def _ack(self, message: RefreshMessage) -> None:
        try:
            await self.queue.ack(message.stream_id)
        except Exception as e:
            # Left pending; a later claim pass picks it up again
            self.logger.error("Refresh ack failed", stream_id=message.stream_id, error=str(e))

    async def _pause(self, seconds: float) -> None:
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def get_status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "consumer": self.consumer_name,
            "batch_size": self.batch_size,
            "block_ms": self.block_ms,
            "batch_delay_s": self.batch_delay,
            **self.stats,
        }
