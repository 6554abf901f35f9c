"""
Serving path: answer a portfolio request from cache or by rebuilding.

A live cached snapshot is returned without any network call. Anything
else (miss, stale, unreadable cache) is rebuilt synchronously, and a
refresh is then handed to the queue as a detached task whose outcome
never reaches the caller.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, Set

import structlog

from .builder import SnapshotBuilder, is_live
from ..framework.cache import PortfolioCache
from ..framework.metrics import MetricsCollector
from ..queue.refresh_queue import RefreshQueue
from ..schemas.models import PortfolioSnapshot
from ..utils.errors import UnknownUserError


class BackgroundTasks:
    """Holds strong references to detached tasks and logs their failures."""

    def __init__(self, name: str = "background"):
        self.name = name
        self.tasks: Set[asyncio.Task] = set()
        self.logger = structlog.get_logger(f"{name}-tasks")

    def spawn(self, coro: Awaitable, description: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self.tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, description))
        return task

    def _finished(self, task: asyncio.Task, description: str) -> None:
        self.tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.warning("Background task failed", task=description, error=str(error))

    async def drain(self, timeout: float) -> None:
        """Wait for outstanding tasks; cancel whatever is left after ``timeout``."""
        if not self.tasks:
            return
        pending = list(self.tasks)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            self.logger.warning("Cancelled unfinished background tasks", count=len(still_running))

    def __len__(self) -> int:
        return len(self.tasks)


class PortfolioService:
    """``get_or_build(user_id)`` for inbound requests."""

    def __init__(
        self,
        portfolio_cache: PortfolioCache,
        builder: SnapshotBuilder,
        refresh_queue: Optional[RefreshQueue] = None,
        background: Optional[BackgroundTasks] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.portfolio_cache = portfolio_cache
        self.builder = builder
        self.refresh_queue = refresh_queue
        self.background = background or BackgroundTasks("serving")
        self.metrics = metrics
        self.logger = structlog.get_logger("portfolio-service")

    async def get_or_build(self, user_id: str) -> PortfolioSnapshot:
        cached = await self.portfolio_cache.get(user_id)
        if cached is not None and is_live(cached):
            self._record_lookup("hit")
            return cached

        self._record_lookup("stale" if cached is not None else "miss")
        self.logger.debug("Rebuilding portfolio", user_id=user_id, stale=cached is not None)

        snapshot = await self.builder.rebuild(user_id, trigger="request")
        if snapshot is None:
            raise UnknownUserError(f"User {user_id} does not exist", user_id=user_id)

        self.request_refresh(user_id)
        return snapshot

    async def get_cached(self, user_id: str) -> Optional[PortfolioSnapshot]:
        """Cached snapshot only, live or not; no fetch."""
        return await self.portfolio_cache.get(user_id)

    def request_refresh(self, user_id: str) -> Optional[asyncio.Task]:
        """Fire-and-forget enqueue; failures are logged, never raised."""
        if self.refresh_queue is None or not self.refresh_queue.enabled:
            return None
        return self.background.spawn(self._enqueue(user_id), description=f"enqueue:{user_id}")

    async def _enqueue(self, user_id: str) -> None:
        try:
            stream_id = await self.refresh_queue.enqueue(user_id)
        except Exception as e:
            self.logger.warning("Refresh enqueue failed", user_id=user_id, error=str(e))
            if self.metrics:
                self.metrics.record_enqueue("serving", "failure")
            return
        if self.metrics:
            self.metrics.record_enqueue("serving", "success")
        self.logger.debug("Refresh enqueued after serve", user_id=user_id, stream_id=stream_id)

    def _record_lookup(self, result: str) -> None:
        if self.metrics:
            self.metrics.record_cache_lookup(result)
