"""
Ordered teardown of the refresh service.

The scheduler stops first so no new refresh jobs are enqueued, then the
worker finishes its in-flight batch, then background snapshot writes
drain, and only then are the Redis and PostgreSQL connections closed.
"""

import asyncio
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

import structlog


class ShutdownReason(str, Enum):
    SIGNAL = "signal"
    MANUAL = "manual"
    ERROR = "error"


@dataclass
class ShutdownHandler:
    name: str
    handler: Callable
    timeout: float = 30.0
    priority: int = 0
    critical: bool = False


class GracefulShutdownManager:
    """Runs handlers once, lowest priority first; a handler may be sync, async or return an awaitable."""

    def __init__(self, shutdown_timeout: float = 60.0):
        self.shutdown_timeout = shutdown_timeout
        self.handlers: List[ShutdownHandler] = []
        self.shutdown_reason: Optional[ShutdownReason] = None
        self.logger = structlog.get_logger("graceful-shutdown")
        self._requested = asyncio.Event()

    def add_handler(self, name: str, handler: Callable, timeout: float = 30.0,
                    priority: int = 0, critical: bool = False) -> None:
        self.handlers.append(ShutdownHandler(name, handler, timeout, priority, critical))
        # stable sort keeps registration order within a priority
        self.handlers.sort(key=lambda h: h.priority)

    def is_shutdown_requested(self) -> bool:
        return self._requested.is_set()

    async def shutdown(self, reason: ShutdownReason = ShutdownReason.MANUAL) -> bool:
        """False when a critical handler failed or the overall deadline passed."""
        if self._requested.is_set():
            self.logger.warning("Shutdown already in progress", reason=self.shutdown_reason)
            return True
        self._requested.set()
        self.shutdown_reason = reason
        self.logger.info("Shutting down", reason=reason.value, handlers=len(self.handlers))

        try:
            ok = await asyncio.wait_for(self._run_all(), timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            self.logger.error("Shutdown deadline exceeded", timeout=self.shutdown_timeout)
            ok = False

        log = self.logger.info if ok else self.logger.error
        log("Shutdown finished", clean=ok)
        return ok

    async def _run_all(self) -> bool:
        ok = True
        for entry in self.handlers:
            if not await self._run_one(entry) and entry.critical:
                ok = False
        return ok

    async def _run_one(self, entry: ShutdownHandler) -> bool:
        async def invoke():
            result = entry.handler()
            if inspect.isawaitable(result):
                await result

        try:
            await asyncio.wait_for(invoke(), timeout=entry.timeout)
        except asyncio.TimeoutError:
            self.logger.error("Shutdown step timed out", name=entry.name, timeout=entry.timeout)
            return False
        except Exception as e:
            self.logger.error("Shutdown step failed", name=entry.name, error=str(e))
            return False
        self.logger.debug("Shutdown step done", name=entry.name)
        return True
