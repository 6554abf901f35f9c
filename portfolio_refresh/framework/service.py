"""
Process skeleton shared by the refresh service entrypoints.

Owns the aiohttp server, the outbound client session, the /health and
/metrics routes and the signal-driven stop. Subclasses wire their own
components in ``_startup_hook`` and register teardown steps with the
shutdown manager.
"""

import asyncio
import signal
import time
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp
from aiohttp import web
import psutil
import structlog

from .config import ServiceConfig
from .graceful_shutdown import GracefulShutdownManager, ShutdownReason
from .health import HealthChecker
from .metrics import MetricsCollector


logger = structlog.get_logger(__name__)


class AsyncService(ABC):
    """Long-running asyncio service with an HTTP control surface."""

    def __init__(self, config: ServiceConfig):
        self.config = config
        self.logger = structlog.get_logger(config.service_name).bind(service=config.service_name)

        self.health_checker = HealthChecker(config)
        self.metrics = MetricsCollector(config.service_name)
        self.shutdown_manager = GracefulShutdownManager()
        self.shutdown_event = asyncio.Event()

        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        self.session: Optional[aiohttp.ClientSession] = None
        self.metrics_task: Optional[asyncio.Task] = None
        self._stopping = False

    def build_app(self) -> web.Application:
        self.app = web.Application(middlewares=[self._metrics_middleware])
        router = self.app.router
        router.add_get("/health", self._health_handler)
        router.add_get("/health/ready", self._readiness_handler)
        router.add_get("/health/live", self._liveness_handler)
        router.add_get("/metrics", self._metrics_handler)
        self._setup_service_routes()
        return self.app

    def _setup_service_routes(self) -> None:
        """Hook for subclass routes; ``self.app`` is set when this runs."""

    @abstractmethod
    async def _startup_hook(self) -> None:
        ...

    @abstractmethod
    async def _shutdown_hook(self) -> None:
        ...

    async def run(self) -> None:
        """Start, block until SIGTERM/SIGINT, then stop."""
        self._install_signal_handlers()
        try:
            await self.startup()
            await self.shutdown_event.wait()
        except Exception as e:
            self.logger.error("Service crashed", error=str(e), exc_info=True)
            raise
        finally:
            await self.shutdown()

    async def startup(self) -> None:
        port = self.config.observability.http_port
        self.logger.info("Starting service", version=self.config.version, environment=self.config.environment)

        self.session = aiohttp.ClientSession()
        self.build_app()
        await self._startup_hook()
        self.metrics_task = asyncio.create_task(self._sample_runtime_metrics())

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, host="0.0.0.0", port=port)
        await self.site.start()
        self.logger.info("Listening", port=port)

    async def shutdown(self) -> None:
        if self._stopping:
            return
        self._stopping = True
        reason = ShutdownReason.SIGNAL if self.shutdown_event.is_set() else ShutdownReason.MANUAL

        # Stop accepting requests; subclass handlers run before the runner and session go away
        if self.site is not None:
            await self.site.stop()
        await self.shutdown_manager.shutdown(reason)
        await self._shutdown_hook()

        if self.metrics_task is not None:
            self.metrics_task.cancel()
            await asyncio.gather(self.metrics_task, return_exceptions=True)
        if self.runner is not None:
            await self.runner.cleanup()
        if self.session is not None:
            await self.session.close()

        self.shutdown_event.set()
        self.logger.info("Service stopped", reason=reason.value)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig.name)
            except (NotImplementedError, RuntimeError):
                self.logger.warning("Cannot install signal handler", signal=sig.name)

    def _on_signal(self, name: str) -> None:
        self.logger.info("Shutdown signal received", signal=name)
        self.shutdown_event.set()

    @web.middleware
    async def _metrics_middleware(self, request: web.Request, handler):
        started = time.perf_counter()
        status = 500
        try:
            response = await handler(request)
            status = response.status
            return response
        except web.HTTPException as e:
            status = e.status
            raise
        finally:
            resource = request.match_info.route.resource
            endpoint = resource.canonical if resource is not None else "unmatched"
            self.metrics.record_request(request.method, endpoint, str(status), time.perf_counter() - started)

    async def _health_handler(self, request: web.Request) -> web.Response:
        report = await self.health_checker.check_health()
        return web.json_response(report, status=200 if report["healthy"] else 503)

    async def _readiness_handler(self, request: web.Request) -> web.Response:
        report = await self.health_checker.check_readiness()
        return web.json_response(report, status=200 if report["ready"] else 503)

    async def _liveness_handler(self, request: web.Request) -> web.Response:
        return web.json_response({"alive": True})

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        return web.Response(body=self.metrics.get_metrics(),
                            headers={"Content-Type": self.metrics.get_content_type()})

    async def _sample_runtime_metrics(self) -> None:
        interval = self.config.observability.metrics_interval
        process = psutil.Process()
        self.metrics.update_service_info(version=self.config.version, environment=self.config.environment)

        while not self.shutdown_event.is_set():
            try:
                report = await self.health_checker.check_health()
                self.metrics.set_health_status(report["healthy"])
                self.metrics.set_memory_usage(process.memory_info().rss)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Runtime metrics sample failed", error=str(e))
            await asyncio.sleep(interval)
