"""
Entry point for the portfolio refresh service.

Runs the HTTP API (portfolio reads and refresh requests), the refresh
queue worker and the periodic scheduler in one process, sharing one
Redis client, one PostgreSQL pool and one HTTP client session.
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional

from aiohttp import web
import structlog

from .builder import SnapshotBuilder
from .config import PortfolioRefreshConfig
from .scheduler import RefreshScheduler
from .serving import BackgroundTasks, PortfolioService
from .worker import RefreshWorker
from ..framework.cache import CacheConfig, CacheManager, PortfolioCache, QuoteCache
from ..framework.health import HealthCheck
from ..framework.service import AsyncService
from ..quotes.fetcher import QuoteFetcher
from ..quotes.google import GoogleFinanceProvider
from ..quotes.nse import NSEProvider
from ..quotes.yahoo import YahooChartProvider
from ..queue.refresh_queue import RefreshQueue
from ..storage.holdings import HoldingsRepository
from ..storage.postgres import PostgresClient, PostgresConfig
from ..storage.redis import RedisClient, RedisConfig
from ..utils.errors import (
    PersistentStoreUnavailableError,
    QueueUnavailableError,
    UnknownUserError,
    ValidationError,
)
from ..utils.logging import setup_logging

logger = structlog.get_logger(__name__)


class PortfolioRefreshService(AsyncService):
    """Service serving enriched portfolios and keeping their cache warm."""

    def __init__(
        self,
        config: Optional[PortfolioRefreshConfig] = None,
        redis_client: Optional[RedisClient] = None,
        postgres_client: Optional[PostgresClient] = None,
    ) -> None:
        config = config or PortfolioRefreshConfig()
        super().__init__(config)
        self.config = config

        # Shared store handles
        if redis_client is None and config.database.redis_enabled:
            redis_client = RedisClient(
                RedisConfig(
                    url=config.database.redis_url,
                    max_connections=config.database.redis_max_connections,
                    # Socket reads must outlive a blocking XREADGROUP
                    timeout=config.database.store_timeout + config.block_ms / 1000.0,
                )
            )
        self.redis = redis_client
        self.postgres = postgres_client or PostgresClient(
            PostgresConfig(
                dsn=config.database.postgres_dsn,
                min_size=config.database.postgres_min_size,
                max_size=config.database.postgres_max_size,
                timeout=config.database.store_timeout,
            )
        )

        self.cache_manager = CacheManager(
            self.redis,
            CacheConfig(default_ttl=config.portfolio_cache_ttl, operation_timeout=config.database.store_timeout),
        )
        self.quote_cache = QuoteCache(self.cache_manager, ttl=config.quote_cache_ttl)
        self.portfolio_cache = PortfolioCache(self.cache_manager, ttl=config.portfolio_cache_ttl)
        self.holdings = HoldingsRepository(self.postgres, timeout=config.database.store_timeout)
        self.refresh_queue = RefreshQueue(
            self.redis,
            stream=config.stream_name,
            group=config.consumer_group,
            timeout=config.database.store_timeout,
        )
        self.background = BackgroundTasks("refresh")

        # Built on startup, once the HTTP client session exists
        self.portfolio_service: Optional[PortfolioService] = None
        self.worker: Optional[RefreshWorker] = None
        self.scheduler: Optional[RefreshScheduler] = None

        self.health_checker.add_check(
            HealthCheck(name="postgres", check_func=self.postgres.health_check, critical=True,
                        description="Holdings store connectivity")
        )
        if self.redis is not None:
            self.health_checker.add_check(
                HealthCheck(name="redis", check_func=self.redis.health_check, critical=False,
                            description="Cache and refresh queue connectivity")
            )

    def build_components(self) -> None:
        """Wire the fetch chain, serving path, worker and scheduler."""
        fetcher = QuoteFetcher(
            primary=NSEProvider(
                timeout=self.config.nse_http_timeout,
                warmup_delay=self.config.nse_warmup_delay_ms / 1000.0,
                quote_page_delay=self.config.nse_quote_page_delay_ms / 1000.0,
            ),
            price_fallback=YahooChartProvider(self.session, timeout=self.config.quote_http_timeout),
            fundamentals_fallback=GoogleFinanceProvider(self.session, timeout=self.config.quote_http_timeout),
            quote_cache=self.quote_cache,
            source_timeout=self.config.quote_source_timeout,
            metrics=self.metrics,
        )
        builder = SnapshotBuilder(self.holdings, fetcher, self.portfolio_cache, metrics=self.metrics)

        self.portfolio_service = PortfolioService(
            self.portfolio_cache,
            builder,
            refresh_queue=self.refresh_queue,
            background=self.background,
            metrics=self.metrics,
        )
        self.worker = RefreshWorker(
            self.refresh_queue,
            builder,
            consumer_name=self.config.consumer_name,
            batch_size=self.config.batch_size,
            block_ms=self.config.block_ms,
            batch_delay_ms=self.config.batch_delay_ms,
            claim_idle_ms=self.config.claim_idle_ms,
            error_backoff_ms=self.config.error_backoff_ms,
            metrics=self.metrics,
        )
        self.scheduler = RefreshScheduler(
            self.holdings,
            self.refresh_queue,
            interval_ms=self.config.refresh_interval_ms,
            metrics=self.metrics,
        )

    async def _startup_hook(self) -> None:
        """Connect stores, wire components, start background loops."""
        try:
            await self.postgres.connect()
        except Exception as e:
            logger.error("PostgreSQL unavailable at startup; rebuilds will fail until it recovers", error=str(e))

        if self.redis is not None:
            try:
                await self.redis.connect()
            except Exception as e:
                logger.error("Redis unavailable at startup; serving without cache", error=str(e))
        else:
            logger.warning("REDIS_URL not set; cache and refresh queue disabled")

        self.build_components()

        if self.config.worker_enabled:
            await self.worker.start()
        if self.config.scheduler_enabled:
            self.scheduler.start()

        self.shutdown_manager.add_handler("scheduler", self.scheduler.stop, timeout=5.0, priority=0)
        self.shutdown_manager.add_handler("refresh-worker", self.worker.stop, timeout=60.0, priority=1)
        self.shutdown_manager.add_handler(
            "background-tasks", lambda: self.background.drain(self.config.database.store_timeout),
            timeout=self.config.database.store_timeout + 1.0, priority=2,
        )
        if self.redis is not None:
            self.shutdown_manager.add_handler("redis", self.redis.close, timeout=5.0, priority=10)
        self.shutdown_manager.add_handler("postgres", self.postgres.close, timeout=5.0, priority=10)

        logger.info(
            "Portfolio refresh service started",
            worker_enabled=self.worker.enabled,
            scheduler_enabled=self.config.scheduler_enabled,
            stream=self.config.stream_name,
        )

    async def _shutdown_hook(self) -> None:
        logger.info("Portfolio refresh service stopped")

    def _setup_service_routes(self) -> None:
        if not self.app:
            return

        self.app.router.add_post("/refresh-portfolio", self._refresh_handler)
        self.app.router.add_get("/portfolio/{user_id}", self._portfolio_handler)
        self.app.router.add_get("/portfolio/{user_id}/cache", self._portfolio_cache_handler)
        self.app.router.add_get("/status", self._status_handler)

    async def _refresh_handler(self, request: web.Request) -> web.Response:
        """Queue a refresh; the worker rebuilds the snapshot later."""
        try:
            user_id = await self._read_user_id(request)
        except ValidationError as e:
            return web.json_response({"error": e.message}, status=400)

        try:
            message_id = await self.refresh_queue.enqueue(user_id)
        except QueueUnavailableError as e:
            logger.warning("Refresh request rejected; queue unavailable", user_id=user_id, error=e.message)
            self.metrics.record_enqueue("api", "failure")
            return web.json_response({"error": "Redis unavailable"}, status=503)

        self.metrics.record_enqueue("api", "success")
        return web.json_response({"queued": True, "userId": user_id, "messageId": message_id}, status=202)

    async def _portfolio_handler(self, request: web.Request) -> web.Response:
        user_id = request.match_info["user_id"]
        # Shielded so a slow build keeps running and still fills the cache
        build = self.background.spawn(self.portfolio_service.get_or_build(user_id), description=f"build:{user_id}")
        try:
            snapshot = await asyncio.wait_for(asyncio.shield(build), timeout=self.config.build_timeout)
        except asyncio.TimeoutError:
            logger.info("Portfolio build still running", user_id=user_id, timeout=self.config.build_timeout)
            return web.json_response({"building": True, "userId": user_id}, status=202)
        except UnknownUserError as e:
            return web.json_response(e.to_dict(), status=404)
        except PersistentStoreUnavailableError as e:
            logger.error("Portfolio build failed", user_id=user_id, error=e.message)
            return web.json_response(e.to_dict(), status=503)

        return web.json_response(snapshot.to_dict())

    async def _portfolio_cache_handler(self, request: web.Request) -> web.Response:
        user_id = request.match_info["user_id"]
        snapshot = await self.portfolio_service.get_cached(user_id)
        if snapshot is None:
            return web.json_response({"error": "No cached portfolio", "userId": user_id}, status=404)
        return web.json_response(snapshot.to_dict())

    async def _status_handler(self, request: web.Request) -> web.Response:
        data = {
            "service": self.config.service_slug,
            "environment": self.config.environment,
            "config": self.config.to_dict(),
            "worker": self.worker.get_status() if self.worker else {"enabled": False},
            "scheduler": self.scheduler.get_status() if self.scheduler else {"running": False},
            "cache": self.cache_manager.get_stats(),
            "background_tasks": len(self.background),
            "shutting_down": self.shutdown_manager.is_shutdown_requested(),
        }
        return web.json_response(data)

    @staticmethod
    async def _read_user_id(request: web.Request) -> str:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise ValidationError("Invalid JSON body")

        user_id = body.get("userId") if isinstance(body, dict) else None
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError("userId required", field="userId", value=user_id)
        return user_id.strip()


async def main() -> None:
    """Service entrypoint."""
    config = PortfolioRefreshConfig()
    setup_logging(config.service_slug, config.observability.log_level, config.observability.log_format)

    service = PortfolioRefreshService(config=config)
    await service.run()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
