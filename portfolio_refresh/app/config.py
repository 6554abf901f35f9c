"""
Configuration for the portfolio refresh service.
"""

from __future__ import annotations

import os

from ..framework.config import ServiceConfig
from ..queue.refresh_queue import REFRESH_GROUP, REFRESH_STREAM
from ..utils.errors import ConfigurationError


def _flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() == "true"


class PortfolioRefreshConfig(ServiceConfig):
    """Service configuration loaded from environment variables."""

    def __init__(self) -> None:
        super().__init__(service_name="portfolio_refresh")

        self.service_slug = "portfolio-refresh"

        # Cache TTLs (seconds)
        self.portfolio_cache_ttl = int(os.getenv("PORTFOLIO_CACHE_TTL", "60"))
        self.quote_cache_ttl = int(os.getenv("QUOTE_CACHE_TTL", "60"))

        # Refresh stream
        self.stream_name = os.getenv("PORTFOLIO_REFRESH_STREAM", REFRESH_STREAM)
        self.consumer_group = os.getenv("PORTFOLIO_REFRESH_GROUP", REFRESH_GROUP)
        self.consumer_name = os.getenv("PORTFOLIO_QUEUE_CONSUMER", "ws-worker")

        # Worker pacing
        self.worker_enabled = _flag("PORTFOLIO_WORKER_ENABLED")
        self.batch_size = int(os.getenv("PORTFOLIO_QUEUE_BATCH_SIZE", "3"))
        self.block_ms = int(os.getenv("PORTFOLIO_QUEUE_BLOCK_MS", "3000"))
        self.batch_delay_ms = int(os.getenv("PORTFOLIO_QUEUE_DELAY_MS", "5000"))
        self.claim_idle_ms = int(os.getenv("PORTFOLIO_QUEUE_CLAIM_IDLE_MS", "60000"))
        self.error_backoff_ms = int(os.getenv("PORTFOLIO_QUEUE_ERROR_BACKOFF_MS", "5000"))

        # Scheduler
        self.scheduler_enabled = _flag("PORTFOLIO_SCHEDULER_ENABLED")
        self.refresh_interval_ms = int(os.getenv("PORTFOLIO_REFRESH_INTERVAL_MS", "15000"))

        # Quote providers
        self.quote_http_timeout = float(os.getenv("QUOTE_HTTP_TIMEOUT", "10"))
        self.nse_http_timeout = float(os.getenv("NSE_HTTP_TIMEOUT", "15"))
        self.nse_warmup_delay_ms = int(os.getenv("NSE_WARMUP_DELAY_MS", "1500"))
        self.nse_quote_page_delay_ms = int(os.getenv("NSE_QUOTE_PAGE_DELAY_MS", "500"))
        self.quote_source_timeout = float(os.getenv("QUOTE_SOURCE_TIMEOUT", "30"))

        # Inbound request budget for a synchronous rebuild
        self.build_timeout = float(os.getenv("BUILD_TIMEOUT", "20"))

        self._validate()

    def _validate(self) -> None:
        positive = {
            "PORTFOLIO_CACHE_TTL": self.portfolio_cache_ttl,
            "QUOTE_CACHE_TTL": self.quote_cache_ttl,
            "PORTFOLIO_QUEUE_BATCH_SIZE": self.batch_size,
            "PORTFOLIO_QUEUE_BLOCK_MS": self.block_ms,
            "PORTFOLIO_REFRESH_INTERVAL_MS": self.refresh_interval_ms,
            "BUILD_TIMEOUT": self.build_timeout,
        }
        for key, value in positive.items():
            if value <= 0:
                raise ConfigurationError(f"{key} must be positive", config_key=key, config_value=value)

        non_negative = {
            "PORTFOLIO_QUEUE_DELAY_MS": self.batch_delay_ms,
            "PORTFOLIO_QUEUE_CLAIM_IDLE_MS": self.claim_idle_ms,
            "PORTFOLIO_QUEUE_ERROR_BACKOFF_MS": self.error_backoff_ms,
        }
        for key, value in non_negative.items():
            if value < 0:
                raise ConfigurationError(f"{key} must not be negative", config_key=key, config_value=value)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "portfolio_cache_ttl": self.portfolio_cache_ttl,
            "quote_cache_ttl": self.quote_cache_ttl,
            "stream_name": self.stream_name,
            "consumer_group": self.consumer_group,
            "consumer_name": self.consumer_name,
            "worker_enabled": self.worker_enabled,
            "batch_size": self.batch_size,
            "block_ms": self.block_ms,
            "batch_delay_ms": self.batch_delay_ms,
            "scheduler_enabled": self.scheduler_enabled,
            "refresh_interval_ms": self.refresh_interval_ms,
        })
        return data
