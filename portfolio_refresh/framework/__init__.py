"""
Core framework components for the refresh service.

Provides the service base class, configuration, health checks,
metrics, graceful shutdown and the cache-aside layer.
"""

from .service import AsyncService
from .config import ServiceConfig, DatabaseConfig, ObservabilityConfig
from .health import HealthChecker, HealthCheck
from .metrics import MetricsCollector
from .graceful_shutdown import GracefulShutdownManager
from .cache import CacheManager, QuoteCache, PortfolioCache

__all__ = [
    "AsyncService",
    "ServiceConfig",
    "DatabaseConfig",
    "ObservabilityConfig",
    "HealthChecker",
    "HealthCheck",
    "MetricsCollector",
    "GracefulShutdownManager",
    "CacheManager",
    "QuoteCache",
    "PortfolioCache",
]
