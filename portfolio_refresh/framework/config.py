"""
Configuration management for the refresh service.

Provides typed configuration classes with environment variable
injection and validation.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Any

from ..utils.errors import ConfigurationError


VALID_ENVIRONMENTS = ("local", "dev", "staging", "prod")


@dataclass
class DatabaseConfig:
    """Store connection configuration."""
    postgres_dsn: str = field(default_factory=lambda: os.getenv("DATABASE_URL", "postgresql://localhost:5432/portfolio"))
    postgres_min_size: int = field(default_factory=lambda: int(os.getenv("DATABASE_POOL_MIN", "1")))
    postgres_max_size: int = field(default_factory=lambda: int(os.getenv("DATABASE_POOL_MAX", "10")))
    redis_url: str = field(default_factory=lambda: os.getenv("REDIS_URL", "redis://localhost:6379/0"))
    redis_max_connections: int = field(default_factory=lambda: int(os.getenv("REDIS_MAX_CONNECTIONS", "20")))
    store_timeout: float = field(default_factory=lambda: float(os.getenv("STORE_TIMEOUT", "5")))

    @property
    def redis_enabled(self) -> bool:
        return bool(self.redis_url)


@dataclass
class ObservabilityConfig:
    """Observability configuration."""
    log_level: str = field(default_factory=lambda: os.getenv("PORTFOLIO_LOG_LEVEL", "info"))
    log_format: str = field(default_factory=lambda: os.getenv("PORTFOLIO_LOG_FORMAT", "json"))
    http_port: int = field(default_factory=lambda: int(os.getenv("PORTFOLIO_HTTP_PORT", "8081")))
    metrics_interval: float = field(default_factory=lambda: float(os.getenv("PORTFOLIO_METRICS_INTERVAL", "30")))


@dataclass
class ServiceConfig:
    """Base service configuration."""
    service_name: str
    environment: str = field(default_factory=lambda: os.getenv("PORTFOLIO_ENV", "local"))
    version: str = field(default_factory=lambda: os.getenv("PORTFOLIO_VERSION", "1.0.0"))

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.service_name:
            raise ConfigurationError("service_name is required", config_key="service_name")

        if self.environment not in VALID_ENVIRONMENTS:
            raise ConfigurationError(
                f"Invalid environment: {self.environment}",
                config_key="PORTFOLIO_ENV",
                config_value=self.environment,
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "service_name": self.service_name,
            "environment": self.environment,
            "version": self.version,
            "database": {
                "postgres_pool_max": self.database.postgres_max_size,
                "redis_enabled": self.database.redis_enabled,
                "store_timeout": self.database.store_timeout,
            },
            "observability": {
                "log_level": self.observability.log_level,
                "log_format": self.observability.log_format,
                "http_port": self.observability.http_port,
            },
        }
