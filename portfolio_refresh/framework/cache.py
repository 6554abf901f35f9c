"""Cache-aside layer for quote entries and portfolio snapshots.

The cache store is optional infrastructure: every read failure is a
miss and every write failure is a no-op, so callers never see a
cache error.
"""

import asyncio
from typing import Any, Awaitable, Dict, Optional
from dataclasses import dataclass

import structlog

from ..schemas.models import PortfolioSnapshot, QuoteResult
from ..storage.redis import RedisClient
from ..utils.errors import CacheUnavailableError, OperationTimeoutError


@dataclass
class CacheConfig:
    """Cache configuration."""
    default_ttl: int = 60
    operation_timeout: float = 5.0


class CacheKey:
    """Cache key generator."""

    QUOTE_NAMESPACE = "quote"
    PORTFOLIO_NAMESPACE = "portfolio:enriched"

    @staticmethod
    def generate_for_quote(source: str, symbol: str) -> str:
        """Key for one provider's quote of one symbol."""
        return f"{CacheKey.QUOTE_NAMESPACE}:{source}:{symbol}"

    @staticmethod
    def generate_for_portfolio(user_id: str) -> str:
        """Key for a user's enriched snapshot."""
        return f"{CacheKey.PORTFOLIO_NAMESPACE}:{user_id}"


class CacheManager:
    """JSON cache over Redis with per-call timeouts and failure isolation."""

    def __init__(self, redis_client: Optional[RedisClient], config: Optional[CacheConfig] = None):
        self.redis = redis_client
        self.config = config or CacheConfig()
        self.logger = structlog.get_logger("cache-manager")
        self.cache_stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "errors": 0,
        }

    @property
    def enabled(self) -> bool:
        return self.redis is not None

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Get a JSON object from cache; None on miss or any failure."""
        if not self.enabled:
            self.cache_stats["misses"] += 1
            return None

        try:
            value = await self._call("get", key, self.redis.get_json(key))
        except OperationTimeoutError as e:
            self.logger.warning("Cache get timed out", key=key, timeout=e.timeout_seconds)
            self.cache_stats["misses"] += 1
            return None
        except CacheUnavailableError as e:
            self.logger.error("Cache get error", key=key, error=e.message)
            self.cache_stats["misses"] += 1
            return None

        if value is None:
            self.cache_stats["misses"] += 1
            return None

        self.cache_stats["hits"] += 1
        return value

    async def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> bool:
        """Set a JSON object with expiry; False if the write did not happen."""
        if not self.enabled:
            return False

        ttl = ttl or self.config.default_ttl
        try:
            await self._call("set", key, self.redis.set_json(key, value, ttl=ttl))
        except OperationTimeoutError as e:
            self.logger.warning("Cache set timed out", key=key, timeout=e.timeout_seconds)
            return False
        except CacheUnavailableError as e:
            self.logger.error("Cache set error", key=key, error=e.message)
            return False

        self.cache_stats["sets"] += 1
        return True

    async def _call(self, operation: str, key: str, awaitable: Awaitable[Any]) -> Any:
        timeout = self.config.operation_timeout
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as e:
            self.cache_stats["errors"] += 1
            raise OperationTimeoutError(
                f"Cache {operation} timed out after {timeout}s",
                timeout_seconds=timeout,
                operation=f"cache_{operation}",
            ) from e
        except Exception as e:
            self.cache_stats["errors"] += 1
            raise CacheUnavailableError(f"Cache {operation} failed: {e}", operation=operation, key=key) from e

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_requests = self.cache_stats["hits"] + self.cache_stats["misses"]
        hit_rate = self.cache_stats["hits"] / total_requests if total_requests > 0 else 0

        return {
            **self.cache_stats,
            "enabled": self.enabled,
            "hit_rate": hit_rate,
            "total_requests": total_requests,
        }


class QuoteCache:
    """Per-(source, symbol) quote entries. Sources never share entries."""

    def __init__(self, cache_manager: CacheManager, ttl: int = 60):
        self.cache = cache_manager
        self.ttl = ttl

    async def get(self, source: str, symbol: str) -> Optional[QuoteResult]:
        data = await self.cache.get(CacheKey.generate_for_quote(source, symbol))
        if data is None:
            return None
        return QuoteResult.from_dict(data)

    async def set(self, source: str, symbol: str, quote: QuoteResult) -> bool:
        return await self.cache.set(CacheKey.generate_for_quote(source, symbol), quote.to_dict(), ttl=self.ttl)


class PortfolioCache:
    """Whole-document snapshot cache keyed by user id."""

    def __init__(self, cache_manager: CacheManager, ttl: int = 60):
        self.cache = cache_manager
        self.ttl = ttl
        self.logger = structlog.get_logger("portfolio-cache")

    async def get(self, user_id: str) -> Optional[PortfolioSnapshot]:
        key = CacheKey.generate_for_portfolio(user_id)
        data = await self.cache.get(key)
        if data is None:
            return None

        try:
            return PortfolioSnapshot.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            self.logger.warning("Discarding malformed cached snapshot", key=key, error=str(e))
            return None

    async def set(self, snapshot: PortfolioSnapshot) -> bool:
        return await self.cache.set(
            CacheKey.generate_for_portfolio(snapshot.user_id),
            snapshot.to_dict(),
            ttl=self.ttl,
        )
