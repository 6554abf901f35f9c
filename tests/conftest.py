"""Pytest configuration and fixtures."""

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry

from portfolio_refresh.framework.cache import CacheConfig, CacheManager, PortfolioCache, QuoteCache
from portfolio_refresh.framework.metrics import MetricsCollector
from portfolio_refresh.queue.refresh_queue import RefreshQueue
from portfolio_refresh.schemas.models import Holding
from tests.fixtures.stubs import FailingRedisClient, StubHoldingsRepository, StubRedisClient


@pytest.fixture
def stub_redis():
    return StubRedisClient()


@pytest.fixture
def failing_redis():
    return FailingRedisClient()


@pytest.fixture
def metrics():
    return MetricsCollector("portfolio_refresh_test", registry=CollectorRegistry())


@pytest.fixture
def cache_manager(stub_redis):
    return CacheManager(stub_redis, CacheConfig(default_ttl=60, operation_timeout=1.0))


@pytest.fixture
def quote_cache(cache_manager):
    return QuoteCache(cache_manager, ttl=60)


@pytest.fixture
def portfolio_cache(cache_manager):
    return PortfolioCache(cache_manager, ttl=60)


@pytest_asyncio.fixture
async def refresh_queue(stub_redis):
    queue = RefreshQueue(stub_redis, timeout=1.0)
    await queue.create_group_if_absent()
    return queue


@pytest.fixture
def tcs_holding():
    """10 shares of TCS bought at 3500."""
    return Holding(id="stk-1", symbol="TCS", name="Tata Consultancy Services", industry="IT",
                   purchase_price=3500.0, quantity=10)


@pytest.fixture
def infy_holding():
    return Holding(id="stk-2", symbol="INFY", name="Infosys", industry="IT",
                   purchase_price=1500.0, quantity=10)


@pytest.fixture
def holdings_repo(tcs_holding, infy_holding):
    repo = StubHoldingsRepository()
    repo.add_user("user-1", [tcs_holding, infy_holding], name="Asha", email="asha@example.com")
    repo.add_user("user-empty", [])
    return repo
