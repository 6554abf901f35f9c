"""Tests for the quote fallback chain."""

import asyncio

import pytest

from portfolio_refresh.framework.cache import CacheManager, QuoteCache
from portfolio_refresh.quotes.fetcher import QuoteFetcher
from portfolio_refresh.schemas.models import QuoteResult
from portfolio_refresh.utils.errors import SourceDataMissingError
from tests.fixtures.stubs import (
    FailingRedisClient,
    ScriptedProvider,
    google_provider,
    nse_provider,
    yahoo_provider,
)


def make_fetcher(quote_cache, nse=None, yahoo=None, google=None, **kwargs):
    nse = nse or nse_provider()
    yahoo = yahoo or yahoo_provider()
    google = google or google_provider()
    return QuoteFetcher(nse, yahoo, google, quote_cache, **kwargs), nse, yahoo, google


class TestPrimarySource:
    @pytest.mark.asyncio
    async def test_primary_success_skips_fallbacks(self, quote_cache):
        fetcher, nse, yahoo, google = make_fetcher(
            quote_cache,
            nse=nse_provider({"TCS": QuoteResult(cmp=3800.0, previous_close=3790.0, pe_ratio=29.4)}),
        )

        result = await fetcher.fetch_quote("TCS", "NSE")

        assert result.cmp == 3800.0
        assert result.previous_close == 3790.0
        assert result.pe_ratio == 29.4
        assert result.latest_earnings is None
        assert yahoo.calls == []
        assert google.calls == []

    @pytest.mark.asyncio
    async def test_primary_result_cached_under_its_source(self, quote_cache, stub_redis):
        fetcher, nse, _, _ = make_fetcher(quote_cache, nse=nse_provider({"TCS": QuoteResult(cmp=3800.0)}))

        await fetcher.fetch_quote("TCS")
        await fetcher.fetch_quote("TCS")

        assert nse.calls == ["TCS"]
        assert "quote:nse:TCS" in stub_redis.store
        assert stub_redis.ttls["quote:nse:TCS"] == 60

    @pytest.mark.asyncio
    async def test_cached_entry_without_price_is_refetched(self, quote_cache):
        await quote_cache.set("nse", "TCS", QuoteResult(pe_ratio=20.0))
        fetcher, nse, _, _ = make_fetcher(quote_cache, nse=nse_provider({"TCS": QuoteResult(cmp=3800.0)}))

        result = await fetcher.fetch_quote("TCS")

        assert nse.calls == ["TCS"]
        assert result.cmp == 3800.0


class TestFallbacks:
    @pytest.mark.asyncio
    async def test_price_from_yahoo_when_google_fails(self, quote_cache, stub_redis):
        fetcher, nse, yahoo, google = make_fetcher(
            quote_cache,
            yahoo=yahoo_provider({"TCS": QuoteResult(cmp=3810.5, previous_close=3800.0)}),
        )

        result = await fetcher.fetch_quote("TCS")

        assert result.cmp == 3810.5
        assert result.pe_ratio is None
        assert result.latest_earnings is None
        assert nse.calls == yahoo.calls == google.calls == ["TCS"]
        assert "quote:nse:TCS" not in stub_redis.store
        assert "quote:google:TCS" not in stub_redis.store
        assert "quote:yahoo:TCS" in stub_redis.store

    @pytest.mark.asyncio
    async def test_google_consulted_even_when_yahoo_succeeds(self, quote_cache):
        fetcher, _, yahoo, google = make_fetcher(
            quote_cache,
            yahoo=yahoo_provider({"TCS": QuoteResult(cmp=3810.5)}),
            google=google_provider({"TCS": QuoteResult(pe_ratio=30.2, latest_earnings="Jan 11, 2024")}),
        )

        result = await fetcher.fetch_quote("TCS")

        assert result.cmp == 3810.5
        assert result.pe_ratio == 30.2
        assert result.latest_earnings == "Jan 11, 2024"

    @pytest.mark.asyncio
    async def test_fundamentals_only(self, quote_cache):
        fetcher, _, _, _ = make_fetcher(
            quote_cache,
            google=google_provider({"TCS": QuoteResult(pe_ratio=30.2)}),
        )

        result = await fetcher.fetch_quote("TCS")

        assert result.cmp is None
        assert result.pe_ratio == 30.2

    @pytest.mark.asyncio
    async def test_every_source_failing_gives_empty_result(self, quote_cache):
        fetcher, _, _, _ = make_fetcher(
            quote_cache,
            nse=nse_provider({"TCS": SourceDataMissingError("no price", source="nse")}),
            yahoo=yahoo_provider({"TCS": RuntimeError("parser bug")}),
        )

        result = await fetcher.fetch_quote("TCS")

        assert result.is_empty()

    @pytest.mark.asyncio
    async def test_slow_source_times_out(self, quote_cache):
        class SlowNSE(ScriptedProvider):
            async def fetch(self, symbol, exchange):
                await asyncio.sleep(1)
                return QuoteResult(cmp=1.0)

        slow = SlowNSE("nse", lambda q: q.cmp is not None)
        fetcher, _, yahoo, _ = make_fetcher(
            quote_cache,
            nse=slow,
            yahoo=yahoo_provider({"TCS": QuoteResult(cmp=3800.0)}),
            source_timeout=0.01,
        )

        result = await fetcher.fetch_quote("TCS")

        assert result.cmp == 3800.0
        assert yahoo.calls == ["TCS"]

    @pytest.mark.asyncio
    async def test_failure_metrics_recorded(self, quote_cache, metrics):
        fetcher, _, _, _ = make_fetcher(quote_cache, metrics=metrics)

        await fetcher.fetch_quote("TCS")

        value = metrics.registry.get_sample_value(
            "portfolio_refresh_test_quote_source_requests_total",
            {"source": "nse", "result": "failure"},
        )
        assert value == 1.0


class TestCacheOutage:
    @pytest.mark.asyncio
    async def test_fetch_works_without_cache(self):
        cache = QuoteCache(CacheManager(FailingRedisClient()))
        fetcher, nse, _, _ = make_fetcher(cache, nse=nse_provider({"TCS": QuoteResult(cmp=3800.0)}))

        result = await fetcher.fetch_quote("TCS")

        assert result.cmp == 3800.0

    @pytest.mark.asyncio
    async def test_fetch_works_with_cache_disabled(self):
        cache = QuoteCache(CacheManager(None))
        fetcher, _, _, _ = make_fetcher(cache, nse=nse_provider({"TCS": QuoteResult(cmp=3800.0)}))

        assert (await fetcher.fetch_quote("TCS")).cmp == 3800.0
