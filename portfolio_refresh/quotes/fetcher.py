"""
Quote fetcher with a three-provider fallback chain.

Order per symbol:
- primary (NSE): price, P/E and previous close in one call. On success
  nothing else is consulted.
- price fallback (Yahoo): price only, consulted only when the primary failed.
- fundamentals fallback (Google Finance): P/E and earnings, consulted
  whenever the primary failed, whatever the price fallback returned.

Each provider is looked up in its own quote cache entry first and only
writes that entry after a successful parse.
"""

import asyncio
from typing import Optional

import structlog

from .base import QuoteProvider
from ..framework.cache import QuoteCache
from ..framework.metrics import MetricsCollector
from ..schemas.models import QuoteResult
from ..utils.errors import SourceError
from ..utils.logging import bind_symbol


class QuoteFetcher:
    """Resolves ``fetch_quote(symbol, exchange)``; never raises."""

    def __init__(
        self,
        primary: QuoteProvider,
        price_fallback: QuoteProvider,
        fundamentals_fallback: QuoteProvider,
        quote_cache: QuoteCache,
        source_timeout: float = 30.0,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.primary = primary
        self.price_fallback = price_fallback
        self.fundamentals_fallback = fundamentals_fallback
        self.quote_cache = quote_cache
        self.source_timeout = source_timeout
        self.metrics = metrics
        self.logger = structlog.get_logger("quote-fetcher")

    async def fetch_quote(self, symbol: str, exchange: Optional[str] = None) -> QuoteResult:
        try:
            return await self._fetch_chain(symbol, exchange)
        except Exception as e:
            self.logger.error("Quote fetch failed", symbol=symbol, error=str(e), exc_info=True)
            return QuoteResult.empty()

    async def _fetch_chain(self, symbol: str, exchange: Optional[str]) -> QuoteResult:
        primary = await self._from_source(self.primary, symbol, exchange)
        if primary is not None:
            return QuoteResult(
                cmp=primary.cmp,
                previous_close=primary.previous_close,
                pe_ratio=primary.pe_ratio,
                latest_earnings=primary.latest_earnings,
            )

        self.logger.info(
            "Primary quote source failed, falling back",
            symbol=symbol,
            primary=self.primary.source,
            price_source=self.price_fallback.source,
            fundamentals_source=self.fundamentals_fallback.source,
        )
        price = await self._from_source(self.price_fallback, symbol, exchange)
        fundamentals = await self._from_source(self.fundamentals_fallback, symbol, exchange)

        return QuoteResult(
            cmp=price.cmp if price else None,
            previous_close=price.previous_close if price else None,
            pe_ratio=fundamentals.pe_ratio if fundamentals else None,
            latest_earnings=fundamentals.latest_earnings if fundamentals else None,
        )

    async def _from_source(
        self,
        provider: QuoteProvider,
        symbol: str,
        exchange: Optional[str],
    ) -> Optional[QuoteResult]:
        """Cached or freshly fetched result from one provider; None on any failure."""
        cache_symbol = provider.provider_symbol(symbol, exchange)
        log = bind_symbol(self.logger, cache_symbol, source=provider.source)

        cached = await self.quote_cache.get(provider.source, cache_symbol)
        if cached is not None and provider.has_data(cached):
            self._record(provider.source, "cache_hit")
            return cached

        try:
            result = await asyncio.wait_for(provider.fetch(symbol, exchange), timeout=self.source_timeout)
        except asyncio.TimeoutError:
            log.warning("Quote source timed out", timeout=self.source_timeout)
            self._record(provider.source, "failure")
            return None
        except SourceError as e:
            operation = e.context.operation if e.context else None
            log.warning("Quote source failed", error_code=e.error_code, error=e.message, operation=operation)
            self._record(provider.source, "failure")
            return None
        except Exception as e:
            log.warning("Quote source raised unexpectedly", error=str(e))
            self._record(provider.source, "failure")
            return None

        if not provider.has_data(result):
            self._record(provider.source, "failure")
            return None

        await self.quote_cache.set(provider.source, cache_symbol, result)
        self._record(provider.source, "success")
        return result

    def _record(self, source: str, result: str) -> None:
        if self.metrics:
            self.metrics.record_quote_source(source, result)
