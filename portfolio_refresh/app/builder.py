"""
Portfolio snapshot construction.

Holds the valuation math for a single stock line, the liveness
predicate applied to cached snapshots, and the rebuild procedure
shared by the serving path and the queue worker.
"""

from __future__ import annotations

import asyncio
import time
from typing import List, Optional, Sequence

import structlog

from ..framework.cache import PortfolioCache
from ..framework.metrics import MetricsCollector
from ..quotes.fetcher import QuoteFetcher
from ..schemas.models import Holding, PortfolioSnapshot, QuoteResult, StockLine, UserProfile, round2
from ..storage.holdings import HoldingsRepository


# A cmp within this distance of the purchase price is treated as "no market data"
LIVE_PRICE_EPSILON = 0.005


def build_stock_line(holding: Holding, quote: QuoteResult, total_investment: float) -> StockLine:
    """Value one holding against a quote; missing cmp values at purchase price."""
    price = quote.cmp if quote.cmp is not None else holding.purchase_price
    present_value = round2(price * holding.quantity)
    gain_loss = round2(present_value - holding.investment)
    portfolio_percent = round2(holding.investment / total_investment * 100) if total_investment > 0 else 0.0

    return StockLine(
        id=holding.id,
        stock_name=holding.name,
        symbol=holding.symbol,
        industry=holding.industry,
        exchange=holding.exchange,
        purchase_price=holding.purchase_price,
        quantity=holding.quantity,
        investment=holding.investment,
        cmp=quote.cmp,
        pe_ratio=quote.pe_ratio,
        latest_earnings=quote.latest_earnings,
        present_value=present_value,
        gain_loss=gain_loss,
        portfolio_percent=portfolio_percent,
    )


def build_snapshot(
    user_id: str,
    holdings: Sequence[Holding],
    quotes: Sequence[QuoteResult],
    profile: Optional[UserProfile] = None,
) -> PortfolioSnapshot:
    """Assemble a snapshot; ``quotes`` is positionally aligned with ``holdings``."""
    if len(holdings) != len(quotes):
        raise ValueError("holdings and quotes must have the same length")

    total_investment = round2(sum(h.investment for h in holdings))
    stocks = [build_stock_line(h, q, total_investment) for h, q in zip(holdings, quotes)]

    return PortfolioSnapshot(
        user_id=user_id,
        name=profile.name if profile else None,
        email=profile.email if profile else None,
        stocks=stocks,
        total_investment=total_investment,
    )


def has_live_data(line: StockLine) -> bool:
    if line.cmp is not None and abs(line.cmp - line.purchase_price) > LIVE_PRICE_EPSILON:
        return True
    return line.pe_ratio is not None and line.pe_ratio > 0


def is_live(snapshot: PortfolioSnapshot) -> bool:
    """Whether a cached snapshot may be served without a rebuild.

    A snapshot is live when at least one line carries market data: a
    cmp that differs from the purchase price, or a positive P/E. An
    empty portfolio is live; there is nothing to fetch for it.
    """
    if not snapshot.stocks:
        return True
    return any(has_live_data(line) for line in snapshot.stocks)


class SnapshotBuilder:
    """Load holdings, fetch quotes concurrently, compute, cache.

    The cache write is unconditional: a snapshot made entirely of
    missing quotes is still stored.
    """

    def __init__(
        self,
        holdings: HoldingsRepository,
        fetcher: QuoteFetcher,
        portfolio_cache: PortfolioCache,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.holdings = holdings
        self.fetcher = fetcher
        self.portfolio_cache = portfolio_cache
        self.metrics = metrics
        self.logger = structlog.get_logger("snapshot-builder")

    async def rebuild(self, user_id: str, trigger: str = "request") -> Optional[PortfolioSnapshot]:
        """Rebuild and cache ``user_id``'s snapshot; None when the user does not exist.

        Raises ``PersistentStoreUnavailableError`` if holdings cannot be
        loaded, in which case nothing is written.
        """
        start = time.perf_counter()
        try:
            loaded = await self.holdings.load_portfolio(user_id)
        except Exception:
            self._record(trigger, "store_error", start)
            raise

        if loaded is None:
            self._record(trigger, "unknown_user", start)
            return None

        quotes: List[QuoteResult] = list(
            await asyncio.gather(*(self.fetcher.fetch_quote(h.symbol, h.exchange) for h in loaded.holdings))
        )
        snapshot = build_snapshot(user_id, loaded.holdings, quotes, loaded.profile)

        cached = await self.portfolio_cache.set(snapshot)
        self._record(trigger, "success", start)
        self.logger.info(
            "Portfolio snapshot rebuilt",
            user_id=user_id,
            trigger=trigger,
            holdings=len(snapshot.stocks),
            quotes_missing=sum(1 for q in quotes if q.is_empty()),
            cached=cached,
        )
        return snapshot

    def _record(self, trigger: str, status: str, start: float) -> None:
        if self.metrics:
            self.metrics.record_build(trigger, status, time.perf_counter() - start)
