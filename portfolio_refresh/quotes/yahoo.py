"""Yahoo Finance chart endpoint: price only."""

from typing import Any, Optional
from urllib.parse import quote

import aiohttp

from .base import QuoteProvider, USER_AGENT
from .parsing import dig, sane_price
from .symbols import yahoo_symbol
from ..schemas.models import QuoteResult
from ..utils.errors import SourceDataMissingError


CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"


def parse_chart(data: Any) -> QuoteResult:
    """cmp is ``regularMarketPrice``, falling back to ``previousClose``."""
    meta = dig(data, "chart", "result", 0, "meta")
    if not isinstance(meta, dict):
        return QuoteResult.empty()
    previous_close = sane_price(meta.get("previousClose"))
    cmp = sane_price(meta.get("regularMarketPrice"))
    if cmp is None:
        cmp = previous_close
    return QuoteResult(cmp=cmp, previous_close=previous_close)


class YahooChartProvider(QuoteProvider):
    """Provider B."""

    source = "yahoo"

    def __init__(self, session: aiohttp.ClientSession, timeout: float = 10.0):
        super().__init__(timeout=timeout)
        self.session = session
        self.headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}

    def provider_symbol(self, symbol: str, exchange: Optional[str]) -> str:
        return yahoo_symbol(symbol, exchange)

    def has_data(self, quote: QuoteResult) -> bool:
        return quote.cmp is not None

    async def fetch(self, symbol: str, exchange: Optional[str]) -> QuoteResult:
        ticker = self.provider_symbol(symbol, exchange)
        url = CHART_URL.format(symbol=quote(ticker, safe=""))
        data = await self._get(self.session, url, ticker, headers=self.headers)

        result = parse_chart(data)
        if not self.has_data(result):
            raise SourceDataMissingError(
                "Yahoo chart response has no price",
                source=self.source,
                symbol=ticker,
                field="regularMarketPrice",
            )
        self.logger.debug("Yahoo quote parsed", symbol=ticker, cmp=result.cmp)
        return result
