"""NSE India quote API: price, previous close and sector P/E in one call.

The API rejects requests without the cookies set by the public site, so
every fetch warms a fresh cookie jar by visiting the home page and the
symbol's quote page first.
"""

import asyncio
from typing import Any, Callable, Optional
from urllib.parse import quote

import aiohttp

from .base import QuoteProvider, USER_AGENT
from .parsing import dig, sane_pe_ratio, sane_price
from .symbols import normalize_symbol
from ..schemas.models import QuoteResult
from ..utils.errors import SourceDataMissingError


NSE_HOME_URL = "https://www.nseindia.com"
NSE_QUOTE_PAGE_URL = "https://www.nseindia.com/get-quotes/equity?symbol={symbol}"
NSE_QUOTE_API_URL = "https://www.nseindia.com/api/quote-equity?symbol={symbol}"

BROWSER_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "application/json",
    "Accept-Language": "en,gu;q=0.9,hi;q=0.8",
    "Accept-Encoding": "gzip, deflate",
    "Referer": "https://www.nseindia.com/",
}


def parse_quote_equity(data: Any) -> QuoteResult:
    """Map an NSE ``quote-equity`` payload; NSE carries no earnings date."""
    return QuoteResult(
        cmp=sane_price(dig(data, "priceInfo", "lastPrice")),
        previous_close=sane_price(dig(data, "priceInfo", "previousClose")),
        pe_ratio=sane_pe_ratio(dig(data, "metadata", "pdSectorPe")),
        latest_earnings=None,
    )


class NSEProvider(QuoteProvider):
    """Provider A."""

    source = "nse"

    def __init__(
        self,
        timeout: float = 15.0,
        warmup_delay: float = 1.5,
        quote_page_delay: float = 0.5,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        super().__init__(timeout=timeout)
        self.warmup_delay = warmup_delay
        self.quote_page_delay = quote_page_delay
        self.session_factory = session_factory or self._new_session

    def _new_session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            headers=BROWSER_HEADERS,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            cookie_jar=aiohttp.CookieJar(),
        )

    def provider_symbol(self, symbol: str, exchange: Optional[str]) -> str:
        return normalize_symbol(symbol)

    def has_data(self, quote: QuoteResult) -> bool:
        return quote.cmp is not None or quote.previous_close is not None

    async def fetch(self, symbol: str, exchange: Optional[str]) -> QuoteResult:
        nse_symbol = self.provider_symbol(symbol, exchange)
        encoded = quote(nse_symbol, safe="")
        quote_page = NSE_QUOTE_PAGE_URL.format(symbol=encoded)

        async with self.session_factory() as session:
            await self._get(session, NSE_HOME_URL, nse_symbol, as_json=False)
            await asyncio.sleep(self.warmup_delay)
            await self._get(session, quote_page, nse_symbol, as_json=False)
            await asyncio.sleep(self.quote_page_delay)
            data = await self._get(
                session,
                NSE_QUOTE_API_URL.format(symbol=encoded),
                nse_symbol,
                headers={**BROWSER_HEADERS, "Referer": quote_page},
            )

        if not isinstance(data, dict):
            raise SourceDataMissingError(
                "NSE returned a non-object body",
                source=self.source,
                symbol=nse_symbol,
            )

        result = parse_quote_equity(data)
        if not self.has_data(result):
            raise SourceDataMissingError(
                "NSE response has no price",
                source=self.source,
                symbol=nse_symbol,
                field="priceInfo.lastPrice",
            )
        self.logger.debug("NSE quote parsed", symbol=nse_symbol, cmp=result.cmp, pe_ratio=result.pe_ratio)
        return result
