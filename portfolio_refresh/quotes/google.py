"""Google Finance quote page: P/E ratio and latest earnings date from HTML."""

from typing import Optional
from urllib.parse import quote

import aiohttp

from .base import QuoteProvider, USER_AGENT
from .parsing import MAX_SCAN_CHARS, extract_latest_earnings, extract_pe_ratio
from .symbols import google_symbol, normalize_symbol
from ..schemas.models import QuoteResult
from ..utils.errors import SourceDataMissingError


QUOTE_PAGE_URL = "https://www.google.com/finance/quote/{symbol}"


def parse_quote_page(html: str) -> QuoteResult:
    text = (html or "")[:MAX_SCAN_CHARS]
    return QuoteResult(
        pe_ratio=extract_pe_ratio(text),
        latest_earnings=extract_latest_earnings(text),
    )


class GoogleFinanceProvider(QuoteProvider):
    """Provider C."""

    source = "google"

    def __init__(self, session: aiohttp.ClientSession, timeout: float = 10.0):
        super().__init__(timeout=timeout)
        self.session = session
        self.headers = {"User-Agent": USER_AGENT, "Accept": "text/html"}

    def provider_symbol(self, symbol: str, exchange: Optional[str]) -> str:
        # Cache entries are keyed by the bare symbol; the URL carries the exchange
        return normalize_symbol(symbol)

    def has_data(self, quote: QuoteResult) -> bool:
        return quote.pe_ratio is not None or quote.latest_earnings is not None

    async def fetch(self, symbol: str, exchange: Optional[str]) -> QuoteResult:
        page_symbol = google_symbol(symbol, exchange)
        url = QUOTE_PAGE_URL.format(symbol=quote(page_symbol, safe=":"))
        html = await self._get(self.session, url, page_symbol, headers=self.headers, as_json=False)

        result = parse_quote_page(html if isinstance(html, str) else "")
        if not self.has_data(result):
            raise SourceDataMissingError(
                "Google Finance page has no P/E or earnings",
                source=self.source,
                symbol=page_symbol,
            )
        self.logger.debug(
            "Google Finance quote parsed",
            symbol=page_symbol,
            pe_ratio=result.pe_ratio,
            latest_earnings=result.latest_earnings,
        )
        return result
