"""Quote providers and the fallback fetcher."""

from .base import QuoteProvider
from .fetcher import QuoteFetcher
from .google import GoogleFinanceProvider
from .nse import NSEProvider
from .yahoo import YahooChartProvider

__all__ = [
    "QuoteProvider",
    "QuoteFetcher",
    "NSEProvider",
    "YahooChartProvider",
    "GoogleFinanceProvider",
]
