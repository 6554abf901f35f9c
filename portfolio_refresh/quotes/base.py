"""Common interface for quote providers."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp
import structlog

from ..schemas.models import QuoteResult
from ..utils.errors import SourceDataMissingError, SourceUnavailableError, create_error_context


USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class QuoteProvider(ABC):
    """One upstream quote source.

    ``fetch`` either returns a result that satisfies ``has_data`` or
    raises ``SourceUnavailableError`` / ``SourceDataMissingError``.
    """

    source: str = ""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self.logger = structlog.get_logger(f"quote-provider-{self.source}")

    @abstractmethod
    def provider_symbol(self, symbol: str, exchange: Optional[str]) -> str:
        """Symbol as this provider (and its cache entries) name it."""

    @abstractmethod
    async def fetch(self, symbol: str, exchange: Optional[str]) -> QuoteResult:
        """Fetch and parse one quote."""

    @abstractmethod
    def has_data(self, quote: QuoteResult) -> bool:
        """Whether a result carries the fields this provider is consulted for."""

    async def _get(
        self,
        session: aiohttp.ClientSession,
        url: str,
        symbol: str,
        headers: Optional[Dict[str, str]] = None,
        as_json: bool = True,
    ) -> Any:
        """GET returning decoded JSON or text; any failure is SourceUnavailable."""
        context = create_error_context(
            "portfolio_refresh", f"fetch_quote_{self.source}", symbol=symbol, metadata={"url": url}
        )
        try:
            async with session.get(url, headers=headers) as response:
                if response.status != 200:
                    raise SourceUnavailableError(
                        f"{self.source} returned HTTP {response.status}",
                        source=self.source,
                        symbol=symbol,
                        status=response.status,
                        context=context,
                    )
                if as_json:
                    return await response.json(content_type=None)
                return await response.text()
        except SourceUnavailableError:
            raise
        except ValueError as e:
            raise SourceDataMissingError(
                f"{self.source} returned an undecodable body",
                source=self.source,
                symbol=symbol,
                context=context,
            ) from e
        except Exception as e:
            raise SourceUnavailableError(
                f"{self.source} request failed: {e}",
                source=self.source,
                symbol=symbol,
                context=context,
            ) from e
