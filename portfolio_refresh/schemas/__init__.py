"""Data models shared by the serving path, worker and cache."""

from .models import Holding, QuoteResult, StockLine, PortfolioSnapshot, RefreshMessage, UserProfile

__all__ = [
    "Holding",
    "QuoteResult",
    "StockLine",
    "PortfolioSnapshot",
    "RefreshMessage",
    "UserProfile",
]
