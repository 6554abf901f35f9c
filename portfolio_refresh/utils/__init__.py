"""
Utility modules for the refresh service.

Provides structured logging setup and the error hierarchy.
"""

from .logging import setup_logging
from .errors import PortfolioRefreshError, ValidationError, PersistentStoreUnavailableError

__all__ = [
    "setup_logging",
    "PortfolioRefreshError",
    "ValidationError",
    "PersistentStoreUnavailableError",
]
