"""
Storage clients for the refresh service.

Provides async clients for:
- PostgreSQL (users and holdings, read-only)
- Redis (quote/portfolio cache and the refresh stream)
"""

from .postgres import PostgresClient
from .redis import RedisClient
from .holdings import HoldingsRepository

__all__ = [
    "PostgresClient",
    "RedisClient",
    "HoldingsRepository",
]
