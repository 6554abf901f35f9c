"""Read-only access to users and their holdings in PostgreSQL."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, List, Optional

import structlog

from .postgres import PostgresClient
from ..schemas.models import Holding, UserProfile
from ..utils.errors import PersistentStoreUnavailableError


USER_QUERY = 'SELECT "id", "name", "email" FROM "User" WHERE "id" = $1'

HOLDINGS_QUERY = """
    SELECT s."id", s."symbol", s."name", s."industry"::text AS industry,
           s."purchasedPrice" AS purchase_price,
           s."purchasedQuantity" AS quantity,
           s."investment"
    FROM "Stock" s
    JOIN "Portfolio" p ON p."id" = s."portfolioId"
    WHERE p."userId" = $1
    ORDER BY s."symbol"
"""

USERS_WITH_HOLDINGS_QUERY = """
    SELECT DISTINCT p."userId" AS user_id
    FROM "Portfolio" p
    JOIN "Stock" s ON s."portfolioId" = p."id"
"""


@dataclass
class LoadedPortfolio:
    profile: UserProfile
    holdings: List[Holding] = field(default_factory=list)


class HoldingsRepository:
    """Loads portfolios for rebuilds and enumerates users for the scheduler.

    Any database failure or timeout surfaces as
    ``PersistentStoreUnavailableError``.
    """

    def __init__(self, client: PostgresClient, timeout: float = 5.0):
        self.client = client
        self.timeout = timeout
        self.logger = structlog.get_logger("holdings-repository")

    async def load_portfolio(self, user_id: str) -> Optional[LoadedPortfolio]:
        """Return the user's profile and holdings, or None if the user does not exist."""
        user = await self._call("load_user", self.client.execute_one(USER_QUERY, user_id))
        if user is None:
            return None

        rows = await self._call("load_holdings", self.client.execute(HOLDINGS_QUERY, user_id))
        profile = UserProfile(user_id=str(user["id"]), name=user.get("name"), email=user.get("email"))
        return LoadedPortfolio(profile=profile, holdings=[Holding.from_row(row) for row in rows])

    async def users_with_holdings(self) -> List[str]:
        rows = await self._call("users_with_holdings", self.client.execute(USERS_WITH_HOLDINGS_QUERY))
        return [str(row["user_id"]) for row in rows]

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            self.logger.error("Holdings query timed out", operation=operation, timeout=self.timeout)
            raise PersistentStoreUnavailableError(
                f"{operation} timed out after {self.timeout}s",
                operation=operation,
            ) from e
        except PersistentStoreUnavailableError:
            raise
        except Exception as e:
            self.logger.error("Holdings query failed", operation=operation, error=str(e))
            raise PersistentStoreUnavailableError(
                f"{operation} failed: {e}",
                operation=operation,
            ) from e
