"""
Read-only PostgreSQL access to the application database.

The refresh service never writes users or holdings; sessions are opened
read-only so a bad query cannot modify the schema it shares with the
main application.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union
from dataclasses import dataclass
import structlog

import asyncpg


@dataclass
class PostgresConfig:
    """Pool settings for the holdings database."""
    dsn: str
    min_size: int = 1
    max_size: int = 10
    timeout: float = 5.0
    application_name: str = "portfolio-refresh"


class PostgresClient:
    """asyncpg pool opened lazily on first use."""

    def __init__(self, config: Union[PostgresConfig, str]):
        if isinstance(config, str):
            config = PostgresConfig(dsn=config)
        self.config = config
        self.logger = structlog.get_logger("postgres-client")
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        if self._pool is not None:
            return

        self._pool = await asyncpg.create_pool(
            self.config.dsn,
            min_size=self.config.min_size,
            max_size=self.config.max_size,
            command_timeout=self.config.timeout,
            server_settings={
                "application_name": self.config.application_name,
                "default_transaction_read_only": "on",
            },
        )
        self.logger.info("Connected to PostgreSQL", pool_max=self.config.max_size)

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()
            self.logger.info("PostgreSQL pool closed")

    async def execute(self, query: str, *args: Any) -> List[Dict[str, Any]]:
        """All rows of a SELECT as plain dicts."""
        rows = await self._run("fetch", query, args)
        return [dict(row) for row in rows]

    async def execute_one(self, query: str, *args: Any) -> Optional[Dict[str, Any]]:
        """First row of a SELECT, or None."""
        row = await self._run("fetchrow", query, args)
        return dict(row) if row is not None else None

    async def _run(self, method: str, query: str, args: tuple) -> Any:
        await self.connect()
        try:
            async with self._pool.acquire() as conn:
                return await getattr(conn, method)(query, *args)
        except Exception as e:
            self.logger.error("PostgreSQL query error", error=str(e), query=" ".join(query.split()))
            raise

    async def health_check(self) -> bool:
        try:
            return await self._run("fetchval", "SELECT 1", ()) == 1
        except Exception as e:
            self.logger.error("PostgreSQL health check failed", error=str(e))
            return False
