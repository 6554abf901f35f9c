"""Redis async client wrapper for the cache and the refresh stream.

Provides key/value access with expiry for the quote and portfolio
caches, and the stream + consumer group primitives used by the
refresh queue.
"""

from typing import Dict, Any, List, Optional, Tuple
from dataclasses import dataclass
import json
import structlog

import redis.asyncio as redis
from redis.exceptions import ResponseError


StreamEntry = Tuple[str, Dict[str, str]]


@dataclass
class RedisConfig:
    """Redis configuration."""
    url: str
    max_connections: int = 20
    timeout: float = 5.0
    retry_on_timeout: bool = True


class RedisClient:
    """
    Async Redis client with connection pooling.

    Every operation logs and re-raises driver errors; callers decide
    whether a failure degrades (cache) or disables a feature (queue).
    """

    def __init__(self, config: RedisConfig | str):
        if isinstance(config, str):
            config = RedisConfig(url=config)
        self.config = config
        self.logger = structlog.get_logger("redis-client")
        self.client: Optional[redis.Redis] = None
        self.is_connected: bool = False

    async def connect(self) -> None:
        """Connect to Redis."""
        if self.client:
            return

        self.client = redis.from_url(
            self.config.url,
            decode_responses=True,
            max_connections=self.config.max_connections,
            socket_timeout=self.config.timeout,
            socket_connect_timeout=self.config.timeout,
            retry_on_timeout=self.config.retry_on_timeout
        )

        try:
            await self.client.ping()
        except Exception:
            await self.client.aclose()
            self.client = None
            raise
        self.is_connected = True
        self.logger.info("Connected to Redis")

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self.client:
            await self.client.aclose()
            self.client = None
            self.is_connected = False
            self.logger.info("Disconnected from Redis")

    async def close(self) -> None:
        """Close Redis connection."""
        await self.disconnect()

    async def get(self, key: str) -> Optional[str]:
        """Get raw value by key."""
        if not self.client:
            await self.connect()

        try:
            return await self.client.get(key)
        except Exception as e:
            self.logger.error("Redis get error", error=str(e), key=key)
            raise

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Set value with optional TTL in seconds."""
        if not self.client:
            await self.connect()

        stored_value = value
        if not isinstance(value, (str, bytes)):
            stored_value = json.dumps(value)

        try:
            await self.client.set(key, stored_value, ex=ttl)
            self.logger.debug("Value set", key=key, ttl=ttl)
        except Exception as e:
            self.logger.error("Redis set error", error=str(e), key=key)
            raise

    async def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        """Get JSON object by key. Non-object or undecodable values read as absent."""
        value = await self.get(key)
        if value is None:
            return None

        try:
            decoded = json.loads(value)
        except (TypeError, json.JSONDecodeError):
            self.logger.warning("Discarding undecodable cache value", key=key)
            return None
        return decoded if isinstance(decoded, dict) else None

    async def set_json(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        """Set JSON object with optional TTL."""
        await self.set(key, json.dumps(value, default=str), ttl=ttl)

    # Streams

    async def xadd(self, stream: str, fields: Dict[str, str]) -> str:
        """Append an entry to a stream and return its id."""
        if not self.client:
            await self.connect()

        try:
            return await self.client.xadd(stream, fields)
        except Exception as e:
            self.logger.error("Redis xadd error", error=str(e), stream=stream)
            raise

    async def xgroup_create(self, stream: str, group: str, start_id: str = "0") -> bool:
        """Create a consumer group, creating the stream if needed.

        Returns False when the group already exists.
        """
        if not self.client:
            await self.connect()

        try:
            await self.client.xgroup_create(stream, group, id=start_id, mkstream=True)
            self.logger.info("Consumer group created", stream=stream, group=group)
            return True
        except ResponseError as e:
            if "BUSYGROUP" in str(e):
                return False
            self.logger.error("Redis xgroup create error", error=str(e), stream=stream, group=group)
            raise
        except Exception as e:
            self.logger.error("Redis xgroup create error", error=str(e), stream=stream, group=group)
            raise

    async def xreadgroup(
        self,
        stream: str,
        group: str,
        consumer: str,
        count: int,
        block_ms: int,
    ) -> List[StreamEntry]:
        """Read never-delivered entries for ``consumer`` within ``group``."""
        if not self.client:
            await self.connect()

        try:
            response = await self.client.xreadgroup(
                group, consumer, {stream: ">"}, count=count, block=block_ms
            )
        except Exception as e:
            self.logger.error("Redis xreadgroup error", error=str(e), stream=stream, group=group)
            raise

        return self._flatten_stream_response(response, stream)

    async def xautoclaim(
        self,
        stream: str,
        group: str,
        consumer: str,
        min_idle_ms: int,
        count: int,
        start_id: str = "0-0",
    ) -> List[StreamEntry]:
        """Claim pending entries idle for at least ``min_idle_ms``."""
        if not self.client:
            await self.connect()

        try:
            response = await self.client.xautoclaim(
                stream, group, consumer, min_idle_ms, start_id=start_id, count=count
            )
        except Exception as e:
            self.logger.error("Redis xautoclaim error", error=str(e), stream=stream, group=group)
            raise

        # [next_start_id, [(id, fields), ...], deleted_ids?]
        if not response or len(response) < 2:
            return []
        return [
            (entry_id, fields or {})
            for entry_id, fields in response[1]
        ]

    async def xack(self, stream: str, group: str, *entry_ids: str) -> int:
        """Acknowledge entries for ``group``."""
        if not entry_ids:
            return 0
        if not self.client:
            await self.connect()

        try:
            return await self.client.xack(stream, group, *entry_ids)
        except Exception as e:
            self.logger.error("Redis xack error", error=str(e), stream=stream, group=group)
            raise

    @staticmethod
    def _flatten_stream_response(response: Any, stream: str) -> List[StreamEntry]:
        if not response:
            return []

        # RESP3 returns {stream: [[id, fields], ...]}; RESP2 returns [[stream, [(id, fields), ...]]]
        if isinstance(response, dict):
            batches = [(name, entries) for name, entries in response.items()]
        else:
            batches = [(item[0], item[1]) for item in response]

        entries: List[StreamEntry] = []
        for name, items in batches:
            if name != stream:
                continue
            for entry_id, fields in items:
                entries.append((entry_id, fields or {}))
        return entries

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            if not self.client:
                await self.connect()
            return bool(await self.client.ping())
        except Exception as e:
            self.logger.error("Redis health check failed", error=str(e))
            return False
