"""
Refresh queue backed by a Redis stream.

Delivery is at-least-once within one consumer group: an entry read by
one consumer stays pending for that consumer until acknowledged, and
pending entries idle for too long can be claimed by another consumer.
"""

import asyncio
from typing import Any, Awaitable, List, Optional

import structlog

from ..schemas.models import RefreshMessage
from ..storage.redis import RedisClient, StreamEntry
from ..utils.errors import QueueUnavailableError


REFRESH_STREAM = "portfolio:refresh:stream"
REFRESH_GROUP = "portfolio-refresh-group"
USER_ID_FIELD = "userId"


class RefreshQueue:
    """Producer and consumer operations over one stream and one group."""

    def __init__(
        self,
        redis_client: Optional[RedisClient],
        stream: str = REFRESH_STREAM,
        group: str = REFRESH_GROUP,
        timeout: float = 5.0,
    ):
        self.redis = redis_client
        self.stream = stream
        self.group = group
        self.timeout = timeout
        self.logger = structlog.get_logger("refresh-queue")

    @property
    def enabled(self) -> bool:
        return self.redis is not None

    async def enqueue(self, user_id: str) -> str:
        """Append a refresh request; returns the stream id."""
        if not user_id:
            raise ValueError("user_id is required")
        entry_id = await self._call("enqueue", self._redis().xadd(self.stream, {USER_ID_FIELD: user_id}), self.timeout)
        self.logger.debug("Refresh enqueued", user_id=user_id, stream_id=entry_id)
        return entry_id

    async def create_group_if_absent(self) -> bool:
        """Create the consumer group (and stream). Safe to call repeatedly."""
        created = await self._call(
            "create_group",
            self._redis().xgroup_create(self.stream, self.group, start_id="0"),
            self.timeout,
        )
        if not created:
            self.logger.debug("Consumer group already exists", stream=self.stream, group=self.group)
        return created

    async def read_batch(self, consumer: str, batch_size: int, block_ms: int) -> List[RefreshMessage]:
        """Block up to ``block_ms`` for at most ``batch_size`` new messages."""
        entries = await self._call(
            "read_batch",
            self._redis().xreadgroup(self.stream, self.group, consumer, count=batch_size, block_ms=block_ms),
            self.timeout + block_ms / 1000.0,
        )
        return await self._to_messages(entries)

    async def claim_stale(self, consumer: str, min_idle_ms: int, count: int) -> List[RefreshMessage]:
        """Take over pending messages another consumer left unacknowledged."""
        entries = await self._call(
            "claim_stale",
            self._redis().xautoclaim(self.stream, self.group, consumer, min_idle_ms=min_idle_ms, count=count),
            self.timeout,
        )
        messages = await self._to_messages(entries)
        if messages:
            self.logger.info("Claimed stale refresh messages", consumer=consumer, count=len(messages))
        return messages

    async def ack(self, *stream_ids: str) -> int:
        if not stream_ids:
            return 0
        return await self._call("ack", self._redis().xack(self.stream, self.group, *stream_ids), self.timeout)

    async def _to_messages(self, entries: List[StreamEntry]) -> List[RefreshMessage]:
        messages: List[RefreshMessage] = []
        malformed: List[str] = []
        for entry_id, fields in entries:
            user_id = fields.get(USER_ID_FIELD)
            if user_id:
                messages.append(RefreshMessage(stream_id=entry_id, user_id=user_id))
            else:
                malformed.append(entry_id)

        if malformed:
            # Entries without a user id can never be processed
            self.logger.warning("Dropping malformed refresh entries", stream_ids=malformed)
            await self.ack(*malformed)
        return messages

    def _redis(self) -> RedisClient:
        if self.redis is None:
            raise QueueUnavailableError("Refresh queue is not configured", operation="connect", stream=self.stream)
        return self.redis

    async def _call(self, operation: str, awaitable: Awaitable[Any], timeout: float) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise QueueUnavailableError(
                f"Queue {operation} timed out after {timeout}s",
                operation=operation,
                stream=self.stream,
            ) from e
        except QueueUnavailableError:
            raise
        except Exception as e:
            raise QueueUnavailableError(
                f"Queue {operation} failed: {e}",
                operation=operation,
                stream=self.stream,
            ) from e
