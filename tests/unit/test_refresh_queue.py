"""Tests for the stream-backed refresh queue."""

import pytest

from portfolio_refresh.queue.refresh_queue import REFRESH_GROUP, REFRESH_STREAM, RefreshQueue
from portfolio_refresh.storage.redis import RedisClient
from portfolio_refresh.utils.errors import QueueUnavailableError


class TestRefreshQueue:
    @pytest.mark.asyncio
    async def test_group_creation_is_idempotent(self, stub_redis):
        queue = RefreshQueue(stub_redis)

        assert await queue.create_group_if_absent() is True
        assert await queue.create_group_if_absent() is False
        assert (REFRESH_STREAM, REFRESH_GROUP) in stub_redis.groups

    @pytest.mark.asyncio
    async def test_enqueue_appends_user_id(self, refresh_queue, stub_redis):
        stream_id = await refresh_queue.enqueue("user-1")

        assert stub_redis.streams[REFRESH_STREAM] == [(stream_id, {"userId": "user-1"})]

    @pytest.mark.asyncio
    async def test_enqueue_requires_user_id(self, refresh_queue):
        with pytest.raises(ValueError):
            await refresh_queue.enqueue("")

    @pytest.mark.asyncio
    async def test_each_message_delivered_once_before_ack(self, refresh_queue):
        for user_id in ("a", "b", "c", "d"):
            await refresh_queue.enqueue(user_id)

        first = await refresh_queue.read_batch("ws-worker", batch_size=3, block_ms=10)
        second = await refresh_queue.read_batch("ws-worker", batch_size=3, block_ms=10)
        third = await refresh_queue.read_batch("ws-worker", batch_size=3, block_ms=10)

        assert [m.user_id for m in first] == ["a", "b", "c"]
        assert [m.user_id for m in second] == ["d"]
        assert third == []

    @pytest.mark.asyncio
    async def test_acked_message_not_redelivered(self, refresh_queue, stub_redis):
        await refresh_queue.enqueue("a")
        [message] = await refresh_queue.read_batch("ws-worker", batch_size=3, block_ms=10)

        assert await refresh_queue.ack(message.stream_id) == 1
        stub_redis.advance(120_000)

        assert await refresh_queue.claim_stale("other-worker", min_idle_ms=60_000, count=3) == []
        assert await refresh_queue.read_batch("ws-worker", batch_size=3, block_ms=10) == []

    @pytest.mark.asyncio
    async def test_unacked_message_reclaimed_after_idle(self, refresh_queue, stub_redis):
        await refresh_queue.enqueue("a")
        await refresh_queue.read_batch("crashed-worker", batch_size=3, block_ms=10)

        assert await refresh_queue.claim_stale("ws-worker", min_idle_ms=60_000, count=3) == []

        stub_redis.advance(60_000)
        claimed = await refresh_queue.claim_stale("ws-worker", min_idle_ms=60_000, count=3)

        assert [m.user_id for m in claimed] == ["a"]

    @pytest.mark.asyncio
    async def test_malformed_entries_acked_and_dropped(self, refresh_queue, stub_redis):
        await stub_redis.xadd(REFRESH_STREAM, {"other": "x"})
        await refresh_queue.enqueue("a")

        messages = await refresh_queue.read_batch("ws-worker", batch_size=5, block_ms=10)

        assert [m.user_id for m in messages] == ["a"]
        assert list(stub_redis.pending(REFRESH_STREAM, REFRESH_GROUP)) == [messages[0].stream_id]

    @pytest.mark.asyncio
    async def test_ack_without_ids(self, refresh_queue):
        assert await refresh_queue.ack() == 0


class TestQueueUnavailable:
    @pytest.mark.asyncio
    async def test_failures_surface_as_queue_unavailable(self, failing_redis):
        queue = RefreshQueue(failing_redis)

        with pytest.raises(QueueUnavailableError) as exc_info:
            await queue.enqueue("user-1")
        assert exc_info.value.error_code == "QUEUE_UNAVAILABLE"
        assert exc_info.value.details["operation"] == "enqueue"

        with pytest.raises(QueueUnavailableError):
            await queue.create_group_if_absent()

    @pytest.mark.asyncio
    async def test_unconfigured_queue(self):
        queue = RefreshQueue(None)

        assert not queue.enabled
        with pytest.raises(QueueUnavailableError):
            await queue.enqueue("user-1")


class TestStreamResponseShapes:
    def test_resp2_shape(self):
        response = [["portfolio:refresh:stream", [("1-0", {"userId": "a"}), ("2-0", None)]]]

        entries = RedisClient._flatten_stream_response(response, "portfolio:refresh:stream")

        assert entries == [("1-0", {"userId": "a"}), ("2-0", {})]

    def test_resp3_shape(self):
        response = {"portfolio:refresh:stream": [["1-0", {"userId": "a"}]]}

        entries = RedisClient._flatten_stream_response(response, "portfolio:refresh:stream")

        assert entries == [("1-0", {"userId": "a"})]

    def test_other_streams_ignored(self):
        assert RedisClient._flatten_stream_response([["other", [("1-0", {})]]], "portfolio:refresh:stream") == []
        assert RedisClient._flatten_stream_response(None, "portfolio:refresh:stream") == []
