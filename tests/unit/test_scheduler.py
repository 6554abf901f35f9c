"""Tests for the periodic refresh scheduler."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from portfolio_refresh.app.scheduler import RefreshScheduler
from portfolio_refresh.queue.refresh_queue import REFRESH_STREAM, RefreshQueue


class TestTick:
    @pytest.mark.asyncio
    async def test_enqueues_every_user_with_holdings(self, holdings_repo, refresh_queue, stub_redis, metrics):
        scheduler = RefreshScheduler(holdings_repo, refresh_queue, interval_ms=15000, metrics=metrics)

        queued = await scheduler.tick()

        assert queued == 1
        assert [fields["userId"] for _, fields in stub_redis.streams[REFRESH_STREAM]] == ["user-1"]
        assert scheduler.get_status()["last_enqueued"] == 1

    @pytest.mark.asyncio
    async def test_tick_only_enqueues(self, holdings_repo, refresh_queue):
        scheduler = RefreshScheduler(holdings_repo, refresh_queue)

        await scheduler.tick()

        assert holdings_repo.loads == []

    @pytest.mark.asyncio
    async def test_store_outage_skips_tick(self, holdings_repo, refresh_queue, stub_redis):
        holdings_repo.fail = True
        scheduler = RefreshScheduler(holdings_repo, refresh_queue)

        assert await scheduler.tick() == 0
        assert stub_redis.streams.get(REFRESH_STREAM) == []

    @pytest.mark.asyncio
    async def test_enqueue_failures_counted(self, holdings_repo, failing_redis, metrics):
        scheduler = RefreshScheduler(holdings_repo, RefreshQueue(failing_redis), metrics=metrics)

        assert await scheduler.tick() == 0
        assert metrics.registry.get_sample_value(
            "portfolio_refresh_test_refresh_enqueued_total",
            {"producer": "scheduler", "status": "failure"},
        ) == 1.0


class TestTimer:
    @pytest.mark.asyncio
    async def test_first_tick_runs_immediately(self, holdings_repo, refresh_queue, stub_redis):
        scheduler = RefreshScheduler(holdings_repo, refresh_queue, interval_ms=60_000)

        assert scheduler.start() is True
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.ticks == 1
        assert len(stub_redis.streams[REFRESH_STREAM]) == 1

    @pytest.mark.asyncio
    async def test_timer_survives_failing_tick(self, holdings_repo, refresh_queue):
        scheduler = RefreshScheduler(holdings_repo, refresh_queue, interval_ms=10)
        outcomes = iter([RuntimeError("boom")])

        def tick():
            error = next(outcomes, None)
            if error is not None:
                raise error
            return 0

        scheduler.tick = AsyncMock(side_effect=tick)

        scheduler.start()
        deadline = asyncio.get_running_loop().time() + 2.0
        while scheduler.tick.await_count < 3 and asyncio.get_running_loop().time() < deadline:
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert scheduler.tick.await_count >= 3
        assert not scheduler.get_status()["running"]

    @pytest.mark.asyncio
    async def test_disabled_without_queue(self, holdings_repo):
        scheduler = RefreshScheduler(holdings_repo, RefreshQueue(None))

        assert scheduler.start() is False
        await scheduler.stop()
