"""
Tests for fibcalc.workers.compute.ComputeWorker

The worker must survive every bad message and keep consuming.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from fibcalc.indexes import IndexPolicy
from fibcalc.stores.memory import InMemoryEventChannel, InMemoryResultCache
from fibcalc.workers.compute import ComputeWorker


@pytest.fixture
def cache() -> InMemoryResultCache:
    return InMemoryResultCache()


@pytest.fixture
def channel() -> InMemoryEventChannel:
    return InMemoryEventChannel()


@pytest.fixture
def worker(cache, channel) -> ComputeWorker:
    return ComputeWorker(cache=cache, channel=channel)


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_writes_result(self, worker, cache):
        await worker.handle_message("10")

        assert cache.values == {"10": "89"}
        assert worker.processed == 1

    @pytest.mark.asyncio
    async def test_overwrites_placeholder(self, worker, cache):
        cache.values["5"] = "Calculating..."

        await worker.handle_message("5")

        assert cache.values["5"] == "8"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", ["abc", "", "-1", "41", "1000"])
    async def test_discards_invalid_messages(self, worker, cache, message):
        await worker.handle_message(message)

        assert cache.values == {}
        assert worker.discarded == 1
        assert worker.processed == 0

    @pytest.mark.asyncio
    async def test_leading_integer_message_is_computed(self, worker, cache):
        await worker.handle_message("7xyz")
        assert cache.values == {"7": "21"}

    @pytest.mark.asyncio
    async def test_cache_failure_is_absorbed(self, worker, cache, monkeypatch):
        monkeypatch.setattr(cache, "set", AsyncMock(side_effect=ConnectionError("down")))

        await worker.handle_message("3")

        assert worker.failed == 1

    @pytest.mark.asyncio
    async def test_custom_range(self, cache, channel):
        worker = ComputeWorker(cache=cache, channel=channel, policy=IndexPolicy(max_index=50))

        await worker.handle_message("45")

        assert cache.values == {"45": "1836311903"}


class TestSubscription:
    @pytest.mark.asyncio
    async def test_processes_messages_in_order_after_bad_ones(self, worker, cache, channel):
        worker.attach()
        await channel.start()
        try:
            for message in ("abc", "3", "-4", "8"):
                await channel.publish("insert", message)
            await asyncio.wait_for(channel.drain(), timeout=2)
        finally:
            await channel.stop()

        assert cache.values == {"3": "3", "8": "34"}
        assert worker.discarded == 2
        assert worker.processed == 2

    @pytest.mark.asyncio
    async def test_messages_before_subscribe_are_dropped(self, worker, cache, channel):
        await channel.start()
        await channel.publish("insert", "5")
        worker.attach()
        await channel.publish("insert", "6")
        await asyncio.wait_for(channel.drain(), timeout=2)
        await channel.stop()

        assert cache.values == {"6": "13"}

    @pytest.mark.asyncio
    async def test_run_returns_when_channel_closes(self, worker, channel):
        task = asyncio.create_task(worker.run())
        await asyncio.sleep(0.05)
        await channel.stop()

        await asyncio.wait_for(task, timeout=2)
