"""
Tests for the Redis-backed stores without a Redis server:
  - reconnect backoff policy
  - RedisResultCache error translation
  - RedisEventChannel give-up, handler isolation and cleanup on failure
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from fibcalc.core.errors import ChannelDownError, StoreUnavailableError
from fibcalc.stores.cache import RedisResultCache
from fibcalc.stores.channel import RedisEventChannel
from fibcalc.stores.redis_client import LinearCappedBackoff, create_redis, reconnect_delay


class TestBackoff:
    @pytest.mark.parametrize(
        "attempt,delay",
        [(1, 0.1), (5, 0.5), (10, 1.0), (30, 3.0), (100, 3.0)],
    )
    def test_linear_then_capped(self, attempt, delay):
        assert reconnect_delay(attempt) == pytest.approx(delay)

    def test_custom_step_and_cap(self):
        backoff = LinearCappedBackoff(step=1.0, cap=2.5)
        assert backoff.compute(2) == 2.0
        assert backoff.compute(3) == 2.5

    def test_client_decodes_responses(self):
        client = create_redis("redis://localhost:6379/0")
        assert client.connection_pool.connection_kwargs["decode_responses"] is True


class TestResultCache:
    @pytest.mark.asyncio
    async def test_hash_round_trip_calls(self):
        client = AsyncMock()
        client.hgetall.return_value = {"5": "8"}
        cache = RedisResultCache(client, hash_key="values")

        await cache.set("5", "8")

        client.hset.assert_awaited_once_with("values", "5", "8")
        assert await cache.get_all() == {"5": "8"}
        client.hgetall.assert_awaited_once_with("values")

    @pytest.mark.asyncio
    async def test_write_failure_is_store_unavailable(self):
        client = AsyncMock()
        client.hset.side_effect = RedisConnectionError("refused")
        cache = RedisResultCache(client)

        with pytest.raises(StoreUnavailableError) as exc_info:
            await cache.set("1", "1")

        assert exc_info.value.status_code == 500
        assert isinstance(exc_info.value.__cause__, RedisConnectionError)

    @pytest.mark.asyncio
    async def test_connect_failure_is_store_unavailable(self):
        client = AsyncMock()
        client.ping.side_effect = RedisConnectionError("refused")

        with pytest.raises(StoreUnavailableError):
            await RedisResultCache(client).connect()

    @pytest.mark.asyncio
    async def test_ping_reports_false_on_error(self):
        client = AsyncMock()
        client.ping.side_effect = RedisConnectionError("refused")

        assert await RedisResultCache(client).ping() is False


class TestEventChannel:
    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, monkeypatch):
        channel = RedisEventChannel("redis://localhost:6399/0", max_reconnect_attempts=2)
        channel.subscribe("insert", AsyncMock())
        connect = AsyncMock(side_effect=RedisConnectionError("refused"))
        monkeypatch.setattr(channel, "_connect_subscriber", connect)
        monkeypatch.setattr("fibcalc.stores.channel.reconnect_delay", lambda attempt: 0)

        channel._started = True
        await channel._listen_loop()

        assert connect.await_count == 3
        with pytest.raises(ChannelDownError):
            await channel.wait_closed()

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_dispatch(self):
        channel = RedisEventChannel("redis://localhost:6399/0")
        failing = AsyncMock(side_effect=ValueError("bad"))
        ok = AsyncMock()
        channel.subscribe("insert", failing)
        channel.subscribe("insert", ok)

        await channel._dispatch("insert", "5")

        failing.assert_awaited_once_with("5")
        ok.assert_awaited_once_with("5")

    @pytest.mark.asyncio
    async def test_publish_failure_propagates(self, monkeypatch):
        channel = RedisEventChannel("redis://localhost:6399/0")
        publisher = AsyncMock()
        publisher.publish.side_effect = RedisConnectionError("refused")
        channel._pub = publisher

        with pytest.raises(RedisConnectionError):
            await channel.publish("insert", "5")

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self):
        channel = RedisEventChannel("redis://localhost:6399/0")
        await channel.stop()

    @pytest.mark.asyncio
    async def test_non_reconnectable_error_closes_channel(self, monkeypatch):
        channel = RedisEventChannel("redis://localhost:6399/0", max_reconnect_attempts=5)
        channel.subscribe("insert", AsyncMock())
        connect = AsyncMock(side_effect=ResponseError("NOPERM this user has no permissions"))
        monkeypatch.setattr(channel, "_connect_subscriber", connect)

        channel._started = True
        await channel._listen_loop()

        assert connect.await_count == 1
        with pytest.raises(ChannelDownError) as exc_info:
            await channel.wait_closed()
        assert isinstance(exc_info.value.__cause__, ResponseError)

    @pytest.mark.asyncio
    async def test_stop_finishes_cleanup_after_listener_error(self):
        channel = RedisEventChannel("redis://localhost:6399/0")
        publisher = AsyncMock()
        channel._pub = publisher
        channel._started = True

        async def failing_listener() -> None:
            raise ResponseError("NOPERM")

        channel._listen_task = asyncio.create_task(failing_listener())
        await asyncio.sleep(0)

        await channel.stop()

        publisher.aclose.assert_awaited_once()
        assert channel._pub is None
        await asyncio.wait_for(channel.wait_closed(), timeout=1)
