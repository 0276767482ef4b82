"""
Tests for fibcalc.worker.start_worker exit codes.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from fibcalc import worker as worker_module
from fibcalc.core.errors import ChannelDownError, StoreUnavailableError
from fibcalc.stores.memory import InMemoryEventChannel, InMemoryResultCache


@pytest.fixture
def memory_backends(monkeypatch):
    cache = InMemoryResultCache()
    channel = InMemoryEventChannel()
    monkeypatch.setattr(worker_module, "build_cache", lambda settings: cache)
    monkeypatch.setattr(worker_module, "build_channel", lambda settings: channel)
    return cache, channel


@pytest.mark.asyncio
async def test_unreachable_cache_exits_nonzero(memory_backends, monkeypatch):
    cache, channel = memory_backends
    monkeypatch.setattr(
        cache, "connect", AsyncMock(side_effect=StoreUnavailableError("result cache"))
    )

    assert await worker_module.start_worker() == worker_module.EXIT_FAILURE


@pytest.mark.asyncio
async def test_channel_down_exits_nonzero(memory_backends, monkeypatch):
    cache, channel = memory_backends
    monkeypatch.setattr(
        channel, "wait_closed", AsyncMock(side_effect=ChannelDownError("retry limit exceeded"))
    )

    assert await worker_module.start_worker() == worker_module.EXIT_FAILURE


@pytest.mark.asyncio
async def test_clean_exit_when_channel_closes(memory_backends, monkeypatch):
    cache, channel = memory_backends
    monkeypatch.setattr(channel, "wait_closed", AsyncMock(return_value=None))

    assert await worker_module.start_worker() == worker_module.EXIT_OK
