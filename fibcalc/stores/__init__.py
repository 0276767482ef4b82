"""
Fibcalc Engine - Stores

Result Cache, Durable Ledger and Event Channel, behind the protocols in
fibcalc.stores.base. Use build_stores() to wire the configured backend.
"""

from __future__ import annotations

from ..core.config import Settings
from .base import EventChannel, Ledger, LedgerEntry, MessageHandler, ResultCache, Stores
from .cache import RedisResultCache
from .channel import RedisEventChannel
from .ledger import PostgresLedger
from .memory import InMemoryEventChannel, InMemoryLedger, InMemoryResultCache, memory_stores
from .redis_client import create_redis


def build_stores(settings: Settings) -> Stores:
    """Build (unconnected) stores for STORE_BACKEND."""
    if settings.STORE_BACKEND == "memory":
        return memory_stores()

    return Stores(
        cache=build_cache(settings),
        ledger=PostgresLedger(
            settings.database_url,
            min_size=settings.PG_POOL_MIN_SIZE,
            max_size=settings.PG_POOL_MAX_SIZE,
            max_idle=settings.PG_POOL_MAX_IDLE_SECONDS,
            connect_timeout=settings.PG_CONNECT_TIMEOUT_SECONDS,
        ),
        channel=build_channel(settings),
    )


def build_cache(settings: Settings) -> RedisResultCache:
    client = create_redis(settings.redis_url, max_attempts=settings.REDIS_MAX_RECONNECT_ATTEMPTS)
    return RedisResultCache(client, hash_key=settings.FIB_RESULTS_KEY)


def build_channel(settings: Settings) -> RedisEventChannel:
    return RedisEventChannel(
        settings.redis_url,
        max_reconnect_attempts=settings.REDIS_MAX_RECONNECT_ATTEMPTS,
    )


async def open_stores(stores: Stores) -> None:
    """
    Connect cache and channel, then ledger and its schema.

    Any failure propagates: a gateway that cannot reach its stores at
    startup must not serve traffic.
    """
    await stores.cache.connect()
    await stores.channel.start()
    await stores.ledger.connect()
    await stores.ledger.ensure_schema()


__all__ = [
    "EventChannel",
    "InMemoryEventChannel",
    "InMemoryLedger",
    "InMemoryResultCache",
    "Ledger",
    "LedgerEntry",
    "MessageHandler",
    "PostgresLedger",
    "RedisEventChannel",
    "RedisResultCache",
    "ResultCache",
    "Stores",
    "build_cache",
    "build_channel",
    "build_stores",
    "memory_stores",
    "open_stores",
]
