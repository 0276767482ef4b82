"""
Fibcalc Engine - Result Cache (Redis hash)

All results live in one Redis hash (FIB_RESULTS_KEY, default "values"):
field = index text, value = result text or the placeholder sentinel.
No expiry, no eviction.
"""

from __future__ import annotations

import logging
from contextlib import suppress

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class RedisResultCache:
    """ResultCache backed by a single Redis hash."""

    def __init__(self, client: Redis, hash_key: str = "values") -> None:
        self._r = client
        self.hash_key = hash_key

    async def connect(self) -> None:
        """Verify connectivity; raises StoreUnavailableError on failure."""
        try:
            await self._r.ping()
        except RedisError as exc:
            raise StoreUnavailableError("result cache", f"Redis unreachable: {exc}") from exc
        logger.info("Redis result cache connected")

    async def get_all(self) -> dict[str, str]:
        try:
            values = await self._r.hgetall(self.hash_key)
        except RedisError as exc:
            raise StoreUnavailableError(
                "result cache", "Failed to fetch current values from cache"
            ) from exc
        return dict(values or {})

    async def set(self, key: str, value: str) -> None:
        try:
            await self._r.hset(self.hash_key, key, value)
        except RedisError as exc:
            raise StoreUnavailableError("result cache", f"Failed to write {key!r} to cache") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._r.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        with suppress(RedisError):
            await self._r.aclose()
        logger.info("Redis result cache closed")
