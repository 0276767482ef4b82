"""
Fibcalc Engine - Redis client factory

Builds redis.asyncio clients with the bounded reconnect policy shared by
the result cache and the event channel:

    delay(attempt) = min(attempt * 0.1s, 3.0s), at most N attempts

Usage:
    from fibcalc.stores.redis_client import create_redis

    client = create_redis(settings.redis_url, max_attempts=10)
"""

from __future__ import annotations

from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import AbstractBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

RECONNECT_STEP_SECONDS = 0.1
RECONNECT_CAP_SECONDS = 3.0
DEFAULT_MAX_RECONNECT_ATTEMPTS = 10


class LinearCappedBackoff(AbstractBackoff):
    """Linear backoff: `step * failures`, capped at `cap` seconds."""

    def __init__(
        self,
        step: float = RECONNECT_STEP_SECONDS,
        cap: float = RECONNECT_CAP_SECONDS,
    ) -> None:
        self._step = step
        self._cap = cap

    def compute(self, failures: int) -> float:
        return min(failures * self._step, self._cap)


def reconnect_delay(attempt: int) -> float:
    """Delay before reconnect attempt number `attempt` (1-based)."""
    return LinearCappedBackoff().compute(attempt)


def create_redis(url: str, *, max_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS) -> Redis:
    """Create a decoded-responses client retrying transport errors `max_attempts` times."""
    return Redis.from_url(
        url,
        decode_responses=True,
        retry=Retry(LinearCappedBackoff(), max_attempts),
        retry_on_error=[RedisConnectionError, RedisTimeoutError],
        health_check_interval=15,
    )
