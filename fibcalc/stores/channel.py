"""
Fibcalc Engine - Event Channel (Redis Pub/Sub)

Carries the text of an accepted index from the gateway to the worker.

Delivery is at-most-once: Redis Pub/Sub keeps nothing for absent
subscribers, there are no acknowledgements and no replay.

Listener behaviour:
  - start()/stop() are idempotent
  - publish() may be called before start(); the client is created lazily
  - handlers are awaited inline, so one subscriber processes messages
    strictly one at a time in arrival order
  - on connection loss the subscriber reconnects with linear capped
    backoff; after `max_reconnect_attempts` consecutive failures the
    channel is marked down and wait_closed() raises ChannelDownError
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import suppress
from typing import Dict, List, Optional

from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..core.errors import ChannelDownError
from .base import MessageHandler
from .redis_client import DEFAULT_MAX_RECONNECT_ATTEMPTS, create_redis, reconnect_delay

logger = logging.getLogger(__name__)

_RECONNECTABLE = (RedisConnectionError, RedisTimeoutError, OSError)


class RedisEventChannel:
    """EventChannel over Redis Pub/Sub."""

    def __init__(
        self,
        url: str,
        *,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        publish_timeout: float = 10.0,
        poll_timeout: float = 1.0,
    ) -> None:
        self._url = url
        self.max_reconnect_attempts = max_reconnect_attempts
        self._publish_timeout = publish_timeout
        self._poll_timeout = poll_timeout

        self._pub: Optional[Redis] = None
        self._sub: Optional[Redis] = None
        self._ps: Optional[PubSub] = None

        self._started = False
        self._listen_task: Optional[asyncio.Task[None]] = None
        self._closed = asyncio.Event()
        self._failure: Optional[ChannelDownError] = None

        self._handlers: Dict[str, List[MessageHandler]] = defaultdict(list)

    # ------------------------------------------------------------------ #
    # lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        """
        Connect the publisher and, when handlers exist, the subscriber.

        Raises:
            RedisError: If the initial connection fails (fatal at startup).
        """
        if self._started:
            return
        if self._pub is None:
            self._pub = create_redis(self._url, max_attempts=self.max_reconnect_attempts)
        await self._pub.ping()

        self._started = True
        self._closed.clear()
        self._failure = None

        if self._handlers:
            await self._connect_subscriber()
            self._start_listener()
        logger.info("Redis event channel started", extra={"channel": ",".join(self._handlers)})

    async def stop(self) -> None:
        if not self._started and self._pub is None:
            return
        self._started = False

        task, self._listen_task = self._listen_task, None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.error(f"Listener ended with {type(exc).__name__}: {exc}")

        await self._drop_subscriber()
        if self._pub is not None:
            with suppress(RedisError):
                await self._pub.aclose()
            self._pub = None

        self._closed.set()
        logger.info("Redis event channel stopped")

    async def wait_closed(self) -> None:
        await self._closed.wait()
        if self._failure is not None:
            raise self._failure

    # ------------------------------------------------------------------ #
    # publish / subscribe
    # ------------------------------------------------------------------ #

    async def publish(self, topic: str, message: str) -> None:
        """
        Publish one message.

        Raises:
            RedisError / asyncio.TimeoutError: The caller decides whether
            to surface the failure.
        """
        if self._pub is None:
            self._pub = create_redis(self._url, max_attempts=self.max_reconnect_attempts)
        receivers = await asyncio.wait_for(
            self._pub.publish(topic, message), timeout=self._publish_timeout
        )
        logger.debug(f"Published {message!r} on {topic!r} ({receivers} receivers)")

    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        first_for_topic = topic not in self._handlers
        self._handlers[topic].append(handler)
        if not self._started:
            return
        if self._ps is not None and first_for_topic:
            asyncio.create_task(self._safe_subscribe(topic))
        self._start_listener()

    async def _safe_subscribe(self, topic: str) -> None:
        try:
            if self._ps is not None:
                await self._ps.subscribe(topic)
        except RedisError:
            logger.error(f"Subscribe to {topic!r} failed", extra={"channel": topic}, exc_info=True)

    # ------------------------------------------------------------------ #
    # subscriber connection
    # ------------------------------------------------------------------ #

    async def _connect_subscriber(self) -> None:
        # Reconnects are handled by the listen loop, so no command retries here
        self._sub = create_redis(self._url, max_attempts=0)
        self._ps = self._sub.pubsub(ignore_subscribe_messages=True)
        await self._ps.subscribe(*self._handlers.keys())
        logger.info(
            "Redis subscriber connected",
            extra={"channel": ",".join(self._handlers)},
        )

    async def _drop_subscriber(self) -> None:
        ps, self._ps = self._ps, None
        sub, self._sub = self._sub, None
        if ps is not None:
            with suppress(RedisError, OSError):
                await ps.aclose()
        if sub is not None:
            with suppress(RedisError, OSError):
                await sub.aclose()

    def _start_listener(self) -> None:
        if self._listen_task is None or self._listen_task.done():
            self._listen_task = asyncio.create_task(self._listen_loop(), name="fib-channel-listen")

    # ------------------------------------------------------------------ #
    # listen loop
    # ------------------------------------------------------------------ #

    async def _listen_loop(self) -> None:
        attempts = 0
        try:
            while self._started:
                try:
                    if self._ps is None:
                        await self._connect_subscriber()
                        if attempts:
                            logger.info(f"Redis subscriber reconnected after {attempts} attempts")
                        attempts = 0
                    msg = await self._ps.get_message(
                        ignore_subscribe_messages=True,
                        timeout=self._poll_timeout,
                    )
                except _RECONNECTABLE as exc:
                    await self._drop_subscriber()
                    attempts += 1
                    if attempts > self.max_reconnect_attempts:
                        logger.error("Redis max retry attempts reached")
                        self._started = False
                        self._failure = ChannelDownError(
                            f"Redis retry limit exceeded after {self.max_reconnect_attempts} attempts"
                        )
                        break
                    delay = reconnect_delay(attempts)
                    logger.warning(
                        f"Redis subscriber error ({type(exc).__name__}: {exc}); "
                        f"reconnecting in {delay:.1f}s",
                        extra={"attempt": attempts},
                    )
                    await asyncio.sleep(delay)
                    continue

                if not msg or msg.get("type") != "message":
                    continue

                await self._dispatch(str(msg.get("channel", "")), str(msg.get("data", "")))
        except Exception as exc:
            # ResponseError/NOPERM are not retried; wait_closed() raises instead
            logger.error(f"Redis subscriber failed: {type(exc).__name__}: {exc}", exc_info=True)
            self._started = False
            self._failure = ChannelDownError(f"Redis subscriber failed: {exc}")
            self._failure.__cause__ = exc
        finally:
            self._closed.set()

    async def _dispatch(self, topic: str, data: str) -> None:
        for handler in list(self._handlers.get(topic, [])):
            try:
                await handler(data)
            except Exception:
                logger.error(f"Handler failed for {topic!r}", extra={"channel": topic}, exc_info=True)
