"""
Fibcalc Engine - Compute Worker

Single subscriber on the event channel. For each message:

    parse -> range check -> fib(index) -> cache[index] = str(value)

Lifecycle: Subscribe -> Receive -> Validate -> Compute -> Write

Every failure is logged and absorbed: a malformed or failing message never
ends the subscription, and messages are handled one at a time.
"""

from __future__ import annotations

import logging

from ..core.logging import LogContext, Timer
from ..indexes import IndexPolicy, parse_message_index
from ..stores.base import EventChannel, ResultCache

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "insert"


def fib(index: int) -> int:
    """
    Iterative Fibonacci with fib(0) == fib(1) == 1.

    This is shifted by one from the textbook sequence (fib(0) == 0);
    stored results depend on it, so it must stay as is.
    """
    if index < 2:
        return 1

    prev, current = 1, 1
    for _ in range(2, index + 1):
        prev, current = current, prev + current
    return current


class ComputeWorker:
    """Computes Fibonacci values for indexes received on the channel."""

    def __init__(
        self,
        *,
        cache: ResultCache,
        channel: EventChannel,
        policy: IndexPolicy | None = None,
        topic: str = DEFAULT_TOPIC,
    ) -> None:
        self.cache = cache
        self.channel = channel
        self.policy = policy or IndexPolicy()
        self.topic = topic

        self.processed = 0
        self.discarded = 0
        self.failed = 0

    def attach(self) -> None:
        """Register the message handler on the channel."""
        self.channel.subscribe(self.topic, self.handle_message)

    async def run(self) -> None:
        """
        Subscribe and block until the channel closes.

        Raises:
            ChannelDownError: The channel gave up reconnecting.
        """
        self.attach()
        await self.channel.start()
        logger.info(f"Worker is ready and listening on {self.topic!r}")
        await self.channel.wait_closed()

    async def handle_message(self, message: str) -> None:
        """Process one message; never raises."""
        try:
            index = parse_message_index(message)
            if index is None or not self.policy.contains(index):
                self.discarded += 1
                logger.error(f"Invalid message received: {message!r}")
                return

            with LogContext(index=index), Timer() as timer:
                logger.info(f"Calculating Fibonacci for index: {index}")
                value = fib(index)
                await self.cache.set(str(index), str(value))

            self.processed += 1
            logger.info(
                f"Successfully calculated fib({index}) = {value}",
                extra={"index": index, "value": value, "duration_ms": round(timer.elapsed_ms, 2)},
            )
        except Exception:
            self.failed += 1
            logger.error(f"Error processing message {message!r}", exc_info=True)
