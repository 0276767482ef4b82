"""In-process store substitutes.

Used by the test suite and by STORE_BACKEND=memory for local runs without
Redis or Postgres. They honour the same contracts as the real stores:
the ledger rejects duplicate numbers, the cache is last-write-wins, and
the channel drops messages published while nobody is subscribed.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone

from .base import LedgerEntry, MessageHandler, Stores

logger = logging.getLogger(__name__)


class InMemoryResultCache:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}

    async def connect(self) -> None:
        return None

    async def get_all(self) -> dict[str, str]:
        return dict(self.values)

    async def set(self, key: str, value: str) -> None:
        self.values[key] = value

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryLedger:
    def __init__(self) -> None:
        self._entries: dict[int, LedgerEntry] = {}
        self._next_id = 1

    async def connect(self) -> None:
        return None

    async def ensure_schema(self) -> None:
        return None

    async def insert_if_absent(self, number: int) -> None:
        if number in self._entries:
            return
        self._entries[number] = LedgerEntry(
            id=self._next_id,
            number=number,
            created_at=datetime.now(timezone.utc),
        )
        self._next_id += 1

    async def select_all_ordered_by_number(self) -> list[LedgerEntry]:
        return sorted(self._entries.values(), key=lambda entry: entry.number)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryEventChannel:
    """
    Queue-backed channel with a single consumer task.

    Messages are queued only for topics that have a handler at publish
    time, mirroring Pub/Sub's at-most-once delivery.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[MessageHandler]] = defaultdict(list)
        self._queue: asyncio.Queue[tuple[str, str]] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._closed = asyncio.Event()
        self.published: list[tuple[str, str]] = []

    async def start(self) -> None:
        if self._task is None:
            self._closed.clear()
            self._task = asyncio.create_task(self._consume(), name="memory-channel")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._closed.set()

    async def publish(self, topic: str, message: str) -> None:
        self.published.append((topic, message))
        if self._handlers.get(topic):
            self._queue.put_nowait((topic, message))

    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        self._handlers[topic].append(handler)

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def drain(self) -> None:
        """Wait until every queued message has been handled."""
        await self._queue.join()

    async def _consume(self) -> None:
        while True:
            topic, message = await self._queue.get()
            try:
                for handler in list(self._handlers.get(topic, [])):
                    try:
                        await handler(message)
                    except Exception:
                        logger.error(f"Handler failed for {topic!r}", exc_info=True)
            finally:
                self._queue.task_done()


def memory_stores() -> Stores:
    """Fresh in-memory cache, ledger and channel."""
    return Stores(
        cache=InMemoryResultCache(),
        ledger=InMemoryLedger(),
        channel=InMemoryEventChannel(),
    )
