"""Store contracts shared by the gateway and the compute worker.

Defines the LedgerEntry dataclass and the ResultCache, Ledger and
EventChannel protocols. Redis/Postgres clients and the in-memory
substitutes both implement them, so the gateway and worker never
depend on a concrete backend.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Protocol, runtime_checkable

# Channel handlers receive the raw message text
MessageHandler = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class LedgerEntry:
    """One distinct index ever requested.

    Attributes:
        id: Surrogate key assigned by the store.
        number: The requested index (unique across entries).
        created_at: When the index was first recorded.
    """

    id: int
    number: int
    created_at: datetime


@runtime_checkable
class ResultCache(Protocol):
    """Key/value store of computed results (index text -> value text)."""

    async def connect(self) -> None:
        ...

    async def get_all(self) -> dict[str, str]:
        """Return every entry; an empty cache yields an empty dict."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Create or overwrite one entry."""
        ...

    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class Ledger(Protocol):
    """Ordered, duplicate-rejecting record of requested indexes."""

    async def connect(self) -> None:
        ...

    async def ensure_schema(self) -> None:
        ...

    async def insert_if_absent(self, number: int) -> None:
        """Record `number`; a duplicate is silently ignored."""
        ...

    async def select_all_ordered_by_number(self) -> list[LedgerEntry]:
        """Every entry, sorted ascending by number."""
        ...

    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class EventChannel(Protocol):
    """At-most-once publish/subscribe hand-off.

    Messages published while nobody is subscribed are lost.
    """

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...

    async def publish(self, topic: str, message: str) -> None:
        ...

    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        """Register a coroutine handler; handlers run one message at a time."""
        ...

    async def wait_closed(self) -> None:
        """Block until the channel stops or gives up reconnecting.

        Raises:
            ChannelDownError: If the reconnect budget was exhausted.
        """
        ...


@dataclass
class Stores:
    """The three collaborators injected into the gateway."""

    cache: ResultCache
    ledger: Ledger
    channel: EventChannel

    async def close(self) -> None:
        """Release channel, cache and ledger connections, in that order."""
        await self.channel.stop()
        await self.cache.close()
        await self.ledger.close()
