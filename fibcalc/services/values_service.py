"""
Fibcalc Engine - Values Service

Business logic behind the /values endpoints.

Submission performs three side effects, in this order, with no rollback:
    1. placeholder -> Result Cache   (a client polling right away sees it)
    2. publish     -> Event Channel  (failure is logged, not surfaced)
    3. insert      -> Durable Ledger (duplicate is a no-op)

Duplicate submissions for one index may publish and compute twice; the
computation is pure, so that is harmless.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..core.logging import LogContext
from ..indexes import IndexPolicy
from ..stores.base import EventChannel, Ledger, LedgerEntry, ResultCache

logger = logging.getLogger(__name__)

DEFAULT_PLACEHOLDER = "Calculating..."
DEFAULT_TOPIC = "insert"


@dataclass(frozen=True)
class Submission:
    """Acknowledgement returned for an accepted index."""

    index: int
    published: bool


class ValuesService:
    """Gateway operations over explicitly injected stores."""

    def __init__(
        self,
        *,
        cache: ResultCache,
        ledger: Ledger,
        channel: EventChannel,
        policy: IndexPolicy | None = None,
        placeholder: str = DEFAULT_PLACEHOLDER,
        topic: str = DEFAULT_TOPIC,
    ) -> None:
        self.cache = cache
        self.ledger = ledger
        self.channel = channel
        self.policy = policy or IndexPolicy()
        self.placeholder = placeholder
        self.topic = topic

    async def list_seen(self) -> list[LedgerEntry]:
        """All ledger entries, ascending by number."""
        return await self.ledger.select_all_ordered_by_number()

    async def list_current(self) -> dict[str, str]:
        """Full result cache; never None."""
        return await self.cache.get_all() or {}

    async def submit(self, raw_index: Any) -> Submission:
        """
        Validate `raw_index` and start the computation.

        Raises:
            IndexValidationError: Before any store is touched.
            StoreUnavailableError: Cache or ledger write failed.
        """
        index = self.policy.parse(raw_index)
        key = str(index)

        with LogContext(index=index):
            await self.cache.set(key, self.placeholder)

            published = True
            try:
                await self.channel.publish(self.topic, key)
            except Exception:
                published = False
                logger.error(
                    f"Publish of index {index} failed; result will stay pending",
                    extra={"index": index, "channel": self.topic},
                    exc_info=True,
                )

            await self.ledger.insert_if_absent(index)

        logger.info(f"Accepted index {index}", extra={"index": index})
        return Submission(index=index, published=published)
