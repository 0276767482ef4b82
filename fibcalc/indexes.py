"""
Fibcalc Engine - Index policy

Validation of client-submitted Fibonacci indexes. Checks run in a fixed
order and the first failure wins:

    1. absent / null / ""                  -> MissingIndexError
    2. no leading base-10 integer          -> MalformedIndexError
    3. integer < 0                         -> IndexTooSmallError
    4. integer > max_index                 -> IndexTooLargeError
    5. integer != leading decimal value    -> NonIntegerIndexError

Step 2 reads the longest leading integer, so "3.5" parses as 3 and is only
rejected by step 5, after the range checks. Step 5 reads the longest
leading decimal number and ignores what follows, so "12abc" is 12.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from .core.errors import (
    IndexTooLargeError,
    IndexTooSmallError,
    MalformedIndexError,
    MissingIndexError,
    NonIntegerIndexError,
)

DEFAULT_MAX_INDEX = 40

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_LEADING_FLOAT = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


@dataclass(frozen=True)
class IndexPolicy:
    """Accepted index range; the upper bound caps worst-case work."""

    max_index: int = DEFAULT_MAX_INDEX
    min_index: int = 0

    def contains(self, index: int) -> bool:
        return self.min_index <= index <= self.max_index

    def parse(self, raw: Any) -> int:
        """Validate a submitted value and return the accepted index."""
        return parse_index(raw, self)


def _as_text(raw: Any) -> str | None:
    # bool is an int subclass but is never a valid index
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float, str)):
        return str(raw)
    return None


def _numeric_value(raw: Any) -> int | float | None:
    """
    The unrounded numeric reading of the longest leading decimal prefix.

    Trailing text is ignored, so "12abc" reads as 12 and "0x10" as 0.
    """
    if isinstance(raw, (int, float)):
        return raw
    match = _LEADING_FLOAT.match(str(raw))
    if match is None:
        return None
    return float(match.group(1))


def parse_index(raw: Any, policy: IndexPolicy | None = None) -> int:
    """
    Apply the submission checks to `raw` (the JSON `index` field).

    Raises:
        IndexValidationError subclass describing the first failed check.
    """
    policy = policy or IndexPolicy()

    if raw is None or (isinstance(raw, str) and raw == ""):
        raise MissingIndexError()

    text = _as_text(raw)
    match = _LEADING_INT.match(text) if text is not None else None
    if match is None:
        raise MalformedIndexError()
    try:
        parsed = int(match.group(1))
    except ValueError:
        # past the interpreter's int-from-str digit limit
        raise MalformedIndexError() from None

    if parsed < policy.min_index:
        raise IndexTooSmallError()
    if parsed > policy.max_index:
        raise IndexTooLargeError(policy.max_index)

    if _numeric_value(raw) != parsed:
        raise NonIntegerIndexError()

    return parsed


def parse_message_index(message: str) -> int | None:
    """
    Leading-integer parse of a channel message; None when there is none.

    The worker applies its own range check and never raises on bad input.
    """
    match = _LEADING_INT.match(message)
    if match is None:
        return None
    try:
        return int(match.group(1))
    except ValueError:
        return None
