"""
Tests for fibcalc.indexes

Submitted indexes are checked in a fixed order and the first failing
check decides the error. The worker uses a separate, non-raising parse.
"""

from __future__ import annotations

import pytest

from fibcalc.core.errors import (
    IndexTooLargeError,
    IndexTooSmallError,
    IndexValidationError,
    MalformedIndexError,
    MissingIndexError,
    NonIntegerIndexError,
)
from fibcalc.indexes import IndexPolicy, parse_index, parse_message_index


class TestAcceptedIndexes:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            (0, 0),
            (5, 5),
            (40, 40),
            ("7", 7),
            (" 7 ", 7),
            ("+3", 3),
            (5.0, 5),
            ("5.0", 5),
            ("12abc", 12),
            ("7px", 7),
            ("0x10", 0),
            ("1_000", 1),
            ("8.0 apples", 8),
        ],
    )
    def test_accepts(self, raw, expected):
        assert parse_index(raw) == expected

    def test_custom_upper_bound(self):
        policy = IndexPolicy(max_index=90)
        assert policy.parse(90) == 90
        with pytest.raises(IndexTooLargeError) as exc_info:
            policy.parse(91)
        assert exc_info.value.message == "Index too high (maximum: 90)"


class TestRejectedIndexes:
    @pytest.mark.parametrize("raw", [None, ""])
    def test_missing(self, raw):
        with pytest.raises(MissingIndexError):
            parse_index(raw)

    @pytest.mark.parametrize("raw", ["abc", "   ", ".5", [], {}, True, False, "x12"])
    def test_malformed(self, raw):
        with pytest.raises(MalformedIndexError):
            parse_index(raw)

    @pytest.mark.parametrize("raw", [-1, "-1", -100, "-3.5"])
    def test_too_small(self, raw):
        with pytest.raises(IndexTooSmallError):
            parse_index(raw)

    @pytest.mark.parametrize("raw", [41, "41", 1000, "99999999999999999999"])
    def test_too_large(self, raw):
        with pytest.raises(IndexTooLargeError) as exc_info:
            parse_index(raw)
        assert exc_info.value.status_code == 422

    @pytest.mark.parametrize("raw", [3.5, "3.5", "1e3", "2.5abc", " 4.01"])
    def test_not_integer(self, raw):
        with pytest.raises(NonIntegerIndexError):
            parse_index(raw)

    def test_range_checked_before_integrality(self):
        # 41.5 reads as 41 first, so the range check fires
        with pytest.raises(IndexTooLargeError):
            parse_index(41.5)

    def test_too_small_and_too_large_are_distinguishable(self):
        with pytest.raises(IndexValidationError) as small:
            parse_index(-1)
        with pytest.raises(IndexValidationError) as large:
            parse_index(41)

        assert small.value.error_code == "index_too_small"
        assert small.value.status_code == 400
        assert large.value.error_code == "index_too_large"
        assert large.value.status_code == 422


class TestMessageParse:
    @pytest.mark.parametrize(
        "message,expected",
        [("5", 5), ("40", 40), ("-1", -1), ("12abc", 12), (" 9", 9)],
    )
    def test_leading_integer(self, message, expected):
        assert parse_message_index(message) == expected

    @pytest.mark.parametrize("message", ["", "abc", "-", "."])
    def test_no_integer(self, message):
        assert parse_message_index(message) is None

    def test_policy_contains(self):
        policy = IndexPolicy()
        assert policy.contains(0)
        assert policy.contains(40)
        assert not policy.contains(-1)
        assert not policy.contains(41)
