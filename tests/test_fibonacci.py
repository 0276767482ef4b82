"""
Tests for fibcalc.workers.compute.fib

The sequence is shifted by one: fib(0) == fib(1) == 1.
"""

from __future__ import annotations

import pytest

from fibcalc.workers.compute import fib


@pytest.mark.parametrize(
    "index,expected",
    [
        (0, 1),
        (1, 1),
        (2, 2),
        (3, 3),
        (5, 8),
        (10, 89),
        (20, 10946),
        (40, 165580141),
    ],
)
def test_known_values(index: int, expected: int):
    assert fib(index) == expected


def test_recurrence_holds_across_accepted_range():
    values = [fib(i) for i in range(41)]
    for n in range(2, 41):
        assert values[n] == values[n - 1] + values[n - 2]


def test_result_rendered_as_base10_text():
    assert str(fib(40)) == "165580141"
