"""
Strike Value Conformance Tests

INVARIANT: The strike value is the exact truncated quote amount.

    strike_value(q, p, op, ud, qd) = floor(q * p * 10^qd / (10^op * 10^ud))

for every quantity q, strike price p and precision combination, with no
intermediate rounding.
"""

import pytest
from hypothesis import given, settings, assume
from hypothesis import strategies as st
from decimal import Decimal

from optionledger import compute_strike_value


quantities = st.integers(min_value=1, max_value=10**36)
prices = st.integers(min_value=1, max_value=10**24)
precisions = st.integers(min_value=0, max_value=18)


def exact(q, p, op, ud, qd):
    return (q * p * 10**qd) // (10**op * 10**ud)


class TestStrikeValueProperties:
    """Property-based strike value tests."""

    @given(quantities, prices, precisions, precisions, precisions)
    @settings(max_examples=300)
    def test_matches_integer_floor(self, q, p, op, ud, qd):
        """
        PROPERTY: Decimal computation equals exact integer floor division.
        """
        assert compute_strike_value(q, p, op, ud, qd) == Decimal(exact(q, p, op, ud, qd))

    @given(quantities, quantities, prices, precisions, precisions, precisions)
    @settings(max_examples=200)
    def test_monotone_in_quantity(self, q1, q2, p, op, ud, qd):
        """
        PROPERTY: Covering more underlying never lowers the strike value.
        """
        assume(q1 <= q2)
        assert compute_strike_value(q1, p, op, ud, qd) <= compute_strike_value(q2, p, op, ud, qd)

    @given(quantities, prices, precisions, precisions)
    @settings(max_examples=200)
    def test_same_decimals_cancel(self, q, p, op, d):
        """
        PROPERTY: With equal token decimals the value is q * p / 10^op.
        """
        assert compute_strike_value(q, p, op, d, d) == Decimal((q * p) // 10**op)

    @given(st.integers(min_value=1, max_value=10**6), prices, precisions)
    @settings(max_examples=200)
    def test_whole_units_exact(self, whole, p, op):
        """
        PROPERTY: Whole underlying units at a whole-unit price never truncate.
        """
        q = whole * 10**18
        price = p * 10**op
        assert compute_strike_value(q, price, op, 18, 6) == Decimal(whole * p * 10**6)


class TestStrikeValueExamples:

    def test_documented_example(self):
        assert compute_strike_value(10**16, 1500 * 10**8, 8, 18, 18) == Decimal(15 * 10**18)

    def test_usdc_quote(self):
        assert compute_strike_value(5 * 10**17, 3000 * 10**8, 8, 18, 6) == Decimal(1500 * 10**6)

    def test_wbtc_underlying(self):
        # 0.1 WBTC (8 decimals) at 60000 USDC
        assert compute_strike_value(10**7, 60000 * 10**8, 8, 8, 6) == Decimal(6000 * 10**6)

    def test_beyond_decimal_context_precision(self):
        # product has more significant digits than the 50-digit context
        q = 123456789012345678901234567890123
        p = 15001234567890123456789
        value = compute_strike_value(q, p, 0, 18, 18)
        assert value == Decimal(q * p)
        assert int(value) == q * p

    def test_large_values_print_as_plain_integers(self):
        value = compute_strike_value(10**36, 10**24, 8, 6, 18)
        assert 'E' not in str(value)
        assert str(value) == str(10**64)
