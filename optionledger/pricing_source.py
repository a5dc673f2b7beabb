"""
pricing_source.py - Price oracles for option creation

An oracle reports the price of one whole unit of an asset in the quote
currency, as an integer scaled by 10**precision (Chainlink style: a price of
1500.00 at precision 8 is reported as 150000000000).

Classes:
- PriceOracle: Protocol defining the oracle interface
- StaticOracle: Fixed price, settable by its owner
- TimeSeriesOracle: Price history read against a ledger clock

Options query their oracle once, at creation, for its precision (and record
the spot price seen at that moment). There is no live repricing.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple, Protocol, runtime_checkable
from bisect import bisect_right

from .core import LedgerView, to_amount


DEFAULT_ORACLE_PRECISION = 8


def _validate_precision(precision: int) -> int:
    if not isinstance(precision, int) or isinstance(precision, bool) or precision < 0:
        raise ValueError(f"precision must be a non-negative int, got {precision!r}")
    return precision


def _validate_price(price) -> Decimal:
    price = to_amount(price, "price")
    if price == 0:
        raise ValueError("price must be positive")
    return price


@runtime_checkable
class PriceOracle(Protocol):
    """
    Protocol for price oracles.

    latest_price() returns (price, precision): the price of one whole unit
    of the asset in the quote currency, scaled by 10**precision.
    """

    def latest_price(self) -> Tuple[Decimal, int]:
        """Return the current price and the precision it is expressed in."""
        ...


class StaticOracle:
    """
    Oracle with a single, manually updated price.

    The precision is fixed at construction; only the price moves.
    """

    def __init__(self, price, precision: int = DEFAULT_ORACLE_PRECISION):
        """
        Args:
            price: Price scaled by 10**precision (int or Decimal)
            precision: Number of decimals in the reported price
        """
        self.precision = _validate_precision(precision)
        self.price = _validate_price(price)

    def latest_price(self) -> Tuple[Decimal, int]:
        return self.price, self.precision

    def update_price(self, price) -> None:
        """Set a new price (same precision)."""
        self.price = _validate_price(price)

    def __repr__(self):
        return f"StaticOracle(price={self.price}, precision={self.precision})"


class TimeSeriesOracle:
    """
    Oracle backed by a price history, read at the ledger's current time.

    Returns the most recent observation at or before view.current_time.

    Examples:
        oracle = TimeSeriesOracle(ledger, precision=8)
        oracle.add_price(datetime(2025, 1, 15), 1500 * 10**8)

        oracle = TimeSeriesOracle(ledger, [(t0, p0), (t1, p1)], precision=8)
    """

    def __init__(
        self,
        clock: LedgerView,
        price_path: Optional[List[Tuple[datetime, Decimal]]] = None,
        precision: int = DEFAULT_ORACLE_PRECISION,
    ):
        """
        Args:
            clock: Ledger (or any LedgerView) whose current_time selects the price
            price_path: Optional list of (timestamp, price) observations
            precision: Number of decimals in every reported price
        """
        self.clock = clock
        self.precision = _validate_precision(precision)
        self.price_history: List[Tuple[datetime, Decimal]] = sorted(
            ((ts, _validate_price(p)) for ts, p in (price_path or [])),
            key=lambda x: x[0],
        )

    def add_price(self, timestamp: datetime, price) -> None:
        """Record a price observation, keeping the history sorted by time."""
        self.price_history.append((timestamp, _validate_price(price)))
        self.price_history.sort(key=lambda x: x[0])

    def get_price(self, timestamp: datetime) -> Optional[Decimal]:
        """
        Get price at or before the specified timestamp.

        Returns None if no observation exists at or before the timestamp.
        Uses binary search for O(log n) lookup.
        """
        timestamps = [ts for ts, _ in self.price_history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            return None
        return self.price_history[idx - 1][1]

    def latest_price(self) -> Tuple[Decimal, int]:
        """
        Price at the clock's current time.

        Raises:
            LookupError: If no observation exists yet
        """
        price = self.get_price(self.clock.current_time)
        if price is None:
            raise LookupError(f"No price observed at or before {self.clock.current_time}")
        return price, self.precision

    def __repr__(self):
        return f"TimeSeriesOracle({len(self.price_history)} observations, precision={self.precision})"
