"""
black_scholes.py - Black-Scholes reference pricing

Zero-rate Black-Scholes formulas with time in calendar days (365 days/year);
the assets these options are written on trade around the clock.

Provides:
- Option prices (call, put)

Used to quote a reference premium for an option in the ledger; the ledger
itself never prices anything at settlement time.
"""

import math
import numpy as np
from typing import Union
from scipy.special import erf as scipy_erf
from decimal import Decimal, ROUND_HALF_EVEN


# Type alias for scalar or array inputs
Numeric = Union[float, np.ndarray]

# Constants
DAYS_PER_YEAR = 365.0
SQRT_2 = math.sqrt(2.0)
_QUANTUM = Decimal("0.00000001")


# ============================================================================
# NORMAL DISTRIBUTION FUNCTIONS
# ============================================================================

def normal_cdf(x: Numeric) -> Numeric:
    """Standard normal cumulative distribution function."""
    return 0.5 * (1.0 + scipy_erf(np.asarray(x) / SQRT_2))


# ============================================================================
# D1 AND D2
# ============================================================================

def _validate_bs_inputs(s: Numeric, k: Numeric, t_in_days: Numeric, v: Numeric) -> None:
    """Validate inputs to prevent division by zero and NaN/Inf."""
    s_arr = np.asarray(s)
    k_arr = np.asarray(k)
    t_arr = np.asarray(t_in_days)
    v_arr = np.asarray(v)
    if not np.all(np.isfinite(s_arr)) or np.any(s_arr <= 0):
        raise ValueError("spot price must be positive and finite")
    if not np.all(np.isfinite(k_arr)) or np.any(k_arr <= 0):
        raise ValueError("strike must be positive and finite")
    if not np.all(np.isfinite(t_arr)) or np.any(t_arr <= 0):
        raise ValueError("t_in_days must be positive and finite")
    if not np.all(np.isfinite(v_arr)) or np.any(v_arr <= 0):
        raise ValueError("volatility must be positive and finite")


def d1(s: Numeric, k: Numeric, t_in_days: Numeric, v: Numeric) -> Numeric:
    """
    d1 = (ln(S/K) + 0.5*σ²*t) / (σ*√t)

    Raises:
        ValueError: If any input is non-positive or not finite
    """
    _validate_bs_inputs(s, k, t_in_days, v)
    t = np.asarray(t_in_days) / DAYS_PER_YEAR
    return (np.log(np.asarray(s) / np.asarray(k)) + 0.5 * v * v * t) / (v * np.sqrt(t))


def d2(s: Numeric, k: Numeric, t_in_days: Numeric, v: Numeric) -> Numeric:
    """d2 = d1 - σ*√t"""
    _validate_bs_inputs(s, k, t_in_days, v)
    t = np.asarray(t_in_days) / DAYS_PER_YEAR
    return d1(s, k, t_in_days, v) - v * np.sqrt(t)


def _to_decimal(x: Numeric) -> Decimal:
    return Decimal(str(float(x))).quantize(_QUANTUM, rounding=ROUND_HALF_EVEN)


# ============================================================================
# OPTION PRICES
# ============================================================================

def _call_float(s: Numeric, k: Numeric, t_in_days: Numeric, v: Numeric) -> Numeric:
    """C = S*N(d1) - K*N(d2)"""
    return s * normal_cdf(d1(s, k, t_in_days, v)) - k * normal_cdf(d2(s, k, t_in_days, v))


def call(s: Decimal, k: Decimal, t_in_days: Decimal, v: Decimal) -> Decimal:
    """Black-Scholes call price with Decimal interface."""
    return _to_decimal(_call_float(float(s), float(k), float(t_in_days), float(v)))


def _put_float(s: Numeric, k: Numeric, t_in_days: Numeric, v: Numeric) -> Numeric:
    """P = K*N(-d2) - S*N(-d1)"""
    return k * normal_cdf(-d2(s, k, t_in_days, v)) - s * normal_cdf(-d1(s, k, t_in_days, v))


def put(s: Decimal, k: Decimal, t_in_days: Decimal, v: Decimal) -> Decimal:
    """Black-Scholes put price with Decimal interface."""
    return _to_decimal(_put_float(float(s), float(k), float(t_in_days), float(v)))
