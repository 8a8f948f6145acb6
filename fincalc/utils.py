"""General utilities for fincalc

Contents
--------
- Validation helpers (finite checks raising DomainError)
- Decimal helpers (money context, conversion, cent quantization)
- Rate conversions (nominal monthly, effective annual)
- Array helpers (ensure_1d)
- Finance helpers (drawdown, amortization factor, annuity factor)
"""

from __future__ import annotations

import math
from decimal import Decimal, Context, ROUND_HALF_EVEN, ROUND_HALF_UP, InvalidOperation, DivisionByZero, Overflow
from functools import lru_cache
from typing import Sequence, Union

import numpy as np
import pandas as pd

from .constants import MONTHS_PER_YEAR
from .exceptions import DomainError

__all__ = [
    # Validation
    "ensure_finite",
    # Decimal
    "MONEY_CONTEXT",
    "CENTS",
    "to_decimal",
    "quantize_money",
    "check_finite_decimal",
    # Rates
    "nominal_monthly_rate",
    "effective_annual_rate",
    # Arrays
    "ensure_1d",
    # Finance
    "drawdown",
    "annuity_factor",
    "amortization_factor",
]

Number = Union[int, float, Decimal, str]

# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def ensure_finite(name: str, value: Number) -> float:
    """Return *value* as float, raising DomainError on NaN, Infinity or junk."""
    try:
        x = float(value)
    except (TypeError, ValueError):
        raise DomainError(f"{name} must be a number (got {value!r}).", field=name) from None
    if not math.isfinite(x):
        raise DomainError(f"{name} must be finite (got {value!r}).", field=name)
    return x


# ---------------------------------------------------------------------------
# Decimal helpers
# ---------------------------------------------------------------------------

MONEY_CONTEXT = Context(
    prec=34,
    rounding=ROUND_HALF_EVEN,
    Emin=-999_999,
    Emax=999_999,
    traps=[InvalidOperation, DivisionByZero, Overflow],
)
"""Decimal context for all monetary arithmetic (IEEE decimal128 precision)."""

CENTS = Decimal("0.01")


def to_decimal(value: Number, *, name: str = "value") -> Decimal:
    """Convert *value* to Decimal through its shortest repr.

    Floats go through ``str`` so that 0.07 becomes Decimal("0.07") rather
    than its binary expansion. NaN and infinities raise DomainError.
    """
    if isinstance(value, Decimal):
        d = value
    else:
        ensure_finite(name, value)
        d = Decimal(str(value))
    if not d.is_finite():
        raise DomainError(f"{name} must be finite (got {value!r}).", field=name)
    return d


def quantize_money(value: Decimal) -> Decimal:
    """Round a monetary Decimal to cents (ROUND_HALF_UP)."""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def check_finite_decimal(name: str, value: Decimal) -> Decimal:
    """Raise DomainError if a computed Decimal is NaN or infinite."""
    if not value.is_finite():
        raise DomainError(f"{name} evaluated to a non-finite value ({value}).", field=name)
    return value


# ---------------------------------------------------------------------------
# Rate conversions
# ---------------------------------------------------------------------------

def nominal_monthly_rate(annual_rate: Decimal) -> Decimal:
    """Nominal monthly rate: annual_rate / 12."""
    return MONEY_CONTEXT.divide(annual_rate, Decimal(MONTHS_PER_YEAR))


def effective_annual_rate(annual_rate: Decimal, periods_per_year: int = MONTHS_PER_YEAR) -> Decimal:
    """Effective annual rate of a nominal rate compounded *periods_per_year* times.

    Uses: (1 + r/n) ** n - 1.
    """
    per_period = MONEY_CONTEXT.divide(annual_rate, Decimal(periods_per_year))
    growth = MONEY_CONTEXT.power(MONEY_CONTEXT.add(Decimal(1), per_period), periods_per_year)
    return MONEY_CONTEXT.subtract(growth, Decimal(1))


# ---------------------------------------------------------------------------
# Array helpers
# ---------------------------------------------------------------------------
ArrayLike = Sequence[float] | np.ndarray | pd.Series


def ensure_1d(a: ArrayLike, *, name: str = "array") -> np.ndarray:
    """Convert input to a 1-D float NumPy array with helpful error messages."""
    arr = np.asarray(a, dtype=float)
    if arr.ndim != 1:
        raise DomainError(f"{name} must be 1-D, got shape {arr.shape}.", field=name)
    if not np.isfinite(arr).all():
        raise DomainError(f"{name} must contain only finite values.", field=name)
    return arr


# ---------------------------------------------------------------------------
# Finance helpers
# ---------------------------------------------------------------------------

def drawdown(series: pd.Series) -> pd.Series:
    """Return drawdown series: (W - cummax(W)) / cummax(W).

    Returns zeros for non-positive running maxima to avoid division by zero.
    """
    if series.empty:
        return series.copy()
    s = series.astype(float)
    running_max = s.cummax()
    with np.errstate(divide="ignore", invalid="ignore"):
        dd = (s - running_max) / running_max
        dd[running_max <= 0] = 0.0
    dd.name = getattr(series, "name", None) or "drawdown"
    return dd


def annuity_factor(monthly_rate: Decimal, months: int) -> Decimal:
    """Future-value factor of an ordinary annuity.

    Formula:
        ((1 + r)^n - 1) / r      (n when r == 0)
    """
    if months <= 0:
        return Decimal(0)
    if monthly_rate == 0:
        return Decimal(months)
    growth = MONEY_CONTEXT.power(MONEY_CONTEXT.add(Decimal(1), monthly_rate), months)
    return MONEY_CONTEXT.divide(MONEY_CONTEXT.subtract(growth, Decimal(1)), monthly_rate)


@lru_cache(maxsize=10_000)
def amortization_factor(rate: float, n_periods: int) -> float:
    """
    Level-payment amortization factor.

    The payment of a fully-amortizing loan is:

        Payment = Balance x amortization_factor(rate, n_periods)

    Formula:
        factor = r / (1 - (1 + r)^(-n))      (1/n for zero rate)

    Parameters
    ----------
    rate : float
        Periodic interest rate (annual rate / 12 for monthly payments).
    n_periods : int
        Number of payments.

    Examples
    --------
    >>> factor = amortization_factor(0.05 / 12, 360)
    >>> round(300_000 * factor, 2)
    1610.46
    """
    if n_periods <= 0:
        raise DomainError(f"n_periods must be positive (got {n_periods}).", field="n_periods")
    if rate <= 0:
        return 1.0 / n_periods
    return rate / (1.0 - math.pow(1.0 + rate, -n_periods))
