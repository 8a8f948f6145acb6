"""
Closed-form financial formulas for fincalc.

Purpose
-------
Pure, side-effect-free calculators for compound growth and FIRE-style
targets. Monetary amounts are ``decimal.Decimal`` values computed under
``MONEY_CONTEXT`` (34 significant digits) and rounded to cents only when
a result is assembled. Rates are fractions (0.07 == 7%) compounded monthly
at ``rate / 12``.

Every function rejects NaN and infinite inputs (and non-finite outputs)
with DomainError. Range policy (e.g. principal <= 1e9) is the input
guard's job; here only mathematically meaningless inputs are refused.

Key components
--------------
- future_value : principal + monthly contributions, year-end balances
- fire_number : base / lean / fat / adjusted FIRE numbers
- coast_fire : growth of today's savings to one or more target ages
- barista_fire : portfolio needed when part-time income covers part of expenses
- required_savings_rate : monthly contribution needed to hit a target

Example
-------
>>> from fincalc.numeric import fire_number, future_value
>>> fire_number(50_000, 0.04).fire_number
Decimal('1250000.00')
>>> fv = future_value(10_000, 0.07, 10, monthly_contribution=500)
>>> fv.future_value > fv.total_contributions
True
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence, Tuple, Union

from scipy.optimize import bisect

from .constants import (
    DEFAULT_MAX_SAVINGS_RATE,
    DEFAULT_WITHDRAWAL_RATE,
    FAT_FIRE_MULTIPLIER,
    LEAN_FIRE_MULTIPLIER,
    MAX_HORIZON_YEARS,
    MAX_WITHDRAWAL_RATE,
    MONTHS_PER_YEAR,
)
from .exceptions import DomainError, ValidationError
from .utils import (
    MONEY_CONTEXT,
    annuity_factor,
    check_finite_decimal,
    effective_annual_rate,
    ensure_finite,
    nominal_monthly_rate,
    quantize_money,
    to_decimal,
)

__all__ = [
    "FutureValueResult",
    "FireNumberResult",
    "CoastFireProjection",
    "CoastFireResult",
    "BaristaFireResult",
    "SavingsRateResult",
    "future_value",
    "fire_number",
    "coast_fire",
    "barista_fire",
    "required_savings_rate",
    "growth_factor",
    "horizon_months",
]

Number = Union[int, float, Decimal]

_ONE = Decimal(1)
_RATE_QUANTUM = Decimal("1e-10")


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FutureValueResult:
    future_value: Decimal
    total_contributions: Decimal
    total_interest: Decimal
    effective_annual_rate: Decimal
    months: int
    yearly_balances: Tuple[Decimal, ...]


@dataclass(frozen=True)
class FireNumberResult:
    fire_number: Decimal
    lean_fire_number: Decimal
    fat_fire_number: Decimal
    adjusted_fire_number: Decimal
    annual_expenses: Decimal
    withdrawal_rate: Decimal


@dataclass(frozen=True)
class CoastFireProjection:
    """Projection for one target age; ``error`` is set when the age was invalid."""

    target_age: float
    months_to_grow: Optional[int] = None
    projected_value: Optional[Decimal] = None
    coast_number: Optional[Decimal] = None
    is_coasting: Optional[bool] = None
    error: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CoastFireResult:
    current_age: float
    current_savings: Decimal
    expected_return: Decimal
    projections: Tuple[CoastFireProjection, ...]

    @property
    def valid_projections(self) -> Tuple[CoastFireProjection, ...]:
        return tuple(p for p in self.projections if p.valid)


@dataclass(frozen=True)
class BaristaFireResult:
    barista_fire_number: Decimal
    full_fire_number: Decimal
    expense_gap: Decimal
    part_time_coverage: Decimal
    remaining_gap: Decimal
    already_achieved: bool


@dataclass(frozen=True)
class SavingsRateResult:
    monthly_contribution: Decimal
    annual_contribution: Decimal
    savings_rate: Optional[Decimal]
    feasible: bool
    already_achieved: bool
    method: str
    reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def horizon_months(years: Number, *, name: str = "years") -> int:
    """Convert a horizon in years to a whole number of months."""
    y = ensure_finite(name, years)
    if y < 0:
        raise DomainError(f"{name} must be >= 0, got {y}.", field=name)
    return int(round(y * MONTHS_PER_YEAR))


def growth_factor(monthly_rate: Decimal, months: int) -> Decimal:
    """Compound growth (1 + r)^n under the money context."""
    if months <= 0:
        return _ONE
    return MONEY_CONTEXT.power(MONEY_CONTEXT.add(_ONE, monthly_rate), months)


def _annual_rate(value: Number, name: str) -> Decimal:
    rate = to_decimal(value, name=name)
    if rate <= -1:
        raise DomainError(
            f"{name} must be > -1, got {rate}. A rate of -100% or lower destroys the principal.",
            field=name,
        )
    return rate


def _non_negative_amount(value: Number, name: str) -> Decimal:
    amount = to_decimal(value, name=name)
    if amount < 0:
        raise DomainError(f"{name} must be non-negative, got {amount}.", field=name)
    return amount


def _withdrawal_rate(value: Number) -> Decimal:
    rate = to_decimal(value, name="withdrawal_rate")
    if rate <= 0:
        raise DomainError(
            f"withdrawal_rate must be > 0, got {rate}.", field="withdrawal_rate"
        )
    if rate > Decimal(str(MAX_WITHDRAWAL_RATE)):
        raise ValidationError(
            f"withdrawal_rate must be <= {MAX_WITHDRAWAL_RATE}, got {rate}.",
            field="withdrawal_rate",
        )
    return rate


def _money(name: str, value: Decimal) -> Decimal:
    return quantize_money(check_finite_decimal(name, value))


# ---------------------------------------------------------------------------
# Future value
# ---------------------------------------------------------------------------

def future_value(
    principal: Number,
    annual_rate: Number,
    years: Number,
    monthly_contribution: Number = 0,
    contribution_timing: str = "end",
) -> FutureValueResult:
    """
    Future value of a principal plus level monthly contributions.

    Formula
    -------
        FV = P·(1 + r)^n + C·((1 + r)^n - 1)/r · (1 + r if timing == "beginning")

    with r = annual_rate / 12 and n = years · 12 (C·n when r == 0).

    Parameters
    ----------
    principal : float
        Starting balance (>= 0).
    annual_rate : float
        Nominal annual rate, compounded monthly (> -1).
    years : float
        Horizon in years (>= 0).
    monthly_contribution : float, default 0
        Level contribution per month (>= 0).
    contribution_timing : {"end", "beginning"}, default "end"
        Ordinary annuity or annuity due.

    Returns
    -------
    FutureValueResult
        Future value, total contributions (principal included), total
        interest, effective annual rate and year-end balances.

    Raises
    ------
    DomainError
        Negative principal/years/contribution, rate <= -1, non-finite values.

    Examples
    --------
    >>> future_value(1_000, 0.0, 1).future_value
    Decimal('1000.00')
    """
    p = _non_negative_amount(principal, "principal")
    rate = _annual_rate(annual_rate, "annual_rate")
    n = horizon_months(years)
    c = _non_negative_amount(monthly_contribution, "monthly_contribution")
    if contribution_timing not in ("end", "beginning"):
        raise ValidationError(
            f"contribution_timing must be 'end' or 'beginning', got {contribution_timing!r}.",
            field="contribution_timing",
        )

    r = nominal_monthly_rate(rate)
    due = MONEY_CONTEXT.add(_ONE, r) if contribution_timing == "beginning" else _ONE

    def balance_at(months: int) -> Decimal:
        grown = MONEY_CONTEXT.multiply(p, growth_factor(r, months))
        annuity = MONEY_CONTEXT.multiply(
            MONEY_CONTEXT.multiply(c, annuity_factor(r, months)), due
        )
        return MONEY_CONTEXT.add(grown, annuity)

    total = _money("future_value", balance_at(n))
    contributed = _money(
        "total_contributions",
        MONEY_CONTEXT.add(p, MONEY_CONTEXT.multiply(c, Decimal(n))),
    )

    years_covered = -(-n // MONTHS_PER_YEAR)
    yearly = tuple(
        _money("balance", balance_at(min(y * MONTHS_PER_YEAR, n)))
        for y in range(1, years_covered + 1)
    )

    return FutureValueResult(
        future_value=total,
        total_contributions=contributed,
        total_interest=total - contributed,
        effective_annual_rate=effective_annual_rate(rate).quantize(_RATE_QUANTUM),
        months=n,
        yearly_balances=yearly,
    )


# ---------------------------------------------------------------------------
# FIRE numbers
# ---------------------------------------------------------------------------

def fire_number(
    annual_expenses: Number,
    withdrawal_rate: Number = DEFAULT_WITHDRAWAL_RATE,
    safety_margin: Number = 0,
    cost_of_living_multiplier: Number = 1,
) -> FireNumberResult:
    """
    Net worth needed to fund *annual_expenses* at *withdrawal_rate*.

    The base number is ``annual_expenses / withdrawal_rate`` computed
    exactly in Decimal. Lean and fat variants scale expenses by 0.7 and
    2.0; the adjusted number applies the cost-of-living multiplier and the
    safety margin: ``base × multiplier × (1 + safety_margin)``.

    Raises
    ------
    DomainError
        Negative expenses, withdrawal rate <= 0, negative margin,
        non-positive multiplier.
    ValidationError
        Withdrawal rate above 10%.

    Examples
    --------
    >>> result = fire_number(40_000, 0.04, safety_margin=0.1)
    >>> result.fire_number, result.adjusted_fire_number
    (Decimal('1000000.00'), Decimal('1100000.00'))
    """
    expenses = _non_negative_amount(annual_expenses, "annual_expenses")
    rate = _withdrawal_rate(withdrawal_rate)
    margin = _non_negative_amount(safety_margin, "safety_margin")
    multiplier = to_decimal(cost_of_living_multiplier, name="cost_of_living_multiplier")
    if multiplier <= 0:
        raise DomainError(
            f"cost_of_living_multiplier must be > 0, got {multiplier}.",
            field="cost_of_living_multiplier",
        )

    base = MONEY_CONTEXT.divide(expenses, rate)
    lean = MONEY_CONTEXT.multiply(base, Decimal(str(LEAN_FIRE_MULTIPLIER)))
    fat = MONEY_CONTEXT.multiply(base, Decimal(str(FAT_FIRE_MULTIPLIER)))
    adjusted = MONEY_CONTEXT.multiply(
        MONEY_CONTEXT.multiply(base, multiplier), MONEY_CONTEXT.add(_ONE, margin)
    )

    return FireNumberResult(
        fire_number=_money("fire_number", base),
        lean_fire_number=_money("lean_fire_number", lean),
        fat_fire_number=_money("fat_fire_number", fat),
        adjusted_fire_number=_money("adjusted_fire_number", adjusted),
        annual_expenses=quantize_money(expenses),
        withdrawal_rate=rate,
    )


def coast_fire(
    current_age: Number,
    target_ages: Union[Number, Sequence[Number]],
    current_savings: Number,
    expected_return: Number,
    fire_number: Optional[Number] = None,
) -> CoastFireResult:
    """
    Grow today's savings with no further contributions to each target age.

    Each target age is validated on its own: an age that is not after
    ``current_age`` (or more than 100 years away) yields a projection
    carrying an ``error`` message instead of aborting the whole call.
    DomainError is raised only when *every* target age is invalid.

    With ``fire_number`` given, each projection also carries the coast
    number (the FIRE number discounted back to today) and whether the
    saver is already coasting (projected value >= FIRE number).

    Projected values are non-decreasing in ``expected_return``.
    """
    age = ensure_finite("current_age", current_age)
    if age < 0:
        raise DomainError(f"current_age must be >= 0, got {age}.", field="current_age")
    savings = _non_negative_amount(current_savings, "current_savings")
    rate = _annual_rate(expected_return, "expected_return")
    target = None if fire_number is None else _non_negative_amount(fire_number, "fire_number")

    ages = (target_ages,) if isinstance(target_ages, (int, float, Decimal)) else tuple(target_ages)
    if not ages:
        raise DomainError("target_ages must contain at least one age.", field="target_ages")

    r = nominal_monthly_rate(rate)
    projections = []
    for raw in ages:
        try:
            target_age = ensure_finite("target_age", raw)
        except DomainError as exc:
            projections.append(CoastFireProjection(target_age=float("nan"), error=str(exc)))
            continue
        span = target_age - age
        if span <= 0:
            projections.append(CoastFireProjection(
                target_age=target_age,
                error=f"target age {target_age} must be greater than current age {age}.",
            ))
            continue
        if span > MAX_HORIZON_YEARS:
            projections.append(CoastFireProjection(
                target_age=target_age,
                error=f"target age {target_age} is more than {MAX_HORIZON_YEARS} years away.",
            ))
            continue

        months = horizon_months(span, name="target_age")
        growth = growth_factor(r, months)
        projected = _money("projected_value", MONEY_CONTEXT.multiply(savings, growth))
        coast_number = None
        coasting = None
        if target is not None:
            coast_number = _money("coast_number", MONEY_CONTEXT.divide(target, growth))
            coasting = projected >= quantize_money(target)
        projections.append(CoastFireProjection(
            target_age=target_age,
            months_to_grow=months,
            projected_value=projected,
            coast_number=coast_number,
            is_coasting=coasting,
        ))

    if not any(p.valid for p in projections):
        raise DomainError(
            f"No valid target age: {projections[0].error}", field="target_ages"
        )

    return CoastFireResult(
        current_age=age,
        current_savings=quantize_money(savings),
        expected_return=rate,
        projections=tuple(projections),
    )


def barista_fire(
    annual_expenses: Number,
    part_time_income: Number,
    withdrawal_rate: Number = DEFAULT_WITHDRAWAL_RATE,
    current_savings: Number = 0,
) -> BaristaFireResult:
    """Portfolio needed when part-time income covers part of the expenses."""
    expenses = _non_negative_amount(annual_expenses, "annual_expenses")
    income = _non_negative_amount(part_time_income, "part_time_income")
    rate = _withdrawal_rate(withdrawal_rate)
    savings = _non_negative_amount(current_savings, "current_savings")

    gap = max(MONEY_CONTEXT.subtract(expenses, income), Decimal(0))
    barista = _money("barista_fire_number", MONEY_CONTEXT.divide(gap, rate))
    full = _money("full_fire_number", MONEY_CONTEXT.divide(expenses, rate))
    if expenses == 0:
        coverage = _ONE
    else:
        coverage = min(MONEY_CONTEXT.divide(income, expenses), _ONE)

    return BaristaFireResult(
        barista_fire_number=barista,
        full_fire_number=full,
        expense_gap=quantize_money(gap),
        part_time_coverage=coverage.quantize(Decimal("0.0001")),
        remaining_gap=max(barista - quantize_money(savings), Decimal("0.00")),
        already_achieved=savings >= barista,
    )


# ---------------------------------------------------------------------------
# Required savings rate
# ---------------------------------------------------------------------------

def _bisect_contribution(
    shortfall_at: float, months: int, monthly_rate: float, upper: float
) -> float:
    """Solve ``c · AF(r, n) = shortfall_at`` for c by bisection."""

    def surplus(c: float) -> float:
        if monthly_rate == 0:
            factor = float(months)
        else:
            factor = ((1.0 + monthly_rate) ** months - 1.0) / monthly_rate
        return c * factor - shortfall_at

    return bisect(surplus, 0.0, upper, xtol=1e-7, maxiter=500)


def required_savings_rate(
    target_amount: Number,
    years: Number,
    current_net_worth: Number = 0,
    expected_return: Number = 0,
    annual_income: Optional[Number] = None,
    max_savings_rate: Number = DEFAULT_MAX_SAVINGS_RATE,
) -> SavingsRateResult:
    """
    Monthly contribution needed to reach *target_amount* in *years*.

    The closed form divides the shortfall remaining after growing the
    current net worth by the annuity factor::

        c = (target - NW·(1 + r)^n) / (((1 + r)^n - 1) / r)

    When the return is zero or the factor is degenerate, the same
    equation is solved by bisection (``scipy.optimize.bisect``).

    With ``annual_income`` the result carries the savings rate and is
    flagged infeasible above ``max_savings_rate``; a rate above the cap is
    never reported as feasible.

    Raises
    ------
    DomainError
        ``years <= 0``, negative target, non-positive income.
    """
    target = _non_negative_amount(target_amount, "target_amount")
    y = ensure_finite("years", years)
    if y <= 0:
        raise DomainError(f"years must be > 0, got {y}.", field="years")
    net_worth = to_decimal(current_net_worth, name="current_net_worth")
    rate = _annual_rate(expected_return, "expected_return")
    cap = to_decimal(max_savings_rate, name="max_savings_rate")
    if not (0 < cap <= 1):
        raise ValidationError(
            f"max_savings_rate must be in (0, 1], got {cap}.", field="max_savings_rate"
        )
    income = None
    if annual_income is not None:
        income = to_decimal(annual_income, name="annual_income")
        if income <= 0:
            raise DomainError(f"annual_income must be > 0, got {income}.", field="annual_income")

    n = max(horizon_months(y), 1)
    r = nominal_monthly_rate(rate)
    grown = MONEY_CONTEXT.multiply(net_worth, growth_factor(r, n))
    shortfall = MONEY_CONTEXT.subtract(target, grown)

    if shortfall <= 0:
        return SavingsRateResult(
            monthly_contribution=Decimal("0.00"),
            annual_contribution=Decimal("0.00"),
            savings_rate=Decimal("0.0000") if income is not None else None,
            feasible=True,
            already_achieved=True,
            method="none",
        )

    factor = annuity_factor(r, n)
    if r == 0 or not factor.is_finite() or factor <= 0:
        shortfall_f = float(shortfall)
        root = _bisect_contribution(shortfall_f, n, float(r), upper=shortfall_f + 1.0)
        if not math.isfinite(root):
            raise DomainError("required contribution did not converge.", field="expected_return")
        monthly = to_decimal(root, name="monthly_contribution")
        method = "bisection"
    else:
        monthly = MONEY_CONTEXT.divide(shortfall, factor)
        method = "closed_form"

    monthly = _money("monthly_contribution", monthly)
    annual = monthly * MONTHS_PER_YEAR

    savings_rate = None
    feasible = True
    reason = None
    if income is not None:
        savings_rate = MONEY_CONTEXT.divide(annual, income).quantize(Decimal("0.0001"))
        if savings_rate > cap:
            feasible = False
            reason = (
                f"required savings rate {savings_rate:.2%} exceeds the cap of {cap:.0%}."
            )

    return SavingsRateResult(
        monthly_contribution=monthly,
        annual_contribution=annual,
        savings_rate=savings_rate,
        feasible=feasible,
        already_achieved=False,
        method=method,
        reason=reason,
    )
