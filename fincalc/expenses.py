"""
Expense-based FIRE targets for fincalc.

Purpose
-------
Builds a FIRE number bottom-up from spending categories instead of one
annual expense figure. Each category is adjusted for local cost of living,
inflated over a projection horizon, and converted to the portfolio that
funds it at the withdrawal rate:

    current_annual   = monthly_amount × location_multiplier × 12
    projected_annual = current_annual × (1 + inflation_rate) ** projection_years
    fire_contribution = projected_annual / withdrawal_rate

The location multiplier is ``cost_of_living_index × sensitivity`` for
categories flagged as location sensitive (housing tracks the index more
closely than food) and 1.0 otherwise.

Design principles
-----------------
- Frozen dataclasses for immutability
- Decimal arithmetic under MONEY_CONTEXT, rounded to cents on output
- Calendar-free: the horizon is a whole number of years
- Tabular view via pandas for reporting

Example
-------
>>> from fincalc.expenses import ExpenseCategory, expense_based_fire
>>> result = expense_based_fire(
...     [ExpenseCategory("housing", 2_000), ExpenseCategory("food", 600, essential=False)],
...     projection_years=0,
... )
>>> result.fire_number
Decimal('780000.00')
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Sequence, Tuple

import pandas as pd

from .constants import (
    DEFAULT_EXPENSE_PROJECTION_YEARS,
    DEFAULT_INFLATION_RATE,
    DEFAULT_SAVINGS_OPPORTUNITY,
    DEFAULT_WITHDRAWAL_RATE,
    LOCATION_SENSITIVITY,
    MAX_HORIZON_YEARS,
    MONTHS_PER_YEAR,
    SAVINGS_OPPORTUNITIES,
    SAVINGS_REVIEW_THRESHOLD,
)
from .exceptions import DomainError, ValidationError
from .numeric import Number, _annual_rate, _money, _non_negative_amount, _withdrawal_rate
from .utils import MONEY_CONTEXT, ensure_finite, quantize_money, to_decimal

__all__ = [
    "ExpenseCategory",
    "CategoryProjection",
    "SavingsOpportunity",
    "ExpenseFireResult",
    "location_multiplier",
    "expense_based_fire",
]

_ONE = Decimal(1)
_MONTHS = Decimal(MONTHS_PER_YEAR)


# ---------------------------------------------------------------------------
# Inputs and results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExpenseCategory:
    """
    One spending category.

    Parameters
    ----------
    name : str
        Category label; ``housing``, ``food``, ``transportation``,
        ``healthcare``, ``utilities`` and ``entertainment`` have specific
        location sensitivities and savings rules (case-insensitive).
    monthly_amount : float
        Current monthly spending, non-negative.
    inflation_rate : float, default 0.03
        Annual inflation specific to the category, > -1.
    essential : bool, default True
        Non-essential categories always get a savings suggestion.
    location_sensitive : bool, default False
        Whether the cost-of-living index applies.
    """

    name: str
    monthly_amount: float
    inflation_rate: float = DEFAULT_INFLATION_RATE
    essential: bool = True
    location_sensitive: bool = False

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValidationError("expense category name must be non-empty.", field="name")
        if ensure_finite("monthly_amount", self.monthly_amount) < 0:
            raise DomainError(
                f"monthly_amount must be non-negative, got {self.monthly_amount}.",
                field="monthly_amount",
            )
        if ensure_finite("inflation_rate", self.inflation_rate) <= -1:
            raise DomainError(
                f"inflation_rate must be > -1, got {self.inflation_rate}.", field="inflation_rate"
            )

    @property
    def key(self) -> str:
        return self.name.strip().lower()


@dataclass(frozen=True)
class CategoryProjection:
    category: str
    current_annual: Decimal
    projected_annual: Decimal
    fire_contribution: Decimal
    location_multiplier: Decimal
    essential: bool


@dataclass(frozen=True)
class SavingsOpportunity:
    """Suggested cut for one category; ``fire_reduction`` is the smaller portfolio it implies."""

    category: str
    suggestion: str
    fire_reduction: Decimal
    difficulty: str


@dataclass(frozen=True)
class ExpenseFireResult:
    fire_number: Decimal
    categories: Tuple[CategoryProjection, ...]
    current_annual_total: Decimal
    projected_annual_total: Decimal
    inflation_increase: Decimal
    inflation_fire_impact: Decimal
    cost_of_living_index: Decimal
    location: Optional[str]
    withdrawal_rate: Decimal
    projection_years: int
    opportunities: Tuple[SavingsOpportunity, ...]
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    def breakdown_frame(self) -> pd.DataFrame:
        """Per-category projection as a DataFrame (floats, one row per category)."""
        rows = [
            {
                "category": c.category,
                "current_annual": float(c.current_annual),
                "projected_annual": float(c.projected_annual),
                "fire_contribution": float(c.fire_contribution),
                "location_multiplier": float(c.location_multiplier),
                "essential": c.essential,
            }
            for c in self.categories
        ]
        return pd.DataFrame(
            rows,
            columns=["category", "current_annual", "projected_annual",
                     "fire_contribution", "location_multiplier", "essential"],
        )


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------

def location_multiplier(category: ExpenseCategory, cost_of_living_index: Number = 1) -> Decimal:
    """Cost-of-living factor applied to *category* (1 when it is not location sensitive)."""
    if not category.location_sensitive:
        return _ONE
    index = to_decimal(cost_of_living_index, name="cost_of_living_index")
    sensitivity = Decimal(str(LOCATION_SENSITIVITY.get(category.key, 1.0)))
    return MONEY_CONTEXT.multiply(index, sensitivity)


def _opportunity(projection: CategoryProjection) -> SavingsOpportunity:
    share, difficulty, suggestion = SAVINGS_OPPORTUNITIES.get(
        projection.category.strip().lower(), DEFAULT_SAVINGS_OPPORTUNITY
    )
    reduction = MONEY_CONTEXT.multiply(projection.fire_contribution, Decimal(str(share)))
    return SavingsOpportunity(
        category=projection.category,
        suggestion=suggestion.format(category=projection.category),
        fire_reduction=quantize_money(reduction),
        difficulty=difficulty,
    )


def expense_based_fire(
    categories: Sequence[ExpenseCategory],
    withdrawal_rate: Number = DEFAULT_WITHDRAWAL_RATE,
    projection_years: int = DEFAULT_EXPENSE_PROJECTION_YEARS,
    cost_of_living_index: Number = 1,
    location: Optional[str] = None,
) -> ExpenseFireResult:
    """
    FIRE number summed over inflated, location-adjusted spending categories.

    Savings opportunities are listed for every non-essential category and
    for essential ones whose FIRE contribution exceeds 100,000, sorted by
    ``fire_reduction`` (largest first).

    Raises
    ------
    DomainError
        Withdrawal rate <= 0, non-positive cost-of-living index,
        negative horizon.
    ValidationError
        No categories, duplicate category names, withdrawal rate above
        10%, horizon above 100 years.
    """
    if not categories:
        raise ValidationError("at least one expense category is required.", field="categories")
    seen = set()
    for category in categories:
        if category.key in seen:
            raise ValidationError(f"duplicate expense category {category.name!r}.", field="categories")
        seen.add(category.key)

    rate = _withdrawal_rate(withdrawal_rate)
    index = _non_negative_amount(cost_of_living_index, "cost_of_living_index")
    if index == 0:
        raise DomainError("cost_of_living_index must be > 0.", field="cost_of_living_index")
    years = int(ensure_finite("projection_years", projection_years))
    if years != projection_years or years < 0:
        raise DomainError(
            f"projection_years must be a non-negative whole number, got {projection_years}.",
            field="projection_years",
        )
    if years > MAX_HORIZON_YEARS:
        raise ValidationError(
            f"projection_years must be <= {MAX_HORIZON_YEARS}, got {years}.", field="projection_years"
        )

    projections = []
    for category in categories:
        multiplier = location_multiplier(category, index)
        monthly = MONEY_CONTEXT.multiply(to_decimal(category.monthly_amount, name="monthly_amount"), multiplier)
        current = MONEY_CONTEXT.multiply(monthly, _MONTHS)
        growth = MONEY_CONTEXT.power(
            MONEY_CONTEXT.add(_ONE, _annual_rate(category.inflation_rate, "inflation_rate")), years
        )
        projected = MONEY_CONTEXT.multiply(current, growth)
        projections.append((category, multiplier, current, projected, MONEY_CONTEXT.divide(projected, rate)))

    current_total = sum((p[2] for p in projections), Decimal(0))
    projected_total = sum((p[3] for p in projections), Decimal(0))
    fire_total = sum((p[4] for p in projections), Decimal(0))
    increase = projected_total - current_total

    rows = tuple(
        CategoryProjection(
            category=category.name,
            current_annual=_money("current_annual", current),
            projected_annual=_money("projected_annual", projected),
            fire_contribution=_money("fire_contribution", contribution),
            location_multiplier=multiplier,
            essential=category.essential,
        )
        for category, multiplier, current, projected, contribution in projections
    )
    threshold = Decimal(str(SAVINGS_REVIEW_THRESHOLD))
    opportunities = sorted(
        (_opportunity(row) for row in rows if not row.essential or row.fire_contribution > threshold),
        key=lambda o: o.fire_reduction,
        reverse=True,
    )

    warnings = []
    if fire_total == 0:
        warnings.append("all expense categories are zero; nothing to fund")

    return ExpenseFireResult(
        fire_number=_money("fire_number", fire_total),
        categories=rows,
        current_annual_total=_money("current_annual_total", current_total),
        projected_annual_total=_money("projected_annual_total", projected_total),
        inflation_increase=_money("inflation_increase", increase),
        inflation_fire_impact=_money("inflation_fire_impact", MONEY_CONTEXT.divide(increase, rate)),
        cost_of_living_index=index,
        location=location,
        withdrawal_rate=rate,
        projection_years=years,
        opportunities=tuple(opportunities),
        warnings=tuple(warnings),
    )
