"""
Public pension (Social Security) estimates and their effect on FIRE targets.

Purpose
-------
Estimates a retirement benefit from current income with a simplified
two-tier formula, adjusts it for the claiming age, and converts the income
it provides into a smaller portfolio target. A small set of adverse
scenarios then shows how the net target moves when returns, inflation,
healthcare costs or the benefit itself change.

Benefit formula
---------------
    aime = annual_income / 12
    pia  = max(0, min(0.9 × aime, 0.9 × 1174 + 0.32 × (aime - 1174)))

Claiming before 67 reduces the benefit by 0.55% per month early; claiming
after 67 adds 0.67% per month up to age 70. The portfolio a benefit
replaces is ``annual_benefit / withdrawal_rate``, discounted at 3% a year
for every year the benefit starts after retirement.

Key components
--------------
- BenefitScenario : adverse adjustments applied in stress scenarios
- BENEFIT_SCENARIOS : the five default scenarios
- claiming_factor : benefit multiplier for a claiming age
- social_security_plan : projection, stress results and recommendation

Example
-------
>>> from fincalc.benefits import social_security_plan
>>> plan = social_security_plan(current_age=40, annual_income=60_000,
...                             retirement_age=55, base_fire_number=1_250_000)
>>> plan.net_fire_number < plan.base_fire_number
True
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Literal, Optional, Sequence, Tuple

import numpy as np

from .constants import (
    BEND_POINT,
    BENEFIT_DISCOUNT_RATE,
    DEFAULT_LIFE_EXPECTANCY,
    DEFAULT_WITHDRAWAL_RATE,
    DELAYED_CREDIT_PER_MONTH,
    EARLY_CLAIM_REDUCTION_PER_MONTH,
    FULL_RETIREMENT_AGE,
    MAX_CLAIMING_AGE,
    MIN_CLAIMING_AGE,
    MIN_STRESSED_WITHDRAWAL_RATE,
    MONTHS_PER_YEAR,
)
from .exceptions import DomainError, ValidationError
from .numeric import Number, _money, _non_negative_amount, _withdrawal_rate
from .utils import MONEY_CONTEXT, ensure_finite, quantize_money

__all__ = [
    "BenefitScenario",
    "BENEFIT_SCENARIOS",
    "BenefitProjection",
    "BenefitStressResult",
    "SocialSecurityPlan",
    "claiming_factor",
    "social_security_plan",
]

RiskLevel = Literal["low", "medium", "high", "extreme"]

_ONE = Decimal(1)
_ZERO = Decimal(0)
_HUNDRED = Decimal(100)


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BenefitScenario:
    """
    Adverse adjustments applied to a FIRE target.

    Parameters
    ----------
    name : str
        Scenario label.
    market_return_adjustment : float
        Added to the withdrawal rate (negative returns force a lower rate).
    inflation_adjustment : float
        Extra general inflation, as a fraction of the base target.
    benefit_adjustment : float
        Relative change of the pension benefit (-0.25 is a 25% cut).
    healthcare_inflation_adjustment : float
        Extra healthcare inflation, as a fraction of the base target.
    """

    name: str
    market_return_adjustment: float = 0.0
    inflation_adjustment: float = 0.0
    benefit_adjustment: float = 0.0
    healthcare_inflation_adjustment: float = 0.0

    def __post_init__(self):
        if not self.name:
            raise ValidationError("scenario name must be non-empty.", field="name")
        for name in ("market_return_adjustment", "inflation_adjustment",
                     "benefit_adjustment", "healthcare_inflation_adjustment"):
            ensure_finite(name, getattr(self, name))
        if self.benefit_adjustment < -1:
            raise DomainError(
                f"benefit_adjustment must be >= -1, got {self.benefit_adjustment}.",
                field="benefit_adjustment",
            )


BENEFIT_SCENARIOS: Tuple[BenefitScenario, ...] = (
    BenefitScenario("Market Crash", -0.03, 0.02, -0.10, 0.02),
    BenefitScenario("High Inflation", -0.01, 0.04, 0.02, 0.03),
    BenefitScenario("Social Security Cuts", 0.0, 0.01, -0.25, 0.01),
    BenefitScenario("Healthcare Crisis", -0.01, 0.02, 0.0, 0.05),
    BenefitScenario("Perfect Storm", -0.04, 0.05, -0.20, 0.04),
)
"""Default stress scenarios, mildest market shock first."""


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BenefitProjection:
    monthly_benefit: Decimal
    annual_benefit: Decimal
    primary_insurance_amount: Decimal
    claiming_age: int
    full_retirement_age: int
    claiming_factor: Decimal
    years_receiving: int
    lifetime_value: Decimal
    break_even_age: float
    fire_number_reduction: Decimal


@dataclass(frozen=True)
class BenefitStressResult:
    scenario: str
    adjusted_withdrawal_rate: Decimal
    cost_increase: Decimal
    withdrawal_rate_increase: Decimal
    benefit_impact: Decimal
    total_adjustment: Decimal
    adjusted_fire_number: Decimal
    percentage_increase: float
    risk_level: RiskLevel
    recommendations: Tuple[str, ...]


@dataclass(frozen=True)
class SocialSecurityPlan:
    base_fire_number: Decimal
    net_fire_number: Decimal
    projection: BenefitProjection
    stress_results: Tuple[BenefitStressResult, ...]
    recommended_claiming_age: int
    recommended_fire_number: Decimal
    confidence: float
    warnings: Tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------

def claiming_factor(claiming_age: int) -> Decimal:
    """Benefit multiplier for claiming at *claiming_age* instead of 67."""
    months = (claiming_age - FULL_RETIREMENT_AGE) * MONTHS_PER_YEAR
    if months < 0:
        return _ONE + months * Decimal(str(EARLY_CLAIM_REDUCTION_PER_MONTH))
    return _ONE + months * Decimal(str(DELAYED_CREDIT_PER_MONTH))


def _primary_insurance_amount(annual_income: Decimal) -> Decimal:
    aime = MONEY_CONTEXT.divide(annual_income, Decimal(MONTHS_PER_YEAR))
    bend = Decimal(str(BEND_POINT))
    first = aime * Decimal("0.9")
    tiered = bend * Decimal("0.9") + (aime - bend) * Decimal("0.32")
    return max(_ZERO, min(first, tiered))


def _break_even_age() -> float:
    # Age at which cumulative benefits claimed at 70 catch up with those claimed at 67.
    delayed = float(claiming_factor(MAX_CLAIMING_AGE))
    return MAX_CLAIMING_AGE + (MAX_CLAIMING_AGE - FULL_RETIREMENT_AGE) / (delayed - 1.0)


def _replaced_portfolio(annual_benefit: Decimal, withdrawal_rate: Decimal, deferral_years: int) -> Decimal:
    portfolio = MONEY_CONTEXT.divide(annual_benefit, withdrawal_rate)
    if deferral_years <= 0:
        return portfolio
    discount = MONEY_CONTEXT.power(_ONE + Decimal(str(BENEFIT_DISCOUNT_RATE)), deferral_years)
    return MONEY_CONTEXT.divide(portfolio, discount)


def _risk_level(percentage: float) -> RiskLevel:
    if percentage > 75:
        return "extreme"
    if percentage > 50:
        return "high"
    if percentage > 25:
        return "medium"
    return "low"


def _recommendations(scenario: BenefitScenario) -> Tuple[str, ...]:
    notes = []
    if scenario.market_return_adjustment < -0.02:
        notes.append("Increase bond allocation for stability")
    if scenario.benefit_adjustment < -0.1:
        notes.append("Delay claiming to maximize benefits")
        notes.append("Increase personal savings to compensate")
    if scenario.healthcare_inflation_adjustment > 0.03:
        notes.append("Maximize health savings account contributions")
    return tuple(notes)


def _stress(
    scenario: BenefitScenario,
    base: Decimal,
    withdrawal_rate: Decimal,
    annual_benefit: Decimal,
    deferral_years: int,
    reduction: Decimal,
) -> BenefitStressResult:
    adjusted_rate = max(
        Decimal(str(MIN_STRESSED_WITHDRAWAL_RATE)),
        withdrawal_rate + Decimal(str(scenario.market_return_adjustment)),
    )
    cost_increase = base * (
        Decimal(str(scenario.inflation_adjustment)) + Decimal(str(scenario.healthcare_inflation_adjustment))
    )
    rate_increase = base * (MONEY_CONTEXT.divide(withdrawal_rate, adjusted_rate) - _ONE)
    stressed_benefit = annual_benefit * (_ONE + Decimal(str(scenario.benefit_adjustment)))
    benefit_impact = reduction - _replaced_portfolio(stressed_benefit, adjusted_rate, deferral_years)
    total = cost_increase + rate_increase + benefit_impact
    percentage = float(total / base * _HUNDRED) if base > 0 else 0.0
    return BenefitStressResult(
        scenario=scenario.name,
        adjusted_withdrawal_rate=adjusted_rate,
        cost_increase=_money("cost_increase", cost_increase),
        withdrawal_rate_increase=_money("withdrawal_rate_increase", rate_increase),
        benefit_impact=_money("benefit_impact", benefit_impact),
        total_adjustment=_money("total_adjustment", total),
        adjusted_fire_number=_money("adjusted_fire_number", base + total),
        percentage_increase=round(percentage, 4),
        risk_level=_risk_level(percentage),
        recommendations=_recommendations(scenario),
    )


def social_security_plan(
    current_age: Number,
    annual_income: Number,
    retirement_age: Number,
    base_fire_number: Number,
    claiming_age: int = FULL_RETIREMENT_AGE,
    life_expectancy: int = DEFAULT_LIFE_EXPECTANCY,
    withdrawal_rate: Number = DEFAULT_WITHDRAWAL_RATE,
    scenarios: Optional[Sequence[BenefitScenario]] = None,
) -> SocialSecurityPlan:
    """
    Estimate a pension benefit and the FIRE target it offsets.

    The net FIRE number is ``base_fire_number`` minus the portfolio the
    benefit replaces, floored at zero. Each scenario reports how far the
    net target moves and a risk level (``> 25%`` medium, ``> 50%`` high,
    ``> 75%`` extreme). Claiming at 70 is recommended when the break-even
    age falls more than five years before *life_expectancy*.

    Parameters
    ----------
    current_age, retirement_age : float
        Ages in years; retirement must not precede today.
    annual_income : float
        Current gross annual income (stand-in for indexed career earnings).
    base_fire_number : float
        FIRE target before accounting for the benefit.
    claiming_age : int, default 67
        Whole age between 62 and 70.
    life_expectancy : int, default 85
        Age used to value lifetime benefits.
    withdrawal_rate : float, default 0.04
    scenarios : sequence of BenefitScenario, optional
        Defaults to ``BENEFIT_SCENARIOS``.

    Raises
    ------
    DomainError
        Negative amounts or ages, retirement before the current age.
    ValidationError
        Claiming age outside 62..70, withdrawal rate above 10%.
    """
    age = ensure_finite("current_age", current_age)
    retire = ensure_finite("retirement_age", retirement_age)
    if age < 0:
        raise DomainError(f"current_age must be >= 0, got {age}.", field="current_age")
    if retire < age:
        raise DomainError(
            f"retirement_age ({retire}) must not be before current_age ({age}).", field="retirement_age"
        )
    if claiming_age != int(claiming_age) or not MIN_CLAIMING_AGE <= claiming_age <= MAX_CLAIMING_AGE:
        raise ValidationError(
            f"claiming_age must be a whole age in [{MIN_CLAIMING_AGE}, {MAX_CLAIMING_AGE}], got {claiming_age}.",
            field="claiming_age",
        )
    claiming_age = int(claiming_age)
    life = int(ensure_finite("life_expectancy", life_expectancy))
    income = _non_negative_amount(annual_income, "annual_income")
    base = _non_negative_amount(base_fire_number, "base_fire_number")
    rate = _withdrawal_rate(withdrawal_rate)

    warnings = []
    pia = _primary_insurance_amount(income)
    factor = claiming_factor(claiming_age)
    monthly = pia * factor
    annual = monthly * MONTHS_PER_YEAR
    years_receiving = max(0, life - claiming_age)
    if years_receiving == 0:
        warnings.append(f"life expectancy {life} does not exceed claiming age {claiming_age}; no benefits valued")
    deferral = max(0, int(np.ceil(claiming_age - retire)))
    reduction = _replaced_portfolio(annual, rate, deferral) if years_receiving else _ZERO
    break_even = _break_even_age()

    projection = BenefitProjection(
        monthly_benefit=_money("monthly_benefit", monthly),
        annual_benefit=_money("annual_benefit", annual),
        primary_insurance_amount=_money("primary_insurance_amount", pia),
        claiming_age=claiming_age,
        full_retirement_age=FULL_RETIREMENT_AGE,
        claiming_factor=factor,
        years_receiving=years_receiving,
        lifetime_value=_money("lifetime_value", annual * years_receiving),
        break_even_age=round(break_even, 2),
        fire_number_reduction=_money("fire_number_reduction", reduction),
    )
    if reduction > base:
        warnings.append("benefit covers the whole FIRE target; net target floored at zero")

    chosen = BENEFIT_SCENARIOS if scenarios is None else tuple(scenarios)
    if years_receiving == 0:
        annual = _ZERO
    results = tuple(_stress(s, base, rate, annual, deferral, reduction) for s in chosen)

    if results:
        average = float(np.mean([r.percentage_increase for r in results]))
        severe = sum(r.risk_level in ("high", "extreme") for r in results)
        confidence = max(0.6, 1.0 - severe / len(results))
    else:
        average, confidence = 0.0, 1.0
    recommended = base * (_ONE + Decimal(str(max(0.15, average / 100.0))))

    return SocialSecurityPlan(
        base_fire_number=quantize_money(base),
        net_fire_number=_money("net_fire_number", max(_ZERO, base - reduction)),
        projection=projection,
        stress_results=results,
        recommended_claiming_age=MAX_CLAIMING_AGE if break_even < life - 5 else FULL_RETIREMENT_AGE,
        recommended_fire_number=_money("recommended_fire_number", recommended),
        confidence=round(confidence, 4),
        warnings=tuple(warnings),
    )
