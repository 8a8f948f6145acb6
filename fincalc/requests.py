"""
Calculation request model for fincalc.

Purpose
-------
Defines the closed set of calculation kinds and one strongly typed
parameter model per kind. A CalculationRequest carries exactly one
parameter model (a discriminated union on its ``kind`` tag), the caller
identity used for rate limiting, and optional seed, timeout and cache flag.

Parameter models only enforce *types* (numbers are finite, unknown fields
are forbidden). Declared value ranges live in the input guard, so an
out-of-range request can be built, inspected, and rejected with a precise
reason before it reaches a calculator.

Calculation kinds
-----------------
future_value, fire_number, coast_fire, barista_fire, required_savings_rate,
goal_planning, debt_payoff, monte_carlo, market_stress_test

Example
-------
>>> from fincalc.requests import CalculationRequest
>>> request = CalculationRequest.build(
...     "fire_number",
...     {"annual_expenses": 50_000, "withdrawal_rate": 0.04},
...     caller_id="user-42",
... )
>>> request.kind
'fire_number'
>>> request.params.withdrawal_rate
0.04
"""

from __future__ import annotations
from typing import Annotated, Any, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import (
    DEFAULT_EXPENSE_PROJECTION_YEARS,
    DEFAULT_INFLATION_RATE,
    DEFAULT_ITERATIONS,
    DEFAULT_LIFE_EXPECTANCY,
    DEFAULT_MAX_SAVINGS_RATE,
    DEFAULT_WITHDRAWAL_RATE,
    FULL_RETIREMENT_AGE,
)

__all__ = [
    "CalculationKind",
    "CALCULATION_KINDS",
    "EXPENSIVE_KINDS",
    "FutureValueParams",
    "FireNumberParams",
    "CoastFireParams",
    "BaristaFireParams",
    "RequiredSavingsRateParams",
    "GoalSpec",
    "GoalPlanningParams",
    "DebtSpec",
    "DebtPayoffParams",
    "ExpenseCategorySpec",
    "ExpenseFireParams",
    "BenefitScenarioSpec",
    "SocialSecurityParams",
    "MonteCarloParams",
    "StressTestParams",
    "RequestParams",
    "CalculationRequest",
]


CalculationKind = Literal[
    "future_value",
    "fire_number",
    "coast_fire",
    "barista_fire",
    "required_savings_rate",
    "goal_planning",
    "debt_payoff",
    "expense_based_fire",
    "social_security",
    "monte_carlo",
    "market_stress_test",
]

CALCULATION_KINDS: Tuple[str, ...] = (
    "future_value",
    "fire_number",
    "coast_fire",
    "barista_fire",
    "required_savings_rate",
    "goal_planning",
    "debt_payoff",
    "expense_based_fire",
    "social_security",
    "monte_carlo",
    "market_stress_test",
)

EXPENSIVE_KINDS = frozenset({"monte_carlo", "market_stress_test"})

DebtStrategyName = Literal["avalanche", "snowball", "custom", "minimum_only"]
RecoveryKind = Literal["immediate", "gradual", "delayed", "partial"]

_PARAMS_CONFIG = ConfigDict(frozen=True, extra="forbid", allow_inf_nan=False)


# ---------------------------------------------------------------------------
# Closed-form calculators
# ---------------------------------------------------------------------------

class FutureValueParams(BaseModel):
    """Compound growth of a principal plus monthly contributions."""

    model_config = _PARAMS_CONFIG

    kind: Literal["future_value"] = "future_value"
    principal: float = Field(description="Starting balance")
    annual_rate: float = Field(description="Nominal annual rate, compounded monthly")
    years: float = Field(description="Projection horizon in years")
    monthly_contribution: float = Field(default=0.0, description="Contribution per month")
    contribution_timing: Literal["end", "beginning"] = Field(
        default="end",
        description="Ordinary annuity (end) or annuity due (beginning)"
    )


class FireNumberParams(BaseModel):
    """Target net worth for a sustainable withdrawal rate."""

    model_config = _PARAMS_CONFIG

    kind: Literal["fire_number"] = "fire_number"
    annual_expenses: float = Field(description="Annual spending to cover")
    withdrawal_rate: float = Field(default=DEFAULT_WITHDRAWAL_RATE, description="Sustainable withdrawal rate")
    safety_margin: float = Field(default=0.0, description="Extra cushion as a fraction")
    cost_of_living_multiplier: float = Field(default=1.0, description="Geographic cost adjustment")


class CoastFireParams(BaseModel):
    """Growth of current savings with no further contributions."""

    model_config = _PARAMS_CONFIG

    kind: Literal["coast_fire"] = "coast_fire"
    current_age: float = Field(description="Age today")
    target_ages: Tuple[float, ...] = Field(description="One or more retirement ages")
    current_savings: float = Field(description="Invested savings today")
    expected_return: float = Field(description="Nominal annual return")
    fire_number: Optional[float] = Field(default=None, description="FIRE target for coast comparison")

    @field_validator("target_ages", mode="before")
    @classmethod
    def wrap_single_age(cls, v):
        """Accept a single age as well as a sequence."""
        if isinstance(v, (int, float)):
            return (v,)
        return v


class BaristaFireParams(BaseModel):
    """Portfolio required when part-time income covers part of expenses."""

    model_config = _PARAMS_CONFIG

    kind: Literal["barista_fire"] = "barista_fire"
    annual_expenses: float = Field(description="Annual spending to cover")
    part_time_income: float = Field(description="Annual part-time income")
    withdrawal_rate: float = Field(default=DEFAULT_WITHDRAWAL_RATE, description="Sustainable withdrawal rate")
    current_savings: float = Field(default=0.0, description="Invested savings today")


class RequiredSavingsRateParams(BaseModel):
    """Monthly contribution needed to reach a target by a horizon."""

    model_config = _PARAMS_CONFIG

    kind: Literal["required_savings_rate"] = "required_savings_rate"
    target_amount: float = Field(description="Target net worth")
    years: float = Field(description="Years to reach the target")
    current_net_worth: float = Field(default=0.0, description="Net worth today")
    expected_return: float = Field(description="Nominal annual return")
    annual_income: Optional[float] = Field(default=None, description="Gross annual income")
    max_savings_rate: float = Field(default=DEFAULT_MAX_SAVINGS_RATE, description="Feasibility cap")


# ---------------------------------------------------------------------------
# Goal planning
# ---------------------------------------------------------------------------

class GoalSpec(BaseModel):
    """One savings goal competing for the shared income stream."""

    model_config = _PARAMS_CONFIG

    name: str = Field(description="Goal name")
    target_amount: float = Field(description="Amount needed")
    years: float = Field(description="Years until the goal")
    current_saved: float = Field(default=0.0, description="Amount already set aside")
    priority: float = Field(default=1.0, description="Relative priority weight")


class GoalPlanningParams(BaseModel):
    """Several goals sharing one income stream."""

    model_config = _PARAMS_CONFIG

    kind: Literal["goal_planning"] = "goal_planning"
    goals: Tuple[GoalSpec, ...] = Field(description="Goals to fund")
    annual_income: float = Field(description="Gross annual income")
    expected_return: float = Field(description="Nominal annual return")
    max_savings_rate: float = Field(default=DEFAULT_MAX_SAVINGS_RATE, description="Savings-rate cap")


# ---------------------------------------------------------------------------
# Debt payoff
# ---------------------------------------------------------------------------

class DebtSpec(BaseModel):
    """One debt account as supplied by the caller."""

    model_config = _PARAMS_CONFIG

    id: str = Field(description="Debt identifier")
    balance: float = Field(description="Amount owed (positive)")
    annual_rate: float = Field(description="Annual interest rate")
    minimum_payment: float = Field(description="Required monthly payment")
    debt_type: str = Field(default="loan", description="Type tag (credit, loan, ...)")
    name: Optional[str] = Field(default=None, description="Display name")


class DebtPayoffParams(BaseModel):
    """Debt list, monthly budget, and strategies to simulate."""

    model_config = _PARAMS_CONFIG

    kind: Literal["debt_payoff"] = "debt_payoff"
    debts: Tuple[DebtSpec, ...] = Field(default=(), description="Debts to repay")
    monthly_budget: float = Field(description="Total monthly payment budget")
    strategies: Tuple[DebtStrategyName, ...] = Field(
        default=("avalanche", "snowball", "minimum_only"),
        description="Strategies to simulate"
    )
    custom_order: Tuple[str, ...] = Field(default=(), description="Debt ids for the custom strategy")
    consolidation_rate: Optional[float] = Field(default=None, description="Rate of a consolidation loan")
    consolidation_term_months: Optional[int] = Field(default=None, description="Term of the consolidation loan")
    origination_fee: float = Field(default=0.0, description="Consolidation fee as a fraction of principal")


# ---------------------------------------------------------------------------
# Expense-based FIRE and pension offsets
# ---------------------------------------------------------------------------

class ExpenseCategorySpec(BaseModel):
    """One spending category."""

    model_config = _PARAMS_CONFIG

    name: str = Field(description="Category name (housing, food, ...)")
    monthly_amount: float = Field(description="Current monthly spending")
    inflation_rate: float = Field(default=DEFAULT_INFLATION_RATE, description="Category inflation")
    essential: bool = Field(default=True, description="Essential spending")
    location_sensitive: bool = Field(default=False, description="Scaled by the cost-of-living index")


class ExpenseFireParams(BaseModel):
    """FIRE number built from inflated spending categories."""

    model_config = _PARAMS_CONFIG

    kind: Literal["expense_based_fire"] = "expense_based_fire"
    categories: Tuple[ExpenseCategorySpec, ...] = Field(description="Spending categories")
    withdrawal_rate: float = Field(default=DEFAULT_WITHDRAWAL_RATE, description="Sustainable withdrawal rate")
    projection_years: int = Field(default=DEFAULT_EXPENSE_PROJECTION_YEARS, description="Inflation horizon")
    cost_of_living_index: float = Field(default=1.0, description="Local cost-of-living index")
    location: Optional[str] = Field(default=None, description="Location label")


class BenefitScenarioSpec(BaseModel):
    """Adverse adjustments for the pension stress test."""

    model_config = _PARAMS_CONFIG

    name: str = Field(description="Scenario name")
    market_return_adjustment: float = Field(default=0.0, description="Change to the withdrawal rate")
    inflation_adjustment: float = Field(default=0.0, description="Extra inflation")
    benefit_adjustment: float = Field(default=0.0, description="Relative benefit change")
    healthcare_inflation_adjustment: float = Field(default=0.0, description="Extra healthcare inflation")


class SocialSecurityParams(BaseModel):
    """Pension benefit estimate and its offset to a FIRE target."""

    model_config = _PARAMS_CONFIG

    kind: Literal["social_security"] = "social_security"
    current_age: float = Field(description="Age today")
    annual_income: float = Field(description="Gross annual income")
    retirement_age: float = Field(description="Planned retirement age")
    base_fire_number: float = Field(description="FIRE target before the benefit")
    claiming_age: int = Field(default=FULL_RETIREMENT_AGE, description="Age benefits are claimed")
    life_expectancy: int = Field(default=DEFAULT_LIFE_EXPECTANCY, description="Age used to value benefits")
    withdrawal_rate: float = Field(default=DEFAULT_WITHDRAWAL_RATE, description="Sustainable withdrawal rate")
    stress_scenarios: Optional[Tuple[BenefitScenarioSpec, ...]] = Field(
        default=None,
        description="Scenarios to run; default set when omitted"
    )


# ---------------------------------------------------------------------------
# Stochastic calculators
# ---------------------------------------------------------------------------

class MonteCarloParams(BaseModel):
    """Random return paths with monthly contributions."""

    model_config = _PARAMS_CONFIG

    kind: Literal["monte_carlo"] = "monte_carlo"
    initial_value: float = Field(description="Starting balance")
    monthly_contribution: float = Field(default=0.0, description="Contribution per month")
    years: float = Field(description="Projection horizon in years")
    expected_return: float = Field(description="Mean annual return")
    volatility: float = Field(description="Annual return standard deviation")
    iterations: int = Field(default=DEFAULT_ITERATIONS, description="Number of simulated paths")
    target: Optional[float] = Field(default=None, description="Ending value counted as success")
    inflation_rate: Optional[float] = Field(default=None, description="Inflation for real values")


class StressTestParams(BaseModel):
    """Base projection plus named or custom shock scenarios."""

    model_config = _PARAMS_CONFIG

    kind: Literal["market_stress_test"] = "market_stress_test"
    current_net_worth: float = Field(description="Invested net worth today")
    monthly_contribution: float = Field(default=0.0, description="Contribution per month")
    expected_return: float = Field(description="Baseline annual return")
    volatility: float = Field(default=0.0, description="Annual volatility for Monte Carlo comparison")
    target_amount: float = Field(description="Goal (e.g. FIRE number)")
    horizon_years: float = Field(default=30.0, description="Projection horizon in years")
    emergency_fund_months: float = Field(default=6.0, description="Months of expenses held in cash")
    scenarios: Tuple[str, ...] = Field(default=(), description="Named scenarios; empty runs all")
    shock_magnitude: Optional[float] = Field(default=None, description="Custom cumulative shock (e.g. -0.4)")
    shock_duration_months: int = Field(default=1, description="Custom shock duration")
    recovery_pattern: RecoveryKind = Field(default="gradual", description="Custom recovery pattern")
    recovery_months: int = Field(default=24, description="Custom recovery window")
    recovery_strength: float = Field(default=1.0, description="Fraction of the loss recovered")
    contribution_reduction: float = Field(default=0.0, description="Contribution cut during the shock")
    iterations: int = Field(default=0, description="Monte Carlo paths per scenario (0 = deterministic only)")


RequestParams = Annotated[
    Union[
        FutureValueParams,
        FireNumberParams,
        CoastFireParams,
        BaristaFireParams,
        RequiredSavingsRateParams,
        GoalPlanningParams,
        DebtPayoffParams,
        ExpenseFireParams,
        SocialSecurityParams,
        MonteCarloParams,
        StressTestParams,
    ],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Request envelope
# ---------------------------------------------------------------------------

class CalculationRequest(BaseModel):
    """
    Immutable calculation request.

    Attributes
    ----------
    params : RequestParams
        Kind-specific parameters; ``params.kind`` is the tag.
    caller_id : str
        Identity used for rate limiting and audit events.
    seed : int, optional
        Random seed for Monte Carlo and stress tests.
    timeout_s : float, optional
        Deadline in seconds, counted from submission.
    use_cache : bool
        When False the cache is bypassed for this request.

    Examples
    --------
    >>> req = CalculationRequest(params=FireNumberParams(annual_expenses=40_000))
    >>> req.kind
    'fire_number'
    """

    model_config = ConfigDict(frozen=True, extra="forbid", allow_inf_nan=False)

    params: RequestParams
    caller_id: str = Field(default="anonymous", description="Caller identity")
    seed: Optional[int] = Field(default=None, description="Random seed")
    timeout_s: Optional[float] = Field(default=None, gt=0, description="Deadline (seconds)")
    use_cache: bool = Field(default=True, description="Allow cached results")

    @property
    def kind(self) -> str:
        """Calculation kind tag."""
        return self.params.kind

    @property
    def cost_class(self) -> str:
        """Rate-limit bucket: 'expensive' for stochastic kinds, else 'standard'."""
        return "expensive" if self.kind in EXPENSIVE_KINDS else "standard"

    @property
    def is_stochastic(self) -> bool:
        """True if the result depends on random draws."""
        if self.kind == "monte_carlo":
            return True
        return self.kind == "market_stress_test" and self.params.iterations > 0

    @property
    def cacheable(self) -> bool:
        """Cache allowed and, for stochastic kinds, reproducible via a seed."""
        return self.use_cache and not (self.is_stochastic and self.seed is None)

    @classmethod
    def build(
        cls,
        kind: str,
        params: Mapping[str, Any],
        *,
        caller_id: str = "anonymous",
        seed: Optional[int] = None,
        timeout_s: Optional[float] = None,
        use_cache: bool = True,
    ) -> "CalculationRequest":
        """Build a request from a kind tag and a flat parameter mapping."""
        return cls.model_validate({
            "params": {**dict(params), "kind": kind},
            "caller_id": caller_id,
            "seed": seed,
            "timeout_s": timeout_s,
            "use_cache": use_cache,
        })

    def with_params(self, **updates: Any) -> "CalculationRequest":
        """Return a copy with some parameters replaced (no re-validation)."""
        return self.model_copy(update={"params": self.params.model_copy(update=updates)})
