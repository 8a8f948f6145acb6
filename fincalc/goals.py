"""
Multi-goal savings allocation for fincalc.

Purpose
-------
Several savings goals compete for one income stream. Each goal is first
solved on its own for the monthly contribution it needs; when the total
does not fit within the savings capacity (``income / 12 × max_savings_rate``),
capacity is shared by priority weight.

Allocation Algorithm
--------------------
1. required_i = monthly contribution that reaches goal i by its horizon
2. If Σ required_i <= capacity: every goal gets its requirement.
3. Otherwise, repeat until stable (at most ``max_iterations`` rounds):
   - share_i = remaining_capacity × priority_i / Σ priority (active goals)
   - goals with share_i >= required_i are capped at required_i, removed
     from the active set, and their surplus is returned to the pool
   - when no goal is capped in a round, the shares are final

Underfunded goals report the shortfall at their horizon and the extended
horizon at which their allocation does reach the target (searched month by
month, None beyond 100 years).

Example
-------
>>> from fincalc.goals import Goal, plan_goals
>>> plan = plan_goals(
...     [Goal("emergency", 10_000, 1, priority=3), Goal("house", 80_000, 5)],
...     annual_income=60_000,
...     expected_return=0.04,
... )
>>> plan.feasible
True
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Iterable, List, Optional, Tuple, Union

from .constants import (
    DEFAULT_GOAL_MAX_ITERATIONS,
    DEFAULT_MAX_SAVINGS_RATE,
    MAX_HORIZON_YEARS,
    MONTHS_PER_YEAR,
)
from .exceptions import DomainError, ValidationError
from .numeric import future_value, horizon_months, required_savings_rate
from .utils import CENTS, MONEY_CONTEXT, ensure_finite, nominal_monthly_rate, quantize_money, to_decimal

__all__ = ["Goal", "GoalAllocation", "GoalPlanResult", "plan_goals"]

Number = Union[int, float, Decimal]


# ---------------------------------------------------------------------------
# Goal specification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Goal:
    """
    One savings goal.

    Parameters
    ----------
    name : str
        Goal identifier (unique within a plan).
    target_amount : float
        Amount needed at the horizon (>= 0).
    years : float
        Years until the goal is due (> 0).
    current_saved : float, default 0
        Amount already set aside, grown at the plan's expected return.
    priority : float, default 1
        Relative weight when capacity is short (> 0).
    """

    name: str
    target_amount: float
    years: float
    current_saved: float = 0.0
    priority: float = 1.0

    def __post_init__(self):
        if not self.name:
            raise ValidationError("goal name must not be empty", field="name")
        if ensure_finite("target_amount", self.target_amount) < 0:
            raise DomainError(
                f"target_amount must be >= 0, got {self.target_amount}", field="target_amount"
            )
        if ensure_finite("years", self.years) <= 0:
            raise DomainError(f"years must be > 0, got {self.years}", field="years")
        if ensure_finite("current_saved", self.current_saved) < 0:
            raise DomainError(
                f"current_saved must be >= 0, got {self.current_saved}", field="current_saved"
            )
        if ensure_finite("priority", self.priority) <= 0:
            raise ValidationError(f"priority must be > 0, got {self.priority}", field="priority")

    def __repr__(self) -> str:
        return (
            f"Goal({self.name!r}, target={self.target_amount:,.0f}, "
            f"years={self.years:g}, priority={self.priority:g})"
        )


@dataclass(frozen=True)
class GoalAllocation:
    name: str
    priority: float
    required_monthly: Decimal
    allocated_monthly: Decimal
    projected_amount: Decimal
    shortfall: Decimal
    extended_horizon_months: Optional[int]

    @property
    def funded(self) -> bool:
        return self.allocated_monthly >= self.required_monthly


@dataclass(frozen=True)
class GoalPlanResult:
    allocations: Tuple[GoalAllocation, ...]
    capacity: Decimal
    total_required: Decimal
    total_allocated: Decimal
    feasible: bool
    iterations: int
    warnings: Tuple[str, ...] = ()

    def allocation(self, name: str) -> GoalAllocation:
        for a in self.allocations:
            if a.name == name:
                return a
        raise KeyError(name)


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------

def _months_to_reach(
    start: Decimal, monthly: Decimal, monthly_rate: Decimal, target: Decimal
) -> Optional[int]:
    """First month at which a balance with level contributions reaches *target*."""
    if start >= target:
        return 0
    limit = MAX_HORIZON_YEARS * MONTHS_PER_YEAR
    growth = MONEY_CONTEXT.add(Decimal(1), monthly_rate)
    balance = start
    for month in range(1, limit + 1):
        balance = MONEY_CONTEXT.add(MONEY_CONTEXT.multiply(balance, growth), monthly)
        if balance >= target:
            return month
    return None


def _share(pool: Decimal, weight: float, total_weight: float) -> Decimal:
    portion = MONEY_CONTEXT.divide(
        MONEY_CONTEXT.multiply(pool, to_decimal(weight)), to_decimal(total_weight)
    )
    return portion.quantize(CENTS, rounding=ROUND_DOWN)


def plan_goals(
    goals: Iterable[Goal],
    annual_income: Number,
    expected_return: Number,
    max_savings_rate: Number = DEFAULT_MAX_SAVINGS_RATE,
    max_iterations: int = DEFAULT_GOAL_MAX_ITERATIONS,
) -> GoalPlanResult:
    """
    Allocate a shared savings capacity across goals by priority.

    Parameters
    ----------
    goals : iterable of Goal
        Goals to fund; names must be unique.
    annual_income : float
        Gross annual income (> 0).
    expected_return : float
        Nominal annual return used for every goal.
    max_savings_rate : float, default 0.95
        Fraction of income available for all goals together.
    max_iterations : int, default 50
        Bound on redistribution rounds.

    Returns
    -------
    GoalPlanResult
        Per-goal allocations; ``feasible`` is True when every goal is fully
        funded. ``total_allocated`` never exceeds ``capacity``.

    Raises
    ------
    DomainError
        Non-positive income.
    ValidationError
        Empty or duplicate goal names, cap outside (0, 1].
    """
    goal_list: List[Goal] = list(goals)
    if not goal_list:
        raise ValidationError("at least one goal is required", field="goals")
    names = [g.name for g in goal_list]
    if len(set(names)) != len(names):
        raise ValidationError(f"goal names must be unique, got {names}", field="goals")
    income = to_decimal(annual_income, name="annual_income")
    if income <= 0:
        raise DomainError(f"annual_income must be > 0, got {income}", field="annual_income")
    cap = to_decimal(max_savings_rate, name="max_savings_rate")
    if not (0 < cap <= 1):
        raise ValidationError(
            f"max_savings_rate must be in (0, 1], got {cap}", field="max_savings_rate"
        )
    if max_iterations < 1:
        raise ValidationError(
            f"max_iterations must be >= 1, got {max_iterations}", field="max_iterations"
        )

    capacity = MONEY_CONTEXT.multiply(
        MONEY_CONTEXT.divide(income, Decimal(MONTHS_PER_YEAR)), cap
    ).quantize(CENTS, rounding=ROUND_DOWN)

    required = {
        g.name: required_savings_rate(
            g.target_amount, g.years, g.current_saved, expected_return
        ).monthly_contribution
        for g in goal_list
    }
    total_required = sum(required.values(), Decimal("0.00"))

    warnings: List[str] = []
    iterations = 0
    if total_required <= capacity:
        allocated = dict(required)
    else:
        allocated = {g.name: Decimal("0.00") for g in goal_list}
        active = [g for g in goal_list if required[g.name] > 0]
        pool = capacity
        stable = False
        while active and iterations < max_iterations:
            iterations += 1
            total_weight = sum(g.priority for g in active)
            shares = {g.name: _share(pool, g.priority, total_weight) for g in active}
            capped = [g for g in active if shares[g.name] >= required[g.name]]
            if not capped:
                allocated.update(shares)
                stable = True
                break
            for g in capped:
                allocated[g.name] = required[g.name]
                pool -= required[g.name]
            active = [g for g in active if g not in capped]
        if not stable and active:
            # Out of rounds: hand out what is left by weight.
            total_weight = sum(g.priority for g in active)
            for g in active:
                allocated[g.name] = _share(pool, g.priority, total_weight)
            warnings.append(
                f"allocation did not stabilise within {max_iterations} iterations"
            )

    monthly_rate = nominal_monthly_rate(to_decimal(expected_return, name="expected_return"))
    results = []
    for g in goal_list:
        alloc = allocated[g.name]
        projected = future_value(
            g.current_saved, expected_return, g.years, monthly_contribution=alloc
        ).future_value
        target = quantize_money(to_decimal(g.target_amount))
        if alloc >= required[g.name]:
            # Cent rounding of the requirement may leave a sub-dollar gap.
            shortfall = Decimal("0.00")
        else:
            shortfall = max(target - projected, Decimal("0.00"))
        if shortfall > 0:
            extended = _months_to_reach(
                to_decimal(g.current_saved), alloc, monthly_rate, target
            )
        else:
            extended = horizon_months(g.years)
        results.append(GoalAllocation(
            name=g.name,
            priority=g.priority,
            required_monthly=required[g.name],
            allocated_monthly=alloc,
            projected_amount=projected,
            shortfall=shortfall,
            extended_horizon_months=extended,
        ))

    total_allocated = sum(allocated.values(), Decimal("0.00"))
    return GoalPlanResult(
        allocations=tuple(results),
        capacity=capacity,
        total_required=total_required,
        total_allocated=total_allocated,
        feasible=total_required <= capacity,
        iterations=iterations,
        warnings=tuple(warnings),
    )
