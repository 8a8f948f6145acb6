"""
Debt payoff strategy planner for fincalc.

Purpose
-------
Month-by-month simulation of repaying several debts from one monthly
budget under a payment-priority strategy, plus strategy comparison and
consolidation analysis.

Strategies
----------
- avalanche : highest rate first (ties: smaller balance first)
- snowball : smallest balance first (ties: higher rate first)
- custom : caller-supplied order; unlisted debts follow avalanche order
- minimum_only : only minimum payments; freed minimums are not redistributed

Monthly step
------------
1. Accrue interest on every open debt: ``balance × rate / 12`` rounded to
   cents (ROUND_HALF_UP).
2. Pay ``min(minimum, balance)`` on every open debt.
3. Route the remaining budget down the priority order; once a debt is
   cleared, the rest of the payment rolls to the next debt in the same
   month. A cleared debt leaves rotation and its minimum becomes surplus.

The simulation is capped at 600 months; a plan still open at the cap is
reported with ``completed=False`` and a warning.

Example
-------
>>> from fincalc.debt import DebtAccount, compare_strategies
>>> debts = [
...     DebtAccount("card", 5_000, 0.22, 150),
...     DebtAccount("car", 12_000, 0.06, 300),
... ]
>>> comparison = compare_strategies(debts, 800)
>>> comparison.avalanche.total_interest <= comparison.snowball.total_interest
True
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd

from .concurrency import CancellationToken
from .config import DebtConfig
from .constants import (
    AVALANCHE_INTEREST_THRESHOLD,
    AVALANCHE_MONTHS_THRESHOLD,
    MONTHS_PER_YEAR,
)
from .exceptions import DomainError, ValidationError
from .utils import CENTS, MONEY_CONTEXT, amortization_factor, ensure_finite, quantize_money, to_decimal

__all__ = [
    "STRATEGIES",
    "DebtAccount",
    "ScheduleEntry",
    "DebtPayoffDetail",
    "StrategyResult",
    "StrategyComparison",
    "ConsolidationAnalysis",
    "DebtPlanResult",
    "DebtStrategyPlanner",
    "priority_order",
    "simulate_payoff",
    "compare_strategies",
    "consolidation_analysis",
]

Number = Union[int, float, Decimal]

STRATEGIES = ("avalanche", "snowball", "custom", "minimum_only")

_ZERO = Decimal("0.00")


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DebtAccount:
    """
    One debt account.

    Parameters
    ----------
    id : str
        Identifier, unique within a plan.
    balance : float
        Amount owed (>= 0).
    annual_rate : float
        Annual interest rate as a fraction (0.22 == 22% APR), >= 0.
    minimum_payment : float
        Required monthly payment (>= 0).
    debt_type : str, default "loan"
        Free-form tag (credit, loan, mortgage, ...).
    name : str, optional
        Display name; defaults to ``id``.
    """

    id: str
    balance: float
    annual_rate: float
    minimum_payment: float
    debt_type: str = "loan"
    name: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            raise ValidationError("debt id must not be empty", field="id")
        if ensure_finite("balance", self.balance) < 0:
            raise DomainError(f"balance must be >= 0, got {self.balance}", field="balance")
        if ensure_finite("annual_rate", self.annual_rate) < 0:
            raise DomainError(
                f"annual_rate must be >= 0, got {self.annual_rate}", field="annual_rate"
            )
        if ensure_finite("minimum_payment", self.minimum_payment) < 0:
            raise DomainError(
                f"minimum_payment must be >= 0, got {self.minimum_payment}", field="minimum_payment"
            )

    @property
    def label(self) -> str:
        return self.name or self.id


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScheduleEntry:
    month: int
    debt_id: str
    payment: Decimal
    interest: Decimal
    balance: Decimal


@dataclass(frozen=True)
class DebtPayoffDetail:
    debt_id: str
    name: str
    payoff_month: Optional[int]
    payoff_order: Optional[int]
    interest_paid: Decimal
    total_paid: Decimal


@dataclass(frozen=True)
class StrategyResult:
    """Outcome of simulating one strategy."""

    strategy: str
    feasible: bool
    completed: bool
    months: int
    total_interest: Decimal
    total_paid: Decimal
    payoff_order: Tuple[str, ...]
    debts: Tuple[DebtPayoffDetail, ...]
    schedule: Tuple[ScheduleEntry, ...] = field(default=(), repr=False)
    reason: Optional[str] = None
    warnings: Tuple[str, ...] = ()

    def schedule_frame(self) -> pd.DataFrame:
        """Full payment schedule as a DataFrame (one row per debt-month)."""
        columns = ["month", "debt_id", "payment", "interest", "balance"]
        if not self.schedule:
            return pd.DataFrame(columns=columns)
        return pd.DataFrame(
            [
                (e.month, e.debt_id, float(e.payment), float(e.interest), float(e.balance))
                for e in self.schedule
            ],
            columns=columns,
        )


@dataclass(frozen=True)
class StrategyComparison:
    avalanche: StrategyResult
    snowball: StrategyResult
    interest_savings: Decimal
    months_savings: int
    recommended: Optional[str]
    reason: str


@dataclass(frozen=True)
class ConsolidationAnalysis:
    current: StrategyResult
    consolidated: StrategyResult
    consolidated_principal: Decimal
    consolidated_payment: Decimal
    origination_cost: Decimal
    interest_savings: Decimal
    months_savings: int
    beneficial: bool
    reason: str


@dataclass(frozen=True)
class DebtPlanResult:
    strategies: Dict[str, StrategyResult]
    comparison: Optional[StrategyComparison] = None
    consolidation: Optional[ConsolidationAnalysis] = None
    warnings: Tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

def _avalanche_key(indexed: Tuple[int, DebtAccount]):
    i, d = indexed
    return (-d.annual_rate, d.balance, i)


def _snowball_key(indexed: Tuple[int, DebtAccount]):
    i, d = indexed
    return (d.balance, -d.annual_rate, i)


def priority_order(
    debts: Sequence[DebtAccount],
    strategy: str,
    custom_order: Sequence[str] = (),
) -> List[DebtAccount]:
    """
    Payment priority of *debts* under *strategy*.

    The order is fixed from the starting balances and rates.

    Raises
    ------
    ValidationError
        Unknown strategy, or custom order naming an unknown debt.
    """
    indexed = list(enumerate(debts))
    if strategy in ("avalanche", "minimum_only"):
        return [d for _, d in sorted(indexed, key=_avalanche_key)]
    if strategy == "snowball":
        return [d for _, d in sorted(indexed, key=_snowball_key)]
    if strategy == "custom":
        by_id = {d.id: d for d in debts}
        unknown = [i for i in custom_order if i not in by_id]
        if unknown:
            raise ValidationError(f"custom_order names unknown debts: {unknown}", field="custom_order")
        seen = list(dict.fromkeys(custom_order))
        rest = [d for _, d in sorted(indexed, key=_avalanche_key) if d.id not in seen]
        return [by_id[i] for i in seen] + rest
    raise ValidationError(
        f"strategy must be one of {STRATEGIES}, got {strategy!r}", field="strategy"
    )


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------

class DebtStrategyPlanner:
    """
    Month-by-month debt payoff simulator.

    Parameters
    ----------
    config : DebtConfig, optional
        Simulation horizon cap (default 600 months).
    """

    def __init__(self, config: Optional[DebtConfig] = None):
        self.cfg = config if config is not None else DebtConfig()

    # -------------------- Simulation --------------------
    def simulate(
        self,
        debts: Iterable[DebtAccount],
        monthly_budget: Number,
        strategy: str = "avalanche",
        custom_order: Sequence[str] = (),
        token: Optional[CancellationToken] = None,
    ) -> StrategyResult:
        """
        Simulate repaying *debts* from *monthly_budget* under *strategy*.

        An empty debt list resolves immediately (zero months). A budget
        below the sum of minimum payments is reported as infeasible and
        not simulated.
        """
        debt_list = list(debts)
        _check_unique_ids(debt_list)
        budget = to_decimal(monthly_budget, name="monthly_budget")
        if budget < 0:
            raise DomainError(f"monthly_budget must be >= 0, got {budget}", field="monthly_budget")
        order = priority_order(debt_list, strategy, custom_order)

        if not debt_list:
            return StrategyResult(
                strategy=strategy, feasible=True, completed=True, months=0,
                total_interest=_ZERO, total_paid=_ZERO, payoff_order=(), debts=(),
            )

        minimums = sum((quantize_money(to_decimal(d.minimum_payment)) for d in debt_list), _ZERO)
        if budget < minimums:
            return StrategyResult(
                strategy=strategy, feasible=False, completed=False, months=0,
                total_interest=_ZERO, total_paid=_ZERO, payoff_order=(),
                debts=tuple(
                    DebtPayoffDetail(d.id, d.label, None, None, _ZERO, _ZERO) for d in debt_list
                ),
                reason=f"monthly budget {budget} is below the sum of minimum payments {minimums}",
            )

        balances = {d.id: quantize_money(to_decimal(d.balance)) for d in debt_list}
        rates = {d.id: MONEY_CONTEXT.divide(to_decimal(d.annual_rate), Decimal(MONTHS_PER_YEAR)) for d in debt_list}
        mins = {d.id: quantize_money(to_decimal(d.minimum_payment)) for d in debt_list}
        interest_paid = {d.id: _ZERO for d in debt_list}
        paid = {d.id: _ZERO for d in debt_list}
        payoff_month: Dict[str, int] = {d.id: 0 for d in debt_list if balances[d.id] == 0}
        payoff_seq: List[str] = [d.id for d in order if d.id in payoff_month]
        schedule: List[ScheduleEntry] = []

        month = 0
        while len(payoff_month) < len(debt_list) and month < self.cfg.max_months:
            month += 1
            if token is not None and month % MONTHS_PER_YEAR == 0:
                token.check()
            open_ids = [d.id for d in order if d.id not in payoff_month]

            interest_now = {}
            for i in open_ids:
                charge = (balances[i] * rates[i]).quantize(CENTS, rounding=ROUND_HALF_UP)
                balances[i] += charge
                interest_paid[i] += charge
                interest_now[i] = charge

            payment_now = {i: _ZERO for i in open_ids}
            available = budget
            for i in open_ids:
                pay = min(mins[i], balances[i])
                balances[i] -= pay
                payment_now[i] += pay
                available -= pay

            if strategy != "minimum_only":
                for i in open_ids:
                    if available <= 0:
                        break
                    pay = min(available, balances[i])
                    balances[i] -= pay
                    payment_now[i] += pay
                    available -= pay

            for i in open_ids:
                paid[i] += payment_now[i]
                schedule.append(ScheduleEntry(month, i, payment_now[i], interest_now[i], balances[i]))
                if balances[i] <= 0:
                    payoff_month[i] = month
                    payoff_seq.append(i)

        completed = len(payoff_month) == len(debt_list)
        warnings: Tuple[str, ...] = ()
        if not completed:
            warnings = (
                f"{strategy}: debts not repaid within {self.cfg.max_months} months",
            )

        rank = {i: n for n, i in enumerate(payoff_seq, start=1)}
        details = tuple(
            DebtPayoffDetail(
                debt_id=d.id,
                name=d.label,
                payoff_month=payoff_month.get(d.id),
                payoff_order=rank.get(d.id),
                interest_paid=interest_paid[d.id],
                total_paid=paid[d.id],
            )
            for d in debt_list
        )
        return StrategyResult(
            strategy=strategy,
            feasible=True,
            completed=completed,
            months=max(payoff_month.values(), default=0) if completed else month,
            total_interest=sum(interest_paid.values(), _ZERO),
            total_paid=sum(paid.values(), _ZERO),
            payoff_order=tuple(payoff_seq),
            debts=details,
            schedule=tuple(schedule),
            warnings=warnings,
        )

    # -------------------- Comparison --------------------
    def compare_strategies(
        self,
        debts: Iterable[DebtAccount],
        monthly_budget: Number,
        token: Optional[CancellationToken] = None,
    ) -> StrategyComparison:
        """
        Compare avalanche with snowball.

        Avalanche is recommended when it saves more than 1,000 in interest
        or more than 6 months; otherwise snowball, whose early wins are
        easier to stick with.
        """
        debt_list = list(debts)
        avalanche = self.simulate(debt_list, monthly_budget, "avalanche", token=token)
        snowball = self.simulate(debt_list, monthly_budget, "snowball", token=token)
        return self.compare_results(avalanche, snowball)

    @staticmethod
    def compare_results(avalanche: StrategyResult, snowball: StrategyResult) -> StrategyComparison:
        """Build the comparison from two finished simulations."""
        interest_savings = snowball.total_interest - avalanche.total_interest
        months_savings = snowball.months - avalanche.months
        if not avalanche.feasible:
            recommended = None
            reason = avalanche.reason or "budget does not cover minimum payments"
        elif (
            interest_savings > Decimal(str(AVALANCHE_INTEREST_THRESHOLD))
            or months_savings > AVALANCHE_MONTHS_THRESHOLD
        ):
            recommended = "avalanche"
            reason = (
                f"avalanche saves {interest_savings} in interest and "
                f"{months_savings} months"
            )
        else:
            recommended = "snowball"
            reason = (
                f"avalanche saves only {interest_savings} in interest and "
                f"{months_savings} months; snowball gives quicker wins"
            )
        return StrategyComparison(
            avalanche=avalanche,
            snowball=snowball,
            interest_savings=interest_savings,
            months_savings=months_savings,
            recommended=recommended,
            reason=reason,
        )

    def consolidation_analysis(
        self,
        debts: Iterable[DebtAccount],
        monthly_budget: Number,
        consolidated_rate: Number,
        term_months: int,
        origination_fee: Number = 0,
        token: Optional[CancellationToken] = None,
    ) -> ConsolidationAnalysis:
        """
        Current debt mix (avalanche) versus one consolidated loan.

        The consolidated principal is the total balance grown by the
        origination fee; its minimum payment amortizes that principal over
        ``term_months``. Both plans are simulated under the same budget.
        Savings count the fee as a cost.
        """
        debt_list = list(debts)
        rate = ensure_finite("consolidated_rate", consolidated_rate)
        if rate < 0:
            raise DomainError(f"consolidated_rate must be >= 0, got {rate}", field="consolidated_rate")
        if term_months is None or term_months < 1:
            raise DomainError(f"term_months must be >= 1, got {term_months}", field="term_months")
        fee = to_decimal(origination_fee, name="origination_fee")
        if fee < 0:
            raise DomainError(f"origination_fee must be >= 0, got {fee}", field="origination_fee")

        total = sum((quantize_money(to_decimal(d.balance)) for d in debt_list), _ZERO)
        cost = quantize_money(total * fee)
        principal = total + cost
        payment = quantize_money(
            principal * to_decimal(amortization_factor(rate / MONTHS_PER_YEAR, int(term_months)))
        )

        current = self.simulate(debt_list, monthly_budget, "avalanche", token=token)
        loan = DebtAccount("consolidated", float(principal), rate, float(payment), debt_type="consolidation")
        consolidated = self.simulate([loan], monthly_budget, "avalanche", token=token)

        interest_savings = current.total_interest - (consolidated.total_interest + cost)
        months_savings = current.months - consolidated.months
        if not consolidated.feasible:
            beneficial = False
            reason = f"consolidated payment {payment} exceeds the monthly budget"
        elif not current.feasible:
            beneficial = True
            reason = "consolidation lowers the minimum payments below the budget"
        else:
            beneficial = interest_savings > 0
            reason = (
                f"consolidation saves {interest_savings} (after fees) and {months_savings} months"
                if beneficial
                else f"consolidation costs {-interest_savings} more (after fees)"
            )
        return ConsolidationAnalysis(
            current=current,
            consolidated=consolidated,
            consolidated_principal=principal,
            consolidated_payment=payment,
            origination_cost=cost,
            interest_savings=interest_savings,
            months_savings=months_savings,
            beneficial=beneficial,
            reason=reason,
        )

    def plan(
        self,
        debts: Iterable[DebtAccount],
        monthly_budget: Number,
        strategies: Sequence[str] = ("avalanche", "snowball", "minimum_only"),
        custom_order: Sequence[str] = (),
        consolidated_rate: Optional[Number] = None,
        term_months: Optional[int] = None,
        origination_fee: Number = 0,
        token: Optional[CancellationToken] = None,
    ) -> DebtPlanResult:
        """Simulate every requested strategy, compare, and optionally analyse consolidation."""
        debt_list = list(debts)
        results = {
            s: self.simulate(debt_list, monthly_budget, s, custom_order, token=token)
            for s in dict.fromkeys(strategies)
        }
        comparison = None
        if "avalanche" in results and "snowball" in results:
            comparison = self.compare_results(results["avalanche"], results["snowball"])
        consolidation = None
        if consolidated_rate is not None and debt_list:
            consolidation = self.consolidation_analysis(
                debt_list, monthly_budget, consolidated_rate,
                term_months or 60, origination_fee, token=token,
            )
        warnings = tuple(w for r in results.values() for w in r.warnings)
        return DebtPlanResult(
            strategies=results,
            comparison=comparison,
            consolidation=consolidation,
            warnings=warnings,
        )


def _check_unique_ids(debts: Sequence[DebtAccount]) -> None:
    ids = [d.id for d in debts]
    if len(set(ids)) != len(ids):
        raise ValidationError(f"debt ids must be unique, got {ids}", field="debts")


# ---------------------------------------------------------------------------
# Module-level shortcuts
# ---------------------------------------------------------------------------

def simulate_payoff(debts, monthly_budget, strategy="avalanche", custom_order=()) -> StrategyResult:
    return DebtStrategyPlanner().simulate(debts, monthly_budget, strategy, custom_order)


def compare_strategies(debts, monthly_budget) -> StrategyComparison:
    return DebtStrategyPlanner().compare_strategies(debts, monthly_budget)


def consolidation_analysis(
    debts, monthly_budget, consolidated_rate, term_months, origination_fee=0
) -> ConsolidationAnalysis:
    return DebtStrategyPlanner().consolidation_analysis(
        debts, monthly_budget, consolidated_rate, term_months, origination_fee
    )
