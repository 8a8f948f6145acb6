"""
Unit tests for debt.py module.

Tests DebtAccount validation, priority ordering, month-by-month payoff
simulation, strategy comparison and consolidation analysis.
"""

from decimal import Decimal

import numpy as np
import pandas as pd
import pytest

from fincalc.config import DebtConfig
from fincalc.debt import (
    DebtAccount,
    DebtStrategyPlanner,
    compare_strategies,
    consolidation_analysis,
    priority_order,
    simulate_payoff,
)
from fincalc.exceptions import DomainError, ValidationError


def _random_debts(seed):
    rng = np.random.default_rng(seed)
    debts = []
    for i in range(int(rng.integers(2, 6))):
        balance = round(float(rng.uniform(500, 20_000)), 2)
        debts.append(DebtAccount(
            id=f"d{i}",
            balance=balance,
            annual_rate=round(float(rng.uniform(0.0, 0.30)), 4),
            minimum_payment=round(max(25.0, balance * 0.02), 2),
        ))
    budget = round(sum(d.minimum_payment for d in debts) * 1.5, 2)
    return debts, budget


# ============================================================================
# ACCOUNTS AND ORDERING
# ============================================================================

class TestDebtAccount:

    def test_label_defaults_to_id(self):
        assert DebtAccount("card", 100, 0.2, 10).label == "card"
        assert DebtAccount("card", 100, 0.2, 10, name="Visa").label == "Visa"

    def test_negative_balance_rejected(self):
        with pytest.raises(DomainError):
            DebtAccount("card", -1, 0.2, 10)

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            DebtAccount("", 100, 0.2, 10)


class TestPriorityOrder:

    def test_avalanche_highest_rate_first(self, debts):
        assert [d.id for d in priority_order(debts, "avalanche")] == ["card", "store", "car"]

    def test_snowball_smallest_balance_first(self, debts):
        assert [d.id for d in priority_order(debts, "snowball")] == ["store", "card", "car"]

    def test_custom_then_avalanche(self, debts):
        order = priority_order(debts, "custom", ["car"])
        assert [d.id for d in order] == ["car", "card", "store"]

    def test_custom_unknown_id(self, debts):
        with pytest.raises(ValidationError):
            priority_order(debts, "custom", ["boat"])

    def test_unknown_strategy(self, debts):
        with pytest.raises(ValidationError):
            priority_order(debts, "random")


# ============================================================================
# SIMULATION
# ============================================================================

class TestSimulate:

    def test_empty_debts_resolve_immediately(self):
        result = simulate_payoff([], 500)

        assert result.feasible and result.completed
        assert result.months == 0

    def test_budget_below_minimums_is_infeasible(self, debts):
        result = simulate_payoff(debts, 100)

        assert result.feasible is False
        assert "below the sum of minimum payments" in result.reason

    def test_zero_rate_single_debt(self):
        result = simulate_payoff([DebtAccount("loan", 1_000, 0.0, 100)], 100)

        assert result.months == 10
        assert result.total_interest == Decimal("0.00")
        assert result.total_paid == Decimal("1000.00")

    def test_first_month_interest(self):
        result = simulate_payoff([DebtAccount("loan", 1_000, 0.12, 100)], 100)

        assert result.schedule[0].interest == Decimal("10.00")
        assert result.schedule[0].balance == Decimal("910.00")

    def test_payments_cover_principal_and_interest(self, debts):
        result = simulate_payoff(debts, 800)
        principal = sum(Decimal(str(d.balance)) for d in debts)

        assert result.completed
        assert result.total_paid == principal + result.total_interest

    def test_snowball_pays_smallest_first(self, debts):
        result = simulate_payoff(debts, 800, "snowball")

        assert result.payoff_order[0] == "store"

    def test_minimum_only_is_slower(self, debts):
        fast = simulate_payoff(debts, 800, "avalanche")
        slow = simulate_payoff(debts, 800, "minimum_only")

        assert slow.months > fast.months
        assert slow.total_interest > fast.total_interest

    def test_duplicate_ids_rejected(self):
        dup = [DebtAccount("a", 100, 0.1, 10), DebtAccount("a", 200, 0.1, 10)]
        with pytest.raises(ValidationError):
            simulate_payoff(dup, 100)

    def test_horizon_cap_reports_incomplete(self):
        planner = DebtStrategyPlanner(DebtConfig(max_months=12))

        result = planner.simulate([DebtAccount("mortgage", 200_000, 0.05, 1_100)], 1_100)

        assert result.completed is False
        assert result.months == 12
        assert result.warnings

    def test_schedule_frame(self, debts):
        frame = simulate_payoff(debts, 800).schedule_frame()

        assert isinstance(frame, pd.DataFrame)
        assert list(frame.columns) == ["month", "debt_id", "payment", "interest", "balance"]
        assert frame["month"].min() == 1

    @pytest.mark.parametrize("seed", range(20))
    def test_avalanche_never_costs_more_interest(self, seed):
        """Avalanche interest <= snowball interest (+$1 for cent rounding)."""
        debts, budget = _random_debts(seed)

        avalanche = simulate_payoff(debts, budget, "avalanche")
        snowball = simulate_payoff(debts, budget, "snowball")

        assert avalanche.completed and snowball.completed
        assert avalanche.total_interest <= snowball.total_interest + Decimal("1.00")


# ============================================================================
# COMPARISON AND CONSOLIDATION
# ============================================================================

class TestCompareStrategies:

    def test_savings_are_differences(self, debts):
        comparison = compare_strategies(debts, 800)

        assert comparison.interest_savings == (
            comparison.snowball.total_interest - comparison.avalanche.total_interest
        )
        assert comparison.recommended in ("avalanche", "snowball")

    def test_equal_rates_recommend_snowball(self):
        same = [DebtAccount("a", 1_000, 0.1, 50), DebtAccount("b", 3_000, 0.1, 90)]

        comparison = compare_strategies(same, 400)

        assert comparison.interest_savings == Decimal("0.00")
        assert comparison.recommended == "snowball"

    def test_infeasible_budget_recommends_nothing(self, debts):
        assert compare_strategies(debts, 100).recommended is None


class TestConsolidation:

    def test_principal_includes_fee(self, debts):
        analysis = consolidation_analysis(debts, 800, 0.08, 60, origination_fee=0.02)

        assert analysis.origination_cost == Decimal("356.00")
        assert analysis.consolidated_principal == Decimal("18156.00")
        assert analysis.interest_savings == (
            analysis.current.total_interest
            - analysis.consolidated.total_interest
            - analysis.origination_cost
        )

    def test_payment_above_budget_not_beneficial(self, debts):
        analysis = consolidation_analysis(debts, 800, 0.08, 12)

        assert analysis.consolidated_payment > Decimal("800")
        assert analysis.beneficial is False

    def test_invalid_term(self, debts):
        with pytest.raises(DomainError):
            consolidation_analysis(debts, 800, 0.08, 0)


class TestPlan:

    def test_plan_runs_requested_strategies(self, debts):
        plan = DebtStrategyPlanner().plan(debts, 800, strategies=("avalanche", "snowball"))

        assert set(plan.strategies) == {"avalanche", "snowball"}
        assert plan.comparison is not None
        assert plan.consolidation is None

    def test_comparison_reuses_strategy_runs(self, debts, monkeypatch):
        planner = DebtStrategyPlanner()
        simulate = planner.simulate
        calls = []

        def counting(debt_list, budget, strategy, *args, **kwargs):
            calls.append(strategy)
            return simulate(debt_list, budget, strategy, *args, **kwargs)

        monkeypatch.setattr(planner, "simulate", counting)
        plan = planner.plan(debts, 800)

        assert sorted(calls) == ["avalanche", "minimum_only", "snowball"]
        assert plan.comparison.avalanche is plan.strategies["avalanche"]
        assert plan.comparison.snowball is plan.strategies["snowball"]

    def test_plan_with_consolidation(self, debts):
        plan = DebtStrategyPlanner().plan(debts, 800, consolidated_rate=0.07)

        assert plan.consolidation is not None
        assert plan.consolidation.consolidated.strategy == "avalanche"
