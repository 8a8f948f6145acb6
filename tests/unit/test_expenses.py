"""
Unit tests for expenses.py module.

Tests category validation, location adjustment, inflation projection,
savings opportunities and the tabular breakdown.
"""

from decimal import Decimal

import pandas as pd
import pytest

from fincalc.exceptions import DomainError, ValidationError
from fincalc.expenses import ExpenseCategory, expense_based_fire, location_multiplier


@pytest.fixture
def categories():
    return [
        ExpenseCategory("Housing", 2_000, inflation_rate=0.0, location_sensitive=True),
        ExpenseCategory("food", 500, inflation_rate=0.0, essential=False),
        ExpenseCategory("gym", 100, inflation_rate=0.0, essential=False),
    ]


# ============================================================================
# CATEGORIES
# ============================================================================

class TestExpenseCategory:

    def test_negative_amount_rejected(self):
        with pytest.raises(DomainError):
            ExpenseCategory("food", -1)

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            ExpenseCategory("  ", 100)

    def test_inflation_at_minus_one_rejected(self):
        with pytest.raises(DomainError):
            ExpenseCategory("food", 100, inflation_rate=-1.0)


class TestLocationMultiplier:

    def test_sensitive_category_scales_with_index(self):
        housing = ExpenseCategory("housing", 1_000, location_sensitive=True)

        assert location_multiplier(housing, 2) == Decimal("2.4")

    def test_unknown_category_uses_index(self):
        other = ExpenseCategory("pets", 100, location_sensitive=True)

        assert location_multiplier(other, 1.5) == Decimal("1.5")

    def test_insensitive_category_ignores_index(self):
        assert location_multiplier(ExpenseCategory("housing", 1_000), 3) == Decimal(1)


# ============================================================================
# CALCULATOR
# ============================================================================

class TestExpenseBasedFire:

    def test_totals(self, categories):
        result = expense_based_fire(categories, cost_of_living_index=1.5, projection_years=0)

        # housing 2000 x 1.8 x 12 / 0.04, food 6000 / 0.04, gym 1200 / 0.04
        assert result.fire_number == Decimal("1260000.00")
        assert result.current_annual_total == Decimal("50400.00")
        assert result.inflation_increase == Decimal("0.00")

    def test_inflation_projection(self):
        result = expense_based_fire([ExpenseCategory("utilities", 1_000, inflation_rate=0.03)])
        row = result.categories[0]

        assert float(row.projected_annual) == pytest.approx(12_000 * 1.03 ** 10, abs=0.01)
        assert float(row.fire_contribution) == pytest.approx(12_000 * 1.03 ** 10 / 0.04, abs=0.01)
        assert float(result.inflation_fire_impact) == pytest.approx(
            (12_000 * 1.03 ** 10 - 12_000) / 0.04, abs=0.01
        )

    def test_opportunities_sorted_by_reduction(self, categories):
        result = expense_based_fire(categories, cost_of_living_index=1.5, projection_years=0)

        assert [o.category for o in result.opportunities] == ["Housing", "food", "gym"]
        housing, food, gym = result.opportunities
        assert housing.fire_reduction == Decimal("324000.00")
        assert housing.difficulty == "hard"
        assert food.fire_reduction == Decimal("37500.00")
        assert gym.fire_reduction == Decimal("4500.00")
        assert gym.suggestion == "Review gym spending for optimization opportunities"

    def test_small_essential_category_has_no_opportunity(self):
        result = expense_based_fire([ExpenseCategory("utilities", 200)], projection_years=0)

        assert result.opportunities == ()

    def test_zero_spending_warns(self):
        result = expense_based_fire([ExpenseCategory("food", 0)])

        assert result.fire_number == Decimal("0.00")
        assert result.warnings

    def test_breakdown_frame(self, categories):
        frame = expense_based_fire(categories).breakdown_frame()

        assert isinstance(frame, pd.DataFrame)
        assert list(frame["category"]) == ["Housing", "food", "gym"]
        assert frame["fire_contribution"].sum() == pytest.approx(
            float(expense_based_fire(categories).fire_number), abs=0.05
        )

    def test_empty_categories_rejected(self):
        with pytest.raises(ValidationError):
            expense_based_fire([])

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValidationError):
            expense_based_fire([ExpenseCategory("Food", 100), ExpenseCategory("food", 200)])

    @pytest.mark.parametrize("years", [-1, 1.5])
    def test_bad_projection_years(self, years):
        with pytest.raises(DomainError):
            expense_based_fire([ExpenseCategory("food", 100)], projection_years=years)

    def test_zero_cost_of_living_index(self):
        with pytest.raises(DomainError):
            expense_based_fire([ExpenseCategory("food", 100)], cost_of_living_index=0)
