"""
Unit tests for numeric.py module.

Tests the closed-form calculators: future value, FIRE numbers, coast FIRE,
barista FIRE and required savings rate.
"""

from decimal import Decimal

import pytest

from fincalc.exceptions import DomainError, ValidationError
from fincalc.numeric import (
    barista_fire,
    coast_fire,
    fire_number,
    future_value,
    horizon_months,
    required_savings_rate,
)


def _closed_form_fv(principal, annual_rate, years, contribution):
    r = annual_rate / 12
    n = round(years * 12)
    growth = (1 + r) ** n
    return principal * growth + contribution * (growth - 1) / r


# ============================================================================
# HELPERS
# ============================================================================

class TestHorizonMonths:

    def test_rounds_to_whole_months(self):
        assert horizon_months(1.5) == 18
        assert horizon_months(0) == 0

    def test_negative_years_is_domain_error(self):
        with pytest.raises(DomainError) as exc:
            horizon_months(-1)
        assert exc.value.field == "years"


# ============================================================================
# FUTURE VALUE
# ============================================================================

class TestFutureValue:
    """Tests for future_value()."""

    def test_matches_closed_form(self):
        """FV of 10k at 7% for 10y with 500/month matches the annuity formula."""
        result = future_value(10_000, 0.07, 10, 500)
        expected = _closed_form_fv(10_000, 0.07, 10, 500)

        assert float(result.future_value) == pytest.approx(expected, abs=0.01)
        assert result.months == 120

    def test_amounts_are_cent_decimals(self):
        result = future_value(10_000, 0.07, 10, 500)

        assert isinstance(result.future_value, Decimal)
        assert result.future_value == result.future_value.quantize(Decimal("0.01"))

    def test_totals_add_up(self):
        result = future_value(10_000, 0.07, 10, 500)

        assert result.total_contributions == Decimal("70000.00")
        assert result.total_interest == result.future_value - result.total_contributions

    def test_zero_rate_is_linear(self):
        result = future_value(1_000, 0.0, 1, 100)

        assert result.future_value == Decimal("2200.00")
        assert result.total_interest == Decimal("0.00")

    def test_zero_years_returns_principal(self):
        result = future_value(5_000, 0.05, 0, 100)

        assert result.future_value == Decimal("5000.00")
        assert result.months == 0
        assert result.yearly_balances == ()

    def test_yearly_balances_end_at_future_value(self):
        result = future_value(10_000, 0.07, 10, 500)

        assert len(result.yearly_balances) == 10
        assert result.yearly_balances[-1] == result.future_value
        assert list(result.yearly_balances) == sorted(result.yearly_balances)

    def test_partial_final_year_is_included(self):
        result = future_value(1_000, 0.05, 2.5)

        assert len(result.yearly_balances) == 3
        assert result.yearly_balances[-1] == result.future_value

    def test_annuity_due_exceeds_ordinary(self):
        end = future_value(0, 0.06, 5, 200, contribution_timing="end")
        beginning = future_value(0, 0.06, 5, 200, contribution_timing="beginning")

        assert beginning.future_value > end.future_value

    def test_effective_annual_rate(self):
        result = future_value(1_000, 0.12, 1)

        assert float(result.effective_annual_rate) == pytest.approx(1.01 ** 12 - 1, abs=1e-8)

    def test_negative_principal_rejected(self):
        with pytest.raises(DomainError) as exc:
            future_value(-1, 0.05, 10)
        assert exc.value.field == "principal"

    def test_rate_of_minus_one_rejected(self):
        with pytest.raises(DomainError):
            future_value(1_000, -1.0, 10)

    def test_unknown_timing_rejected(self):
        with pytest.raises(ValidationError):
            future_value(1_000, 0.05, 10, 100, contribution_timing="middle")

    def test_nan_rejected(self):
        with pytest.raises(DomainError):
            future_value(float("nan"), 0.05, 10)


# ============================================================================
# FIRE NUMBERS
# ============================================================================

class TestFireNumber:
    """Tests for fire_number()."""

    def test_exact_base_number(self):
        """50k at 4% is exactly 1.25M."""
        result = fire_number(50_000, 0.04)

        assert result.fire_number == Decimal("1250000.00")

    def test_lean_and_fat_variants(self):
        result = fire_number(50_000, 0.04)

        assert result.lean_fire_number == Decimal("875000.00")
        assert result.fat_fire_number == Decimal("2500000.00")

    def test_safety_margin_and_cost_of_living(self):
        result = fire_number(40_000, 0.04, safety_margin=0.1, cost_of_living_multiplier=1.5)

        assert result.fire_number == Decimal("1000000.00")
        assert result.adjusted_fire_number == Decimal("1650000.00")

    def test_negative_withdrawal_rate_is_domain_error(self):
        with pytest.raises(DomainError) as exc:
            fire_number(50_000, -0.01)
        assert exc.value.field == "withdrawal_rate"

    def test_zero_withdrawal_rate_is_domain_error(self):
        with pytest.raises(DomainError):
            fire_number(50_000, 0)

    def test_withdrawal_rate_above_ten_percent_is_validation_error(self):
        with pytest.raises(ValidationError):
            fire_number(50_000, 0.11)

    def test_zero_expenses(self):
        assert fire_number(0, 0.04).fire_number == Decimal("0.00")


class TestCoastFire:
    """Tests for coast_fire()."""

    def test_zero_return_keeps_savings(self):
        result = coast_fire(30, 65, 100_000, 0.0)

        projection = result.projections[0]
        assert projection.projected_value == Decimal("100000.00")
        assert projection.months_to_grow == 420

    def test_multiple_target_ages(self):
        result = coast_fire(30, [50, 60, 65], 100_000, 0.07)

        values = [p.projected_value for p in result.projections]
        assert values == sorted(values)
        assert len(result.valid_projections) == 3

    @pytest.mark.parametrize("low,high", [(0.0, 0.03), (0.03, 0.07), (0.07, 0.10), (-0.05, 0.0)])
    def test_monotonic_in_expected_return(self, low, high):
        a = coast_fire(35, 60, 80_000, low).projections[0].projected_value
        b = coast_fire(35, 60, 80_000, high).projections[0].projected_value

        assert b >= a

    def test_invalid_age_reported_per_projection(self):
        result = coast_fire(40, [35, 60], 100_000, 0.07)

        bad, good = result.projections
        assert not bad.valid
        assert "greater than current age" in bad.error
        assert good.valid

    def test_all_invalid_ages_raise(self):
        with pytest.raises(DomainError):
            coast_fire(40, [30, 40], 100_000, 0.07)

    def test_coast_number_and_flag(self):
        result = coast_fire(30, 65, 500_000, 0.07, fire_number=1_000_000)

        projection = result.projections[0]
        assert projection.coast_number < Decimal("1000000")
        assert projection.is_coasting is True

    def test_not_coasting(self):
        result = coast_fire(30, 40, 10_000, 0.05, fire_number=1_000_000)

        assert result.projections[0].is_coasting is False


class TestBaristaFire:
    """Tests for barista_fire()."""

    def test_basic_numbers(self):
        result = barista_fire(40_000, 20_000, 0.04)

        assert result.barista_fire_number == Decimal("500000.00")
        assert result.full_fire_number == Decimal("1000000.00")
        assert result.expense_gap == Decimal("20000.00")
        assert result.part_time_coverage == Decimal("0.5000")
        assert result.already_achieved is False

    def test_already_achieved(self):
        result = barista_fire(40_000, 20_000, 0.04, current_savings=600_000)

        assert result.already_achieved is True
        assert result.remaining_gap == Decimal("0.00")

    def test_income_covers_expenses(self):
        result = barista_fire(30_000, 45_000, 0.04)

        assert result.barista_fire_number == Decimal("0.00")
        assert result.part_time_coverage == Decimal("1.0000")
        assert result.already_achieved is True


# ============================================================================
# REQUIRED SAVINGS RATE
# ============================================================================

class TestRequiredSavingsRate:
    """Tests for required_savings_rate()."""

    def test_closed_form_reaches_target(self):
        result = required_savings_rate(500_000, 10, 20_000, 0.07)
        projected = future_value(20_000, 0.07, 10, result.monthly_contribution).future_value

        assert result.method == "closed_form"
        assert float(projected) == pytest.approx(500_000, abs=5.0)

    def test_zero_return_uses_bisection(self):
        result = required_savings_rate(120_000, 10, 0, 0.0)

        assert result.method == "bisection"
        assert result.monthly_contribution == Decimal("1000.00")
        assert result.annual_contribution == Decimal("12000.00")

    def test_already_achieved(self):
        result = required_savings_rate(1_000_000, 10, 2_000_000, 0.05)

        assert result.already_achieved is True
        assert result.monthly_contribution == Decimal("0.00")
        assert result.method == "none"

    def test_savings_rate_with_income(self):
        result = required_savings_rate(120_000, 10, 0, 0.0, annual_income=60_000)

        assert result.savings_rate == Decimal("0.2000")
        assert result.feasible is True

    def test_above_cap_is_never_feasible(self):
        result = required_savings_rate(1_000_000, 5, 0, 0.0, annual_income=50_000)

        assert result.savings_rate > Decimal("0.95")
        assert result.feasible is False
        assert "exceeds the cap" in result.reason

    def test_zero_years_is_domain_error(self):
        with pytest.raises(DomainError):
            required_savings_rate(100_000, 0, 0, 0.05)

    def test_non_positive_income_is_domain_error(self):
        with pytest.raises(DomainError):
            required_savings_rate(100_000, 5, 0, 0.05, annual_income=0)

    def test_cap_outside_unit_interval(self):
        with pytest.raises(ValidationError):
            required_savings_rate(100_000, 5, 0, 0.05, annual_income=50_000, max_savings_rate=1.5)
