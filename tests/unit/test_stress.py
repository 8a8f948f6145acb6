"""
Unit tests for stress.py module.

Tests the scenario registry, return-path construction, the risk score
and StressTestEngine single-scenario and suite runs.
"""

import dataclasses

import numpy as np
import pandas as pd
import pytest

from fincalc.concurrency import CancellationToken
from fincalc.exceptions import CalculationCancelledError, DomainError, ValidationError
from fincalc import stress
from fincalc.stress import (
    SCENARIOS,
    BaseProjection,
    RecoveryPattern,
    ShockScenario,
    StressTestEngine,
    build_return_path,
    get_scenario,
    register_scenario,
    risk_score,
)


# ============================================================================
# SCENARIO DATA
# ============================================================================

class TestScenarios:

    def test_historical_scenarios_registered(self):
        for name in ("great_financial_crisis", "covid_crash", "stagflation_1970s",
                     "dotcom_crash", "sequence_risk"):
            assert name in SCENARIOS

    def test_get_unknown_scenario(self):
        with pytest.raises(ValidationError) as exc:
            get_scenario("tulip_mania")
        assert exc.value.field == "scenarios"

    def test_register_and_refuse_overwrite(self, monkeypatch):
        monkeypatch.setattr(stress, "SCENARIOS", dict(SCENARIOS))
        shock = ShockScenario("flash_crash", -0.10, 1, RecoveryPattern("immediate", 4))

        register_scenario(shock)
        assert stress.get_scenario("flash_crash") is shock

        with pytest.raises(ValidationError):
            register_scenario(shock)
        register_scenario(shock, replace=True)

    def test_positive_magnitude_rejected(self):
        with pytest.raises(DomainError):
            ShockScenario("boom", 0.10, 3)

    def test_zero_duration_rejected(self):
        with pytest.raises(ValidationError):
            ShockScenario("blip", -0.10, 0)

    def test_unknown_recovery_pattern(self):
        with pytest.raises(ValidationError):
            RecoveryPattern("bounce", 12)

    def test_partial_strength_capped(self):
        assert RecoveryPattern("partial", 12, 1.0).effective_strength == 0.5
        assert RecoveryPattern("gradual", 12, 1.0).effective_strength == 1.0


# ============================================================================
# RETURN PATHS AND RISK SCORE
# ============================================================================

class TestReturnPath:

    def test_shock_compounds_to_magnitude(self):
        shock = ShockScenario("s", -0.20, 2, RecoveryPattern("gradual", 0))
        path = build_return_path(shock, 12, 0.0)

        assert np.prod(1 + path[:2]) == pytest.approx(0.8)
        assert np.all(path[2:] == 0.0)

    def test_full_gradual_recovery_restores_level(self):
        shock = ShockScenario("s", -0.20, 2, RecoveryPattern("gradual", 12, 1.0))
        path = build_return_path(shock, 24, 0.0)

        assert np.prod(1 + path) == pytest.approx(1.0)

    def test_partial_recovery_wins_back_half(self):
        shock = ShockScenario("s", -0.20, 2, RecoveryPattern("partial", 12, 1.0))
        path = build_return_path(shock, 24, 0.0)

        assert np.prod(1 + path) == pytest.approx(0.8 * 1.125)

    def test_immediate_recovery_uses_first_quarter(self):
        shock = ShockScenario("s", -0.20, 2, RecoveryPattern("immediate", 12, 1.0))
        path = build_return_path(shock, 24, 0.0)

        assert np.all(path[2:5] > 0)
        assert np.all(path[5:] == 0.0)

    def test_delayed_recovery_starts_flat(self):
        shock = ShockScenario("s", -0.20, 2, RecoveryPattern("delayed", 12, 1.0))
        path = build_return_path(shock, 24, 0.01)

        assert np.all(path[2:8] == 0.0)
        assert np.all(path[8:14] > 0.01)
        assert np.all(path[14:] == 0.01)


class TestRiskScore:

    def test_worst_case_is_100(self):
        assert risk_score(-0.5, None, 0) == 100.0

    def test_no_risk(self):
        assert risk_score(0.0, 0, 12) == 0.0

    def test_midpoint(self):
        assert risk_score(-0.25, 60, 6) == 50.0


# ============================================================================
# ENGINE
# ============================================================================

class TestRunScenario:

    def test_dotcom_delays_goal(self, base_projection):
        lump_sum = dataclasses.replace(base_projection, monthly_contribution=0)
        result = StressTestEngine().run_scenario(lump_sum, "dotcom_crash")

        assert result.baseline_months_to_goal is not None
        assert result.delay_months > 0
        assert result.worst_case_shortfall > 0
        assert result.max_drawdown > 0
        assert result.survives is True

    def test_early_finish_is_not_a_negative_delay(self, base_projection):
        result = StressTestEngine().run_scenario(base_projection, "dotcom_crash")

        assert result.goal_shift_months == result.stressed_months_to_goal - result.baseline_months_to_goal
        assert result.goal_shift_months < 0
        assert result.delay_months == 0
        assert any("months early" in w for w in result.warnings)

    def test_delay_is_never_negative(self, base_projection):
        for name in SCENARIOS:
            result = StressTestEngine().run_scenario(base_projection, name)
            if result.delay_months is not None:
                assert result.delay_months >= 0
                assert result.delay_months == max(result.goal_shift_months, 0)

    def test_trajectory_frame(self, base_projection):
        frame = StressTestEngine().run_scenario(base_projection, "covid_crash").trajectory()

        assert isinstance(frame, pd.DataFrame)
        assert len(frame) == 360
        assert frame.index.name == "month"
        assert list(frame.columns) == ["baseline", "stressed"]

    def test_shock_beyond_horizon_warns(self):
        base = BaseProjection(100_000, 500, 0.05, 200_000, horizon_years=1)
        late = ShockScenario("late", -0.2, 6, RecoveryPattern("gradual", 6), start_month=10)

        result = StressTestEngine().run_scenario(base, late)

        assert any("beyond" in w for w in result.warnings)
        assert result.time_to_recover_months is None

    def test_monte_carlo_probabilities(self, base_projection):
        result = StressTestEngine().run_scenario(
            base_projection, "covid_crash", iterations=200, seed=7
        )

        assert 0.0 <= result.stressed_success_probability <= 1.0
        assert 0.0 <= result.baseline_success_probability <= 1.0
        assert result.survives == (result.stressed_success_probability > 0.3)


class TestRunSuite:

    def test_dotcom_worse_than_covid(self, base_projection):
        suite = StressTestEngine().run_suite(base_projection, ["covid_crash", "dotcom_crash"])

        assert suite.worst_scenario == "dotcom_crash"
        assert suite.best_scenario == "covid_crash"

    def test_all_registered_by_default(self, base_projection):
        suite = StressTestEngine().run_suite(base_projection)

        assert len(suite.results) == len(SCENARIOS)
        assert 0.0 <= suite.survivability_rate <= 1.0

    def test_summary_frame(self, base_projection):
        suite = StressTestEngine().run_suite(base_projection, ["covid_crash", "dotcom_crash"])
        frame = suite.summary_frame()

        assert list(frame.index) == ["covid_crash", "dotcom_crash"]
        assert "risk_score" in frame.columns

    def test_suite_warnings_deduplicated(self):
        base = BaseProjection(100_000, 500, 0.05, 200_000, horizon_years=1)
        late = ShockScenario("late", -0.2, 6, start_month=10)

        suite = StressTestEngine().run_suite(base, [late, late])

        assert len(suite.warnings) == 1

    def test_result_lookup(self, base_projection):
        suite = StressTestEngine().run_suite(base_projection, ["covid_crash"])

        assert suite.result("covid_crash").scenario == "covid_crash"
        with pytest.raises(KeyError):
            suite.result("dotcom_crash")

    def test_cancelled_token_stops_suite(self, base_projection):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(CalculationCancelledError):
            StressTestEngine().run_suite(base_projection, token=token)
