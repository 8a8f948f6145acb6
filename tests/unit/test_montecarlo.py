"""
Unit tests for montecarlo.py module.

Tests seeded determinism, chunk independence from worker count, summary
statistics, clamping and cancellation.
"""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
import pytest

from fincalc.concurrency import CancellationToken
from fincalc.config import MonteCarloConfig
from fincalc.exceptions import CalculationCancelledError, DomainError, ValidationError
from fincalc.montecarlo import MonteCarloEngine, simulate_chunk, wilson_interval


BASE = dict(
    initial_value=100_000,
    monthly_contribution=1_000,
    years=10,
    expected_return=0.07,
    volatility=0.15,
)


# ============================================================================
# DETERMINISM
# ============================================================================

class TestDeterminism:

    def test_same_seed_same_percentiles(self):
        engine = MonteCarloEngine()

        a = engine.run(**BASE, iterations=2_000, seed=42)
        b = engine.run(**BASE, iterations=2_000, seed=42)

        assert a.percentiles == b.percentiles
        assert a.mean == b.mean

    def test_different_seeds_differ(self):
        engine = MonteCarloEngine()

        a = engine.run(**BASE, iterations=2_000, seed=1)
        b = engine.run(**BASE, iterations=2_000, seed=2)

        assert a.mean != b.mean

    @pytest.mark.parametrize("workers", [1, 2, 4])
    def test_identical_across_worker_counts(self, workers):
        """Seeded output depends on the chunk size only, never on the pool."""
        config = MonteCarloConfig(chunk_size=500, parallel_threshold=1)
        serial = MonteCarloEngine(config).run(**BASE, iterations=3_000, seed=7)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            parallel = MonteCarloEngine(config, executor=pool).run(**BASE, iterations=3_000, seed=7)

        assert parallel.percentiles == serial.percentiles
        assert parallel.std == serial.std


# ============================================================================
# STATISTICS
# ============================================================================

class TestStatistics:

    def test_more_iterations_narrow_mean_ci(self):
        engine = MonteCarloEngine()

        small = engine.run(**BASE, iterations=500, seed=3)
        large = engine.run(**BASE, iterations=20_000, seed=3)

        assert large.mean_ci_width < small.mean_ci_width

    def test_percentiles_are_ordered(self):
        result = MonteCarloEngine().run(**BASE, iterations=2_000, seed=11)

        values = list(result.percentiles.values())
        assert values == sorted(values)
        assert set(result.percentiles) == {5, 10, 25, 50, 75, 90, 95}

    def test_real_percentiles_deflated(self):
        result = MonteCarloEngine().run(**BASE, iterations=1_000, seed=11, inflation_rate=0.03)

        assert result.real_percentiles[50] == pytest.approx(result.percentiles[50] / 1.03 ** 10)

    def test_bands_nest(self):
        result = MonteCarloEngine().run(**BASE, iterations=2_000, seed=11)

        lo90, hi90 = result.confidence_intervals[90]
        lo50, hi50 = result.confidence_intervals[50]
        assert lo90 <= lo50 <= hi50 <= hi90

    def test_zero_volatility_is_deterministic(self):
        result = MonteCarloEngine().run(
            initial_value=1_000, monthly_contribution=0, years=1,
            expected_return=0.12, volatility=0.0, iterations=100, seed=1,
        )

        assert result.std == 0.0
        assert result.skewness == 0.0
        assert result.kurtosis == 0.0
        assert result.median == pytest.approx(1_000 * 1.01 ** 12)

    def test_success_probability_with_target(self):
        result = MonteCarloEngine().run(**BASE, iterations=2_000, seed=5, target=300_000)

        assert 0.0 <= result.success_probability <= 1.0
        lo, hi = result.success_ci
        assert lo <= result.success_probability <= hi

    def test_no_target_no_success(self):
        result = MonteCarloEngine().run(**BASE, iterations=100, seed=5)

        assert result.success_probability is None
        assert result.success_ci is None

    def test_yearly_bands_frame(self):
        result = MonteCarloEngine().run(**BASE, iterations=500, seed=5)

        assert isinstance(result.yearly_bands, pd.DataFrame)
        assert len(result.yearly_bands) == 10
        assert list(result.yearly_bands.columns)[0] == "p5"
        assert result.yearly_bands.index.name == "year"

    def test_total_invested(self):
        result = MonteCarloEngine().run(**BASE, iterations=100, seed=5)

        assert result.total_invested == pytest.approx(100_000 + 1_000 * 120)

    def test_summary_series(self):
        summary = MonteCarloEngine().run(**BASE, iterations=100, seed=5, target=1).summary()

        assert "success_probability" in summary.index
        assert "p50" in summary.index


# ============================================================================
# LIMITS AND ERRORS
# ============================================================================

class TestLimits:

    def test_iterations_clamped_with_warning(self):
        engine = MonteCarloEngine(MonteCarloConfig(max_iterations=1_000))

        result = engine.run(**BASE, iterations=5_000, seed=1)

        assert result.iterations == 1_000
        assert any("clamped" in w for w in result.warnings)

    def test_zero_iterations_rejected(self):
        with pytest.raises(ValidationError):
            MonteCarloEngine().run(**BASE, iterations=0)

    def test_negative_volatility_rejected(self):
        params = dict(BASE, volatility=-0.1)
        with pytest.raises(DomainError):
            MonteCarloEngine().run(**params, iterations=10)

    def test_mean_path_length_checked(self):
        with pytest.raises(ValidationError):
            MonteCarloEngine().run(**BASE, iterations=10, mean_path=[0.01] * 5)

    def test_cancelled_token_aborts(self):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(CalculationCancelledError):
            MonteCarloEngine().run(**BASE, iterations=100, seed=1, token=token)

    def test_cancellation_between_chunks(self):
        class CancelAfter(CancellationToken):
            """Token that cancels itself once it has been checked *n* times."""

            def __init__(self, n):
                super().__init__()
                self.n = n
                self.checks = 0

            def check(self):
                self.checks += 1
                if self.checks > self.n:
                    self.cancel()
                super().check()

        token = CancelAfter(5)
        engine = MonteCarloEngine(MonteCarloConfig(chunk_size=100))

        with pytest.raises(CalculationCancelledError):
            engine.run(**BASE, iterations=1_000, seed=1, token=token)
        # Ten chunks need at least twenty checks to finish.
        assert token.checks == 6


class TestHelpers:

    def test_simulate_chunk_shapes(self):
        months = 30
        ending, marks = simulate_chunk(
            50, 1_000.0, np.zeros(months), np.full(months, 0.005), 0.04,
            np.random.SeedSequence(1),
        )

        assert ending.shape == (50,)
        assert marks.shape == (50, 3)
        assert (ending >= 0).all()
        np.testing.assert_array_equal(marks[:, -1], ending)

    def test_wilson_interval_bounds(self):
        lo, hi = wilson_interval(0, 100, 0.95)
        assert lo == pytest.approx(0.0, abs=1e-12)
        assert 0.0 < hi < 0.1

        lo, hi = wilson_interval(50, 100, 0.95)
        assert lo < 0.5 < hi
