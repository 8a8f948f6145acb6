"""
Monte Carlo projection engine for fincalc.

Purpose
-------
Simulates N independent monthly return paths over T months for a single
invested balance with level contributions, and summarizes the ending
distribution.

Path dynamics
-------------
For each month t of each path:

    W_t = max(0, (W_{t-1} + A_t) · (1 + R_t)),   R_t ~ Normal(μ_t, σ/√12)

with μ_t = expected_return / 12 unless a per-month ``mean_path`` override is
supplied (the stress engine uses this to inject shocks).

Determinism
-----------
Paths are generated in fixed-size chunks. Chunk i draws from the i-th child
of ``numpy.random.SeedSequence(seed)``, so for a given seed the output
depends on the chunk size only, never on how many workers ran the chunks.
Chunks are aggregated in chunk order.

Reported statistics
-------------------
- Percentiles (5/10/25/50/75/90/95) of ending values, nominal and real
- 90/80/50% bands of the ending distribution
- Confidence interval of the mean ending value: mean ± z·σ/√N
- Success probability (ending >= target) with a Wilson interval
- Mean, median, std, skewness, excess kurtosis, probability of loss
- Yearly percentile bands (pandas DataFrame)

Example
-------
>>> from fincalc.montecarlo import MonteCarloEngine
>>> engine = MonteCarloEngine()
>>> result = engine.run(
...     initial_value=100_000, monthly_contribution=1_000, years=20,
...     expected_return=0.07, volatility=0.15, iterations=2_000, seed=42,
...     target=1_000_000,
... )
>>> 0.0 <= result.success_probability <= 1.0
True
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from .concurrency import CancellationToken
from .config import MonteCarloConfig
from .constants import MONTHS_PER_YEAR
from .exceptions import DomainError, ValidationError
from .numeric import horizon_months
from .utils import ensure_1d, ensure_finite

__all__ = [
    "MonteCarloResult",
    "MonteCarloEngine",
    "simulate_chunk",
    "wilson_interval",
]

logger = logging.getLogger(__name__)

_BANDS = (90, 80, 50)
_CONSTANT_TOLERANCE = 1e-12
"""Relative spread below which ending values are treated as identical."""


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MonteCarloResult:
    """
    Summary of a Monte Carlo run.

    Attributes
    ----------
    iterations : int
        Paths actually simulated (after clamping).
    months : int
        Simulated horizon.
    total_invested : float
        Initial value plus all contributions.
    percentiles, real_percentiles : dict[int, float]
        Ending-value percentiles, nominal and deflated by inflation.
    confidence_intervals : dict[int, tuple]
        Central bands of the ending distribution keyed by coverage (90/80/50).
    mean_ci : tuple
        Confidence interval of the mean ending value.
    success_probability, success_ci
        Fraction of paths ending at or above ``target`` and its Wilson
        interval (None without a target).
    yearly_bands : pd.DataFrame
        Percentiles of year-end values; index is the year, columns ``p5``...
    """

    iterations: int
    months: int
    seed: Optional[int]
    total_invested: float
    mean: float
    median: float
    std: float
    skewness: float
    kurtosis: float
    percentiles: Dict[int, float]
    real_percentiles: Dict[int, float]
    confidence_intervals: Dict[int, Tuple[float, float]]
    mean_ci: Tuple[float, float]
    probability_of_loss: float
    target: Optional[float] = None
    success_probability: Optional[float] = None
    success_ci: Optional[Tuple[float, float]] = None
    yearly_bands: pd.DataFrame = field(default_factory=pd.DataFrame, compare=False)
    warnings: Tuple[str, ...] = ()

    @property
    def mean_ci_width(self) -> float:
        return self.mean_ci[1] - self.mean_ci[0]

    def summary(self) -> pd.Series:
        """Scalar statistics as a Series (for display)."""
        data = {
            "iterations": self.iterations,
            "mean": self.mean,
            "median": self.median,
            "std": self.std,
            "probability_of_loss": self.probability_of_loss,
        }
        if self.success_probability is not None:
            data["success_probability"] = self.success_probability
        data.update({f"p{p}": v for p, v in self.percentiles.items()})
        return pd.Series(data, name="monte_carlo")


# ---------------------------------------------------------------------------
# Path simulation
# ---------------------------------------------------------------------------

def _checkpoints(months: int) -> np.ndarray:
    """Zero-based month indices recorded as year ends (plus the final month)."""
    ends = list(range(MONTHS_PER_YEAR - 1, months, MONTHS_PER_YEAR))
    if not ends or ends[-1] != months - 1:
        ends.append(months - 1)
    return np.asarray(ends, dtype=int)


def simulate_chunk(
    n_paths: int,
    initial_value: float,
    contributions: np.ndarray,
    monthly_means: np.ndarray,
    monthly_vol: float,
    seed_seq: np.random.SeedSequence,
    token: Optional[CancellationToken] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Simulate one chunk of paths.

    Returns
    -------
    ending : np.ndarray of shape (n_paths,)
    checkpoints : np.ndarray of shape (n_paths, n_checkpoints)
        Balances at each year end (see ``_checkpoints``).
    """
    if token is not None:
        token.check()
    months = len(monthly_means)
    rng = np.random.default_rng(seed_seq)
    shocks = rng.standard_normal(size=(n_paths, months))
    returns = monthly_means[np.newaxis, :] + monthly_vol * shocks

    marks = _checkpoints(months)
    recorded = np.empty((n_paths, len(marks)))
    wealth = np.full(n_paths, float(initial_value))
    k = 0
    for t in range(months):
        wealth = (wealth + contributions[t]) * (1.0 + returns[:, t])
        np.maximum(wealth, 0.0, out=wealth)
        if k < len(marks) and t == marks[k]:
            recorded[:, k] = wealth
            k += 1
    return wealth, recorded


def wilson_interval(successes: int, n: int, confidence: float) -> Tuple[float, float]:
    """Wilson score interval for a binomial proportion."""
    if n <= 0:
        return (0.0, 1.0)
    z = float(stats.norm.ppf(0.5 + confidence / 2.0))
    p = successes / n
    denom = 1.0 + z * z / n
    center = (p + z * z / (2 * n)) / denom
    half = z * math.sqrt(p * (1 - p) / n + z * z / (4 * n * n)) / denom
    return (max(0.0, center - half), min(1.0, center + half))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class MonteCarloEngine:
    """
    Chunked, seeded Monte Carlo projection engine.

    Parameters
    ----------
    config : MonteCarloConfig, optional
        Iteration cap, chunk size, percentiles, inflation and confidence.
    executor : concurrent.futures.Executor, optional
        Pool used to run chunks when the path count reaches
        ``config.parallel_threshold``. Without one, chunks run inline.
    """

    def __init__(self, config: Optional[MonteCarloConfig] = None, executor: Optional[Executor] = None):
        self.cfg = config if config is not None else MonteCarloConfig()
        self.executor = executor

    def run(
        self,
        initial_value: float,
        monthly_contribution: float,
        years: float,
        expected_return: float,
        volatility: float,
        iterations: int,
        *,
        seed: Optional[int] = None,
        target: Optional[float] = None,
        inflation_rate: Optional[float] = None,
        mean_path: Optional[Sequence[float]] = None,
        contribution_path: Optional[Sequence[float]] = None,
        token: Optional[CancellationToken] = None,
    ) -> MonteCarloResult:
        """
        Simulate ``iterations`` paths and summarize the ending distribution.

        Parameters
        ----------
        initial_value : float
            Starting balance (>= 0).
        monthly_contribution : float
            Contribution added at the start of every month (>= 0).
        years : float
            Horizon; must cover at least one month.
        expected_return, volatility : float
            Annual mean and standard deviation of returns.
        iterations : int
            Requested path count. Counts above ``config.max_iterations`` are
            clamped with a warning on the result.
        seed : int, optional
            Seed for reproducible output; OS entropy when None.
        target : float, optional
            Ending value counted as success.
        inflation_rate : float, optional
            Overrides ``config.inflation_rate`` for real percentiles.
        mean_path, contribution_path : sequence of float, optional
            Per-month overrides of the mean return and contribution.
        token : CancellationToken, optional
            Checked between chunks; raises CalculationTimeoutError on expiry.
        """
        initial = ensure_finite("initial_value", initial_value)
        if initial < 0:
            raise DomainError(f"initial_value must be >= 0, got {initial}", field="initial_value")
        contribution = ensure_finite("monthly_contribution", monthly_contribution)
        if contribution < 0:
            raise DomainError(
                f"monthly_contribution must be >= 0, got {contribution}", field="monthly_contribution"
            )
        mu = ensure_finite("expected_return", expected_return)
        if mu <= -1:
            raise DomainError(f"expected_return must be > -1, got {mu}", field="expected_return")
        sigma = ensure_finite("volatility", volatility)
        if sigma < 0:
            raise DomainError(f"volatility must be >= 0, got {sigma}", field="volatility")
        months = horizon_months(years)
        if months < 1:
            raise ValidationError("years must cover at least one month", field="years")
        if iterations < 1:
            raise ValidationError(f"iterations must be >= 1, got {iterations}", field="iterations")

        warnings: List[str] = []
        n = int(iterations)
        if n > self.cfg.max_iterations:
            warnings.append(
                f"iterations clamped from {n:,} to {self.cfg.max_iterations:,}"
            )
            logger.info("Monte Carlo iterations clamped from %d to %d", n, self.cfg.max_iterations)
            n = self.cfg.max_iterations

        if mean_path is None:
            means = np.full(months, mu / MONTHS_PER_YEAR)
        else:
            means = ensure_1d(mean_path, name="mean_path")
            if len(means) != months:
                raise ValidationError(
                    f"mean_path must have {months} entries, got {len(means)}", field="mean_path"
                )
        if contribution_path is None:
            contributions = np.full(months, contribution)
        else:
            contributions = ensure_1d(contribution_path, name="contribution_path")
            if len(contributions) != months:
                raise ValidationError(
                    f"contribution_path must have {months} entries, got {len(contributions)}",
                    field="contribution_path",
                )
        monthly_vol = sigma / math.sqrt(MONTHS_PER_YEAR)

        ending, yearly = self._simulate(n, initial, contributions, means, monthly_vol, seed, token)
        if token is not None:
            token.check()

        inflation = self.cfg.inflation_rate if inflation_rate is None else ensure_finite(
            "inflation_rate", inflation_rate
        )
        total_invested = initial + float(contributions.sum())
        return self._summarize(
            ending, yearly, months, n, seed, total_invested, target, inflation, tuple(warnings)
        )

    # -------------------- Simulation --------------------
    def _simulate(
        self,
        n: int,
        initial: float,
        contributions: np.ndarray,
        means: np.ndarray,
        monthly_vol: float,
        seed: Optional[int],
        token: Optional[CancellationToken],
    ) -> Tuple[np.ndarray, np.ndarray]:
        chunk = self.cfg.chunk_size
        sizes = [min(chunk, n - start) for start in range(0, n, chunk)]
        children = np.random.SeedSequence(seed).spawn(len(sizes))

        args = [
            (size, initial, contributions, means, monthly_vol, child, token)
            for size, child in zip(sizes, children)
        ]
        parts: List[Tuple[np.ndarray, np.ndarray]] = []
        if self.executor is not None and n >= self.cfg.parallel_threshold and len(sizes) > 1:
            futures = [self.executor.submit(simulate_chunk, *a) for a in args]
            try:
                for fut in futures:
                    parts.append(fut.result())
                    if token is not None:
                        token.check()
            except BaseException:
                for fut in futures:
                    fut.cancel()
                raise
        else:
            for a in args:
                if token is not None:
                    token.check()
                parts.append(simulate_chunk(*a))

        ending = np.concatenate([p[0] for p in parts])
        yearly = np.concatenate([p[1] for p in parts], axis=0)
        return ending, yearly

    # -------------------- Statistics --------------------
    def _summarize(
        self,
        ending: np.ndarray,
        yearly: np.ndarray,
        months: int,
        n: int,
        seed: Optional[int],
        total_invested: float,
        target: Optional[float],
        inflation: float,
        warnings: Tuple[str, ...],
    ) -> MonteCarloResult:
        pcts = self.cfg.percentiles
        values = np.percentile(ending, pcts)
        deflator = (1.0 + inflation) ** (months / MONTHS_PER_YEAR)
        percentiles = {int(p): float(v) for p, v in zip(pcts, values)}
        real = {p: v / deflator for p, v in percentiles.items()}

        bands = {}
        for coverage in _BANDS:
            tail = (100 - coverage) / 2.0
            lo, hi = np.percentile(ending, [tail, 100 - tail])
            bands[coverage] = (float(lo), float(hi))

        mean = float(ending.mean())
        # Constant paths (zero volatility) have no spread and undefined higher moments.
        constant = n < 2 or float(np.ptp(ending)) <= _CONSTANT_TOLERANCE * max(1.0, abs(mean))
        std = 0.0 if constant else float(ending.std(ddof=1))
        z = float(stats.norm.ppf(0.5 + self.cfg.confidence / 2.0))
        half = z * std / math.sqrt(n)
        if not constant:
            skewness = float(stats.skew(ending))
            kurtosis = float(stats.kurtosis(ending))
        else:
            skewness = 0.0
            kurtosis = 0.0

        success = None
        success_ci = None
        if target is not None:
            target = ensure_finite("target", target)
            hits = int(np.count_nonzero(ending >= target))
            success = hits / n
            success_ci = wilson_interval(hits, n, self.cfg.confidence)

        marks = _checkpoints(months)
        band_values = np.percentile(yearly, pcts, axis=0).T
        yearly_bands = pd.DataFrame(
            band_values,
            index=pd.Index((marks + 1) / MONTHS_PER_YEAR, name="year"),
            columns=[f"p{p}" for p in pcts],
        )

        return MonteCarloResult(
            iterations=n,
            months=months,
            seed=seed,
            total_invested=total_invested,
            mean=mean,
            median=float(np.median(ending)),
            std=std,
            skewness=skewness,
            kurtosis=kurtosis,
            percentiles=percentiles,
            real_percentiles=real,
            confidence_intervals=bands,
            mean_ci=(mean - half, mean + half),
            probability_of_loss=float(np.mean(ending < total_invested)),
            target=target,
            success_probability=success,
            success_ci=success_ci,
            yearly_bands=yearly_bands,
            warnings=warnings,
        )
