"""
Market stress testing for fincalc.

Purpose
-------
Overlays shock scenarios on a base projection and measures how far the
plan is knocked off course: delay to goal, worst-case shortfall against the
unshocked baseline, drawdown and recovery time, survival, and a composite
0-100 risk score.

Scenarios are data
------------------
A ShockScenario is a cumulative drawdown spread over ``duration_months``
followed by a RecoveryPattern. Historical episodes live in the ``SCENARIOS``
registry; ``register_scenario`` adds new ones without touching simulation
code.

Return path
-----------
Baseline months earn ``expected_return / 12``. Shocked months earn
``(1 + magnitude)^(1/d) - 1`` so the shock compounds to ``magnitude``.
The recovery boost compounds to ``strength × (1/(1 + magnitude) - 1)`` on
top of the baseline return:

- immediate : boost packed into the first quarter of the recovery window
- gradual   : boost spread over the whole window
- delayed   : flat (zero-return) first half, boost over the second half
- partial   : gradual with strength capped at 0.5

Contributions are cut by ``contribution_reduction`` during the shock.

Delay to goal is the number of extra months the stressed plan needs and is
never negative. Contributions bought near the trough can outrun the
baseline once the market recovers; the signed difference is kept in
``goal_shift_months`` and flagged with a warning.

Risk score
----------
    score = 100 · (0.40·severity + 0.35·recovery + 0.25·(1 - safety))

    severity = min(|magnitude| / 0.5, 1)
    recovery = min(months_to_recover / 120, 1)      (1 when never recovered)
    safety   = min(emergency_fund_months / 12, 1)

Example
-------
>>> from fincalc.stress import BaseProjection, StressTestEngine
>>> base = BaseProjection(
...     current_net_worth=250_000, monthly_contribution=2_000,
...     expected_return=0.07, target_amount=1_000_000, horizon_years=30,
... )
>>> suite = StressTestEngine().run_suite(base, ["covid_crash", "dotcom_crash"])
>>> suite.worst_scenario
'dotcom_crash'
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .concurrency import CancellationToken
from .constants import MAX_HORIZON_YEARS, MONTHS_PER_YEAR
from .exceptions import DomainError, ValidationError
from .montecarlo import MonteCarloEngine
from .numeric import horizon_months
from .utils import drawdown, ensure_finite

__all__ = [
    "RecoveryPattern",
    "ShockScenario",
    "BaseProjection",
    "StressTestResult",
    "StressSuiteResult",
    "SCENARIOS",
    "register_scenario",
    "get_scenario",
    "build_return_path",
    "StressTestEngine",
]

logger = logging.getLogger(__name__)

RecoveryKind = Literal["immediate", "gradual", "delayed", "partial"]

SURVIVAL_PROBABILITY = 0.3
PARTIAL_STRENGTH_CAP = 0.5


# ---------------------------------------------------------------------------
# Scenario data
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RecoveryPattern:
    """
    How markets recover after a shock.

    Parameters
    ----------
    kind : {"immediate", "gradual", "delayed", "partial"}
    recovery_months : int
        Length of the recovery window (>= 0).
    strength : float, default 1.0
        Fraction of the shock loss won back; above 1 overshoots.
    """

    kind: RecoveryKind = "gradual"
    recovery_months: int = 24
    strength: float = 1.0

    def __post_init__(self):
        if self.kind not in ("immediate", "gradual", "delayed", "partial"):
            raise ValidationError(f"unknown recovery pattern {self.kind!r}", field="recovery_pattern")
        if self.recovery_months < 0:
            raise ValidationError(
                f"recovery_months must be >= 0, got {self.recovery_months}", field="recovery_months"
            )
        if not (0 <= ensure_finite("recovery_strength", self.strength) <= 2):
            raise ValidationError(
                f"recovery strength must be in [0, 2], got {self.strength}", field="recovery_strength"
            )

    @property
    def effective_strength(self) -> float:
        if self.kind == "partial":
            return min(self.strength, PARTIAL_STRENGTH_CAP)
        return self.strength


@dataclass(frozen=True)
class ShockScenario:
    """
    A market shock: cumulative drawdown, duration and recovery.

    Parameters
    ----------
    name : str
        Registry key.
    magnitude : float
        Cumulative return over the shock, in (-1, 0] (e.g. -0.37).
    duration_months : int
        Months over which the shock unfolds (>= 1).
    recovery : RecoveryPattern
        Recovery after the shock.
    contribution_reduction : float, default 0
        Fraction by which contributions are cut during the shock.
    start_month : int, default 0
        Month (zero-based) at which the shock begins.
    description : str
        Free-text description.
    """

    name: str
    magnitude: float
    duration_months: int
    recovery: RecoveryPattern = field(default_factory=RecoveryPattern)
    contribution_reduction: float = 0.0
    start_month: int = 0
    description: str = ""

    def __post_init__(self):
        m = ensure_finite("shock_magnitude", self.magnitude)
        if not (-1 < m <= 0):
            raise DomainError(
                f"shock magnitude must be in (-1, 0], got {m}", field="shock_magnitude"
            )
        if self.duration_months < 1:
            raise ValidationError(
                f"duration_months must be >= 1, got {self.duration_months}",
                field="shock_duration_months",
            )
        if not (0 <= ensure_finite("contribution_reduction", self.contribution_reduction) <= 1):
            raise ValidationError(
                f"contribution_reduction must be in [0, 1], got {self.contribution_reduction}",
                field="contribution_reduction",
            )
        if self.start_month < 0:
            raise ValidationError(f"start_month must be >= 0, got {self.start_month}", field="start_month")


SCENARIOS: Dict[str, ShockScenario] = {}


def register_scenario(scenario: ShockScenario, *, replace: bool = False) -> ShockScenario:
    """Add *scenario* to the registry; refuses to overwrite unless ``replace``."""
    if scenario.name in SCENARIOS and not replace:
        raise ValidationError(f"scenario {scenario.name!r} is already registered", field="scenario")
    SCENARIOS[scenario.name] = scenario
    return scenario


def get_scenario(name: str) -> ShockScenario:
    try:
        return SCENARIOS[name]
    except KeyError:
        raise ValidationError(
            f"unknown scenario {name!r}; available: {sorted(SCENARIOS)}", field="scenarios"
        ) from None


register_scenario(ShockScenario(
    name="great_financial_crisis",
    magnitude=-0.37,
    duration_months=17,
    recovery=RecoveryPattern("gradual", 60, 1.2),
    contribution_reduction=0.15,
    description="2007-09 banking crisis: deep crash, long recovery",
))
register_scenario(ShockScenario(
    name="covid_crash",
    magnitude=-0.20,
    duration_months=2,
    recovery=RecoveryPattern("immediate", 24, 1.3),
    contribution_reduction=0.20,
    description="2020 pandemic: short sharp crash, stimulus-driven rebound",
))
register_scenario(ShockScenario(
    name="stagflation_1970s",
    magnitude=-0.15,
    duration_months=96,
    recovery=RecoveryPattern("delayed", 36, 0.9),
    contribution_reduction=0.05,
    description="High inflation with a decade of stagnant real returns",
))
register_scenario(ShockScenario(
    name="dotcom_crash",
    magnitude=-0.49,
    duration_months=31,
    recovery=RecoveryPattern("gradual", 84, 1.0),
    contribution_reduction=0.05,
    description="2000-02 tech bubble collapse",
))
register_scenario(ShockScenario(
    name="sequence_risk",
    magnitude=-0.30,
    duration_months=60,
    recovery=RecoveryPattern("partial", 120, 0.8),
    contribution_reduction=0.0,
    description="Poor returns in the first years of early retirement",
))


# ---------------------------------------------------------------------------
# Projection inputs and results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BaseProjection:
    current_net_worth: float
    monthly_contribution: float
    expected_return: float
    target_amount: float
    horizon_years: float = 30.0
    volatility: float = 0.0
    emergency_fund_months: float = 6.0

    def __post_init__(self):
        if ensure_finite("current_net_worth", self.current_net_worth) < 0:
            raise DomainError("current_net_worth must be >= 0", field="current_net_worth")
        if ensure_finite("monthly_contribution", self.monthly_contribution) < 0:
            raise DomainError("monthly_contribution must be >= 0", field="monthly_contribution")
        if ensure_finite("expected_return", self.expected_return) <= -1:
            raise DomainError("expected_return must be > -1", field="expected_return")
        if ensure_finite("target_amount", self.target_amount) < 0:
            raise DomainError("target_amount must be >= 0", field="target_amount")
        if not (0 < ensure_finite("horizon_years", self.horizon_years) <= MAX_HORIZON_YEARS):
            raise ValidationError(
                f"horizon_years must be in (0, {MAX_HORIZON_YEARS}]", field="horizon_years"
            )
        if ensure_finite("volatility", self.volatility) < 0:
            raise DomainError("volatility must be >= 0", field="volatility")
        if ensure_finite("emergency_fund_months", self.emergency_fund_months) < 0:
            raise DomainError("emergency_fund_months must be >= 0", field="emergency_fund_months")

    @property
    def months(self) -> int:
        return max(horizon_months(self.horizon_years, name="horizon_years"), 1)


@dataclass(frozen=True)
class StressTestResult:
    scenario: str
    baseline_months_to_goal: Optional[int]
    stressed_months_to_goal: Optional[int]
    delay_months: Optional[int]
    baseline_final_value: float
    stressed_final_value: float
    worst_case_shortfall: float
    worst_case_month: int
    max_drawdown: float
    time_to_recover_months: Optional[int]
    survives: bool
    risk_score: float
    baseline_success_probability: Optional[float] = None
    stressed_success_probability: Optional[float] = None
    goal_shift_months: Optional[int] = None
    baseline_path: np.ndarray = field(default=None, repr=False, compare=False)
    stressed_path: np.ndarray = field(default=None, repr=False, compare=False)
    warnings: Tuple[str, ...] = ()

    def trajectory(self) -> pd.DataFrame:
        """Baseline and stressed month-end balances side by side."""
        months = np.arange(1, len(self.baseline_path) + 1)
        return pd.DataFrame(
            {"baseline": self.baseline_path, "stressed": self.stressed_path},
            index=pd.Index(months, name="month"),
        )


@dataclass(frozen=True)
class StressSuiteResult:
    results: Tuple[StressTestResult, ...]
    worst_scenario: str
    best_scenario: str
    average_delay_months: Optional[float]
    survivability_rate: float

    def result(self, scenario: str) -> StressTestResult:
        for r in self.results:
            if r.scenario == scenario:
                return r
        raise KeyError(scenario)

    @property
    def warnings(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(w for r in self.results for w in r.warnings))

    def summary_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "scenario": r.scenario,
                    "delay_months": r.delay_months,
                    "worst_case_shortfall": r.worst_case_shortfall,
                    "max_drawdown": r.max_drawdown,
                    "survives": r.survives,
                    "risk_score": r.risk_score,
                }
                for r in self.results
            ]
        ).set_index("scenario")


# ---------------------------------------------------------------------------
# Path construction
# ---------------------------------------------------------------------------

def build_return_path(scenario: ShockScenario, months: int, baseline_monthly: float) -> np.ndarray:
    """Monthly returns for *months* with *scenario* overlaid on the baseline."""
    path = np.full(months, baseline_monthly, dtype=float)
    m = scenario.magnitude
    start = scenario.start_month
    d = scenario.duration_months
    path[start:start + d] = (1.0 + m) ** (1.0 / d) - 1.0

    rec = scenario.recovery
    total = rec.effective_strength * (1.0 / (1.0 + m) - 1.0)
    window = rec.recovery_months
    if window <= 0 or total == 0:
        return path

    begin = start + d
    if rec.kind == "immediate":
        offset, span = 0, max(1, window // 4)
    elif rec.kind == "delayed":
        offset = window // 2
        path[begin:begin + offset] = 0.0
        span = max(1, window - offset)
    else:
        offset, span = 0, window
    boost = (1.0 + total) ** (1.0 / span) - 1.0
    seg = slice(begin + offset, begin + offset + span)
    path[seg] = (1.0 + baseline_monthly) * (1.0 + boost) - 1.0
    return path


def _contribution_path(scenario: Optional[ShockScenario], months: int, monthly: float) -> np.ndarray:
    path = np.full(months, monthly, dtype=float)
    if scenario is not None and scenario.contribution_reduction > 0:
        s = scenario.start_month
        path[s:s + scenario.duration_months] *= 1.0 - scenario.contribution_reduction
    return path


def _project(initial: float, contributions: np.ndarray, returns: np.ndarray) -> np.ndarray:
    """Deterministic month-end balances, floored at zero."""
    wealth = np.empty(len(returns))
    w = initial
    for t in range(len(returns)):
        w = max(0.0, (w + contributions[t]) * (1.0 + returns[t]))
        wealth[t] = w
    return wealth


def _months_to_goal(initial: float, wealth: np.ndarray, target: float) -> Optional[int]:
    if initial >= target:
        return 0
    hits = np.nonzero(wealth >= target)[0]
    return int(hits[0]) + 1 if hits.size else None


def _time_to_recover(initial: float, wealth: np.ndarray, scenario: ShockScenario) -> Optional[int]:
    """Months from the shock start until the balance regains its pre-shock level."""
    start = scenario.start_month
    if start >= len(wealth):
        return 0
    pre_shock = initial if start == 0 else wealth[start - 1]
    after = wealth[start + scenario.duration_months:]
    hits = np.nonzero(after >= pre_shock)[0]
    if not hits.size:
        return None
    return scenario.duration_months + int(hits[0]) + 1


def risk_score(magnitude: float, months_to_recover: Optional[int], emergency_fund_months: float) -> float:
    severity = min(abs(magnitude) / 0.5, 1.0)
    recovery = 1.0 if months_to_recover is None else min(months_to_recover / 120.0, 1.0)
    safety = min(emergency_fund_months / 12.0, 1.0)
    return round(100.0 * (0.40 * severity + 0.35 * recovery + 0.25 * (1.0 - safety)), 1)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class StressTestEngine:
    """
    Applies shock scenarios to a base projection.

    Parameters
    ----------
    monte_carlo : MonteCarloEngine, optional
        Engine used when Monte Carlo success probabilities are requested.
    scenarios : mapping, optional
        Scenario registry; defaults to the module-level ``SCENARIOS``.
    """

    def __init__(
        self,
        monte_carlo: Optional[MonteCarloEngine] = None,
        scenarios: Optional[Mapping[str, ShockScenario]] = None,
    ):
        self.monte_carlo = monte_carlo if monte_carlo is not None else MonteCarloEngine()
        self.scenarios = scenarios if scenarios is not None else SCENARIOS

    def resolve(self, scenario: Union[str, ShockScenario]) -> ShockScenario:
        if isinstance(scenario, ShockScenario):
            return scenario
        if scenario in self.scenarios:
            return self.scenarios[scenario]
        raise ValidationError(
            f"unknown scenario {scenario!r}; available: {sorted(self.scenarios)}", field="scenarios"
        )

    def run_scenario(
        self,
        base: BaseProjection,
        scenario: Union[str, ShockScenario],
        *,
        iterations: int = 0,
        seed: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> StressTestResult:
        """
        Stress *base* with one scenario.

        With ``iterations > 0`` the baseline and stressed paths are also run
        through the Monte Carlo engine (same seed for both) and survival is
        judged on the stressed success probability.
        """
        shock = self.resolve(scenario)
        months = base.months
        baseline_monthly = base.expected_return / MONTHS_PER_YEAR

        base_returns = np.full(months, baseline_monthly)
        base_contrib = _contribution_path(None, months, base.monthly_contribution)
        stress_returns = build_return_path(shock, months, baseline_monthly)
        stress_contrib = _contribution_path(shock, months, base.monthly_contribution)

        baseline = _project(base.current_net_worth, base_contrib, base_returns)
        stressed = _project(base.current_net_worth, stress_contrib, stress_returns)

        base_goal = _months_to_goal(base.current_net_worth, baseline, base.target_amount)
        stress_goal = _months_to_goal(base.current_net_worth, stressed, base.target_amount)
        goal_shift = None
        if stress_goal is not None and base_goal is not None:
            goal_shift = stress_goal - base_goal
        delay = None if goal_shift is None else max(goal_shift, 0)

        gap = baseline - stressed
        worst_month = int(np.argmax(gap))
        dd = drawdown(pd.Series(np.concatenate(([base.current_net_worth], stressed))))
        recover = _time_to_recover(base.current_net_worth, stressed, shock)

        warnings: List[str] = []
        if shock.start_month + shock.duration_months > months:
            warnings.append(f"{shock.name}: shock extends beyond the {months}-month horizon")
        if goal_shift is not None and goal_shift < 0:
            warnings.append(
                f"{shock.name}: contributions bought during the shock reach the goal "
                f"{-goal_shift} months early"
            )

        base_p = stress_p = None
        if iterations > 0:
            years = months / MONTHS_PER_YEAR
            common = dict(
                initial_value=base.current_net_worth,
                monthly_contribution=base.monthly_contribution,
                years=years,
                expected_return=base.expected_return,
                volatility=base.volatility,
                iterations=iterations,
                seed=seed,
                target=base.target_amount,
                token=token,
            )
            base_mc = self.monte_carlo.run(**common)
            stress_mc = self.monte_carlo.run(
                **common, mean_path=stress_returns, contribution_path=stress_contrib
            )
            base_p = base_mc.success_probability
            stress_p = stress_mc.success_probability
            warnings.extend(w for w in stress_mc.warnings if w not in warnings)
            survives = stress_p > SURVIVAL_PROBABILITY
        else:
            survives = stress_goal is not None

        return StressTestResult(
            scenario=shock.name,
            baseline_months_to_goal=base_goal,
            stressed_months_to_goal=stress_goal,
            delay_months=delay,
            goal_shift_months=goal_shift,
            baseline_final_value=float(baseline[-1]),
            stressed_final_value=float(stressed[-1]),
            worst_case_shortfall=max(float(gap[worst_month]), 0.0),
            worst_case_month=worst_month + 1,
            max_drawdown=float(-dd.min()),
            time_to_recover_months=recover,
            survives=survives,
            risk_score=risk_score(shock.magnitude, recover, base.emergency_fund_months),
            baseline_success_probability=base_p,
            stressed_success_probability=stress_p,
            baseline_path=baseline,
            stressed_path=stressed,
            warnings=tuple(warnings),
        )

    def run_suite(
        self,
        base: BaseProjection,
        scenarios: Iterable[Union[str, ShockScenario]] = (),
        *,
        iterations: int = 0,
        seed: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> StressSuiteResult:
        """Run several scenarios (all registered ones when none are named)."""
        chosen = [self.resolve(s) for s in scenarios] or list(self.scenarios.values())
        results = []
        for shock in chosen:
            if token is not None:
                token.check()
            results.append(
                self.run_scenario(base, shock, iterations=iterations, seed=seed, token=token)
            )
            logger.debug("stress scenario %s: risk score %.1f", shock.name, results[-1].risk_score)

        worst = max(results, key=lambda r: (r.risk_score, r.worst_case_shortfall))
        best = min(results, key=lambda r: (r.risk_score, r.worst_case_shortfall))
        delays = [r.delay_months for r in results if r.delay_months is not None]
        return StressSuiteResult(
            results=tuple(results),
            worst_scenario=worst.scenario,
            best_scenario=best.scenario,
            average_delay_months=float(np.mean(delays)) if delays else None,
            survivability_rate=sum(r.survives for r in results) / len(results),
        )
