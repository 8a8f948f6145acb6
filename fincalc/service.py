"""
Calculation service: the single entry point of fincalc.

Purpose
-------
Owns the input guard, the result cache, the calculation engines and the
worker pool, and routes every request through them:

    raw request → InputGuard (parse, sanitize, rate-limit, ranges,
    clamp, complexity) → fingerprint → ResultCache (single-flight) →
    calculator → CalculationResult

One instance per process. Rate-limit and cache state live on the
instance and are never global.

Key components
--------------
- CalculationService.calculate : synchronous calculation in the caller's thread
- CalculationService.submit    : run on the pool, returns a CalculationHandle
- CalculationService.calculate_batch : bounded-concurrency batch with
  per-item error isolation
- CalculationService.health / stats : introspection

Example
-------
>>> from fincalc.service import CalculationService
>>> with CalculationService() as service:
...     result = service.calculate({
...         "kind": "fire_number",
...         "params": {"annual_expenses": 50_000, "withdrawal_rate": 0.04},
...     })
...     print(result.payload.fire_number)
1250000.00
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter, deque
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

import numpy as np

from .benefits import BenefitScenario, social_security_plan
from .cache import CacheStore, ResultCache, fingerprint
from .concurrency import CalculationHandle, CancellationToken
from .config import ServiceConfig
from .debt import DebtAccount, DebtStrategyPlanner
from .exceptions import FinCalcError, ValidationError
from .expenses import ExpenseCategory, expense_based_fire
from .goals import Goal, plan_goals
from .guard import AuditSink, InputGuard, Rejected
from .montecarlo import MonteCarloEngine
from .numeric import barista_fire, coast_fire, fire_number, future_value, required_savings_rate
from .requests import CalculationRequest
from .results import BatchItem, CalculationResult
from .stress import BaseProjection, RecoveryPattern, ShockScenario, StressTestEngine
from .types import HealthDict, ServiceStatsDict

__all__ = ["CalculationService"]

logger = logging.getLogger(__name__)

RawRequest = Union[CalculationRequest, Mapping[str, Any]]


class CalculationService:
    """
    Guarded, cached, concurrent financial calculations.

    Parameters
    ----------
    config : ServiceConfig, optional
        Worker pool, batch concurrency and component configuration.
    sink : AuditSink, optional
        Receives security audit events for rejected requests.
    clock : callable, default time.monotonic
        Time source for rate limiting, cache expiry and uptime.
    cache_store : CacheStore, optional
        Backing store for the result cache.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        sink: Optional[AuditSink] = None,
        clock: Callable[[], float] = time.monotonic,
        cache_store: Optional[CacheStore] = None,
    ):
        self.cfg = config if config is not None else ServiceConfig()
        self._clock = clock
        self._started = clock()

        self.guard = InputGuard(self.cfg.guard, sink=sink, clock=clock)
        self.cache = ResultCache(self.cfg.cache, clock=clock, store=cache_store)
        self._pool = ThreadPoolExecutor(
            max_workers=self.cfg.max_workers, thread_name_prefix="fincalc-worker"
        )
        # Monte Carlo chunks get their own pool so a calculation running on
        # a worker never waits on chunks queued behind it.
        self._chunk_pool = ThreadPoolExecutor(
            max_workers=self.cfg.max_workers, thread_name_prefix="fincalc-chunk"
        )
        self.monte_carlo = MonteCarloEngine(self.cfg.monte_carlo, executor=self._chunk_pool)
        self.debt_planner = DebtStrategyPlanner(self.cfg.debt)
        self.stress_engine = StressTestEngine(self.monte_carlo)

        self._lock = threading.Lock()
        self._latencies: deque = deque(maxlen=self.cfg.latency_window)
        self._by_kind: Counter = Counter()
        self._rejections = 0
        self._failures = 0
        self._closed = False

        self._dispatch: Dict[str, Callable[[Any, Optional[int], CancellationToken], Any]] = {
            "future_value": self._future_value,
            "fire_number": self._fire_number,
            "coast_fire": self._coast_fire,
            "barista_fire": self._barista_fire,
            "required_savings_rate": self._required_savings_rate,
            "goal_planning": self._goal_planning,
            "debt_payoff": self._debt_payoff,
            "expense_based_fire": self._expense_based_fire,
            "social_security": self._social_security,
            "monte_carlo": self._monte_carlo,
            "market_stress_test": self._stress_test,
        }

        if self.cfg.cache.sweep_interval is not None:
            self.cache.start_sweeper(self.cfg.cache.sweep_interval)
        logger.info("calculation service started with %d workers", self.cfg.max_workers)

    # -------------------- Public API --------------------
    def calculate(
        self, request: RawRequest, token: Optional[CancellationToken] = None
    ) -> CalculationResult:
        """
        Validate, de-duplicate and compute one request.

        Parameters
        ----------
        request : CalculationRequest or mapping
            A request object or its JSON form (see ``serialization``).
        token : CancellationToken, optional
            Deadline/cancellation; built from ``request.timeout_s`` if omitted.

        Returns
        -------
        CalculationResult

        Raises
        ------
        FinCalcError
            The rejection or computation error (DomainError,
            ValidationError, RateLimitedError, ComplexityRejectedError,
            CalculationTimeoutError, ...).
        """
        if self._closed:
            raise FinCalcError("calculation service is closed")
        started = time.perf_counter()

        outcome = self.guard.validate(request)
        if isinstance(outcome, Rejected):
            with self._lock:
                self._rejections += 1
            raise outcome.to_error()
        req = outcome.request
        if token is None:
            token = CancellationToken(req.timeout_s)

        key = fingerprint(req)
        try:
            token.check()
            if req.cacheable:
                result, status = self.cache.get_or_compute(
                    key, lambda: self._compute(req, key, token), token
                )
            else:
                result, status = self._compute(req, key, token), "bypassed"
        except FinCalcError as exc:
            with self._lock:
                self._failures += 1
            logger.debug("%s calculation failed: %s", req.kind, exc)
            raise
        except Exception:
            with self._lock:
                self._failures += 1
            logger.exception("unexpected error in %s calculation", req.kind)
            raise

        result = result.with_status(status).with_warnings(outcome.warnings)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        with self._lock:
            self._latencies.append(elapsed_ms)
            self._by_kind[req.kind] += 1
        logger.debug("%s (%s) in %.2f ms", req.kind, status, elapsed_ms)
        return result

    def submit(self, request: RawRequest, timeout: Optional[float] = None) -> CalculationHandle:
        """
        Run ``calculate`` on the worker pool.

        The deadline (``timeout`` or the request's ``timeout_s``) starts at
        submission, so time spent queued counts against it.
        """
        if self._closed:
            raise FinCalcError("calculation service is closed")
        token = CancellationToken(timeout if timeout is not None else _timeout_of(request))
        future = self._pool.submit(self.calculate, request, token)
        return CalculationHandle(future, token)

    def calculate_batch(
        self, requests: Iterable[RawRequest], max_concurrency: Optional[int] = None
    ) -> List[BatchItem]:
        """
        Compute several requests with at most ``max_concurrency`` in flight.

        Every item yields a BatchItem in input order holding either its
        result or its error; one failing item never affects the others.
        """
        limit = max_concurrency if max_concurrency is not None else self.cfg.batch_concurrency
        if limit < 1:
            raise ValidationError(f"max_concurrency must be >= 1, got {limit}", field="max_concurrency")
        if self._closed:
            raise FinCalcError("calculation service is closed")

        gate = threading.BoundedSemaphore(limit)
        futures = []
        for index, request in enumerate(requests):
            gate.acquire()
            future = self._pool.submit(self._batch_item, index, request)
            future.add_done_callback(lambda _f: gate.release())
            futures.append(future)
        items = [f.result() for f in futures]
        failed = sum(not item.ok for item in items)
        logger.info("batch of %d finished with %d errors", len(items), failed)
        return items

    def health(self) -> HealthDict:
        reachable = self.cache.reachable()
        if self._closed:
            status = "closed"
        elif not reachable:
            status = "degraded"
        else:
            status = "ok"
        return {
            "status": status,
            "uptime_s": self._clock() - self._started,
            "workers": self.cfg.max_workers,
            "cache_reachable": reachable,
        }

    def stats(self) -> ServiceStatsDict:
        with self._lock:
            latencies = np.array(self._latencies, dtype=float)
            by_kind = dict(self._by_kind)
            rejections = self._rejections
            failures = self._failures
        if latencies.size:
            p50, p95, p99 = np.percentile(latencies, [50, 95, 99])
        else:
            p50 = p95 = p99 = 0.0
        cache_stats = self.cache.stats()
        return {
            "calculations": sum(by_kind.values()),
            "calculations_by_kind": by_kind,
            "rejections": rejections,
            "failures": failures,
            "cache_hit_rate": cache_stats["hit_rate"],
            "latency_ms": {"p50": float(p50), "p95": float(p95), "p99": float(p99)},
            "cache": cache_stats,
            "guard": self.guard.stats(),
        }

    def close(self) -> None:
        """Shut down pools, the cache sweeper and the audit dispatcher."""
        if self._closed:
            return
        self._closed = True
        self._pool.shutdown(wait=True)
        self._chunk_pool.shutdown(wait=True)
        self.cache.stop_sweeper()
        self.guard.close()
        logger.info("calculation service closed")

    def __enter__(self) -> "CalculationService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -------------------- Internals --------------------
    def _compute(self, req: CalculationRequest, key: str, token: CancellationToken) -> CalculationResult:
        started = time.perf_counter()
        payload = self._dispatch[req.kind](req.params, req.seed, token)
        token.check()
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        return CalculationResult(
            kind=req.kind,
            payload=payload,
            cache_status="miss",
            compute_time_ms=elapsed_ms,
            warnings=_payload_warnings(payload),
            fingerprint=key,
        )

    def _batch_item(self, index: int, request: RawRequest) -> BatchItem:
        try:
            return BatchItem(index, result=self.calculate(request))
        except FinCalcError as exc:
            return BatchItem(index, error=exc)
        except Exception as exc:
            logger.exception("batch item %d failed", index)
            return BatchItem(index, error=FinCalcError(f"internal error: {exc}"))

    # -------------------- Calculators --------------------
    def _future_value(self, p, seed, token):
        return future_value(**p.model_dump(exclude={"kind"}))

    def _fire_number(self, p, seed, token):
        return fire_number(**p.model_dump(exclude={"kind"}))

    def _coast_fire(self, p, seed, token):
        return coast_fire(**p.model_dump(exclude={"kind"}))

    def _barista_fire(self, p, seed, token):
        return barista_fire(**p.model_dump(exclude={"kind"}))

    def _required_savings_rate(self, p, seed, token):
        return required_savings_rate(**p.model_dump(exclude={"kind"}))

    def _goal_planning(self, p, seed, token):
        goals = [Goal(**g.model_dump()) for g in p.goals]
        return plan_goals(goals, p.annual_income, p.expected_return, p.max_savings_rate)

    def _debt_payoff(self, p, seed, token):
        debts = [DebtAccount(**d.model_dump()) for d in p.debts]
        return self.debt_planner.plan(
            debts,
            p.monthly_budget,
            strategies=p.strategies,
            custom_order=p.custom_order,
            consolidated_rate=p.consolidation_rate,
            term_months=p.consolidation_term_months,
            origination_fee=p.origination_fee,
            token=token,
        )

    def _expense_based_fire(self, p, seed, token):
        categories = [ExpenseCategory(**c.model_dump()) for c in p.categories]
        return expense_based_fire(
            categories,
            withdrawal_rate=p.withdrawal_rate,
            projection_years=p.projection_years,
            cost_of_living_index=p.cost_of_living_index,
            location=p.location,
        )

    def _social_security(self, p, seed, token):
        scenarios = None
        if p.stress_scenarios is not None:
            scenarios = [BenefitScenario(**s.model_dump()) for s in p.stress_scenarios]
        return social_security_plan(**p.model_dump(exclude={"kind", "stress_scenarios"}), scenarios=scenarios)

    def _monte_carlo(self, p, seed, token):
        return self.monte_carlo.run(
            p.initial_value,
            p.monthly_contribution,
            p.years,
            p.expected_return,
            p.volatility,
            p.iterations,
            seed=seed,
            target=p.target,
            inflation_rate=p.inflation_rate,
            token=token,
        )

    def _stress_test(self, p, seed, token):
        base = BaseProjection(
            current_net_worth=p.current_net_worth,
            monthly_contribution=p.monthly_contribution,
            expected_return=p.expected_return,
            target_amount=p.target_amount,
            horizon_years=p.horizon_years,
            volatility=p.volatility,
            emergency_fund_months=p.emergency_fund_months,
        )
        scenarios: List[Union[str, ShockScenario]] = list(p.scenarios)
        if p.shock_magnitude is not None:
            scenarios.append(ShockScenario(
                name="custom",
                magnitude=p.shock_magnitude,
                duration_months=p.shock_duration_months,
                recovery=RecoveryPattern(p.recovery_pattern, p.recovery_months, p.recovery_strength),
                contribution_reduction=p.contribution_reduction,
                description="Caller-defined shock",
            ))
        return self.stress_engine.run_suite(
            base, scenarios, iterations=p.iterations, seed=seed, token=token
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _timeout_of(request: RawRequest) -> Optional[float]:
    if isinstance(request, CalculationRequest):
        return request.timeout_s
    if isinstance(request, Mapping):
        value = request.get("timeout_s")
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            return float(value)
    return None


def _payload_warnings(payload: Any) -> tuple:
    warnings = tuple(getattr(payload, "warnings", ()) or ())
    # Coast FIRE reports per-age problems on the projection itself.
    for projection in getattr(payload, "projections", ()):
        if getattr(projection, "error", None):
            warnings += (f"target age {projection.target_age:g}: {projection.error}",)
    return warnings
