"""
Input guard for fincalc: validation, clamping, complexity limits, rate
limiting and security auditing.

Purpose
-------
Every request passes through InputGuard before any calculator runs. The
guard either accepts the request (possibly with clamped parameters and
warnings) or rejects it with a precise reason, the error kind, the
offending field and, for rate limiting, a retry-after hint.

Checks (in order)
-----------------
1. Parsing: raw mappings are parsed into CalculationRequest; parse errors
   are ValidationError naming the field path.
2. String sanitization: caller id, debt ids, goal names, scenario keys are
   length-limited and screened against script-injection patterns.
3. Rate limiting: one token from the caller's bucket for the request's
   cost class (``standard`` or ``expensive``).
4. Range validation from ``PARAMETER_RANGES``. Mathematically meaningless
   values (negative periods or amounts, rate <= -1, withdrawal rate <= 0)
   are DomainError; other out-of-range values are ValidationError.
5. Clamp-and-warn: Monte Carlo iterations above the cap are clamped.
6. Complexity: iterations × months and debts × months ceilings.

Every rejection produces a SecurityAuditEvent, delivered fire-and-forget
to an AuditSink through a bounded queue and a daemon worker thread.

Example
-------
>>> from fincalc.guard import InputGuard
>>> guard = InputGuard()
>>> outcome = guard.validate({
...     "kind": "fire_number",
...     "params": {"annual_expenses": 50_000, "withdrawal_rate": -0.01},
... })
>>> outcome.accepted, outcome.error_kind, outcome.field
(False, 'DomainError', 'withdrawal_rate')
"""

from __future__ import annotations

import logging
import queue
import re
import threading
import time
from collections import Counter
from dataclasses import dataclass, field as dc_field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Literal, Mapping, Optional, Protocol, Tuple, Union

from .config import GuardConfig, RateLimitConfig
from .constants import MAX_DEBT_MONTHS, MAX_HORIZON_YEARS, MAX_PRINCIPAL_AMOUNT, MONTHS_PER_YEAR
from .exceptions import (
    ComplexityRejectedError,
    DomainError,
    FinCalcError,
    RateLimitedError,
    ValidationError,
)
from .requests import CalculationRequest
from .serialization import request_from_dict
from .stress import SCENARIOS
from .types import GuardStatsDict

__all__ = [
    "ParameterRange",
    "PARAMETER_RANGES",
    "DANGEROUS_PATTERNS",
    "Accepted",
    "Rejected",
    "ValidationOutcome",
    "SecurityAuditEvent",
    "AuditSink",
    "LoggingAuditSink",
    "AuditDispatcher",
    "RateLimitBucket",
    "RateLimiter",
    "InputGuard",
]

logger = logging.getLogger(__name__)

Severity = Literal["low", "medium", "high"]


# ---------------------------------------------------------------------------
# Parameter ranges
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParameterRange:
    """
    Declared valid range of one parameter.

    ``domain_below`` marks lower-bound violations as DomainError (the value
    makes the formula meaningless) instead of ValidationError.
    """

    low: float
    high: float
    low_inclusive: bool = True
    high_inclusive: bool = True
    domain_below: bool = False

    def violation(self, name: str, value: float) -> Optional[FinCalcError]:
        below = value < self.low or (not self.low_inclusive and value == self.low)
        above = value > self.high or (not self.high_inclusive and value == self.high)
        if not (below or above):
            return None
        lo = "[" if self.low_inclusive else "("
        hi = "]" if self.high_inclusive else ")"
        message = f"{name} must be in {lo}{self.low:g}, {self.high:g}{hi}, got {value:g}"
        if below and self.domain_below:
            return DomainError(message, field=name)
        return ValidationError(message, field=name)


_AMOUNT = ParameterRange(0.0, MAX_PRINCIPAL_AMOUNT, domain_below=True)
_SIGNED_AMOUNT = ParameterRange(-MAX_PRINCIPAL_AMOUNT, MAX_PRINCIPAL_AMOUNT)
_RATE = ParameterRange(-1.0, 1.0, low_inclusive=False, domain_below=True)
_FRACTION = ParameterRange(0.0, 1.0, domain_below=True)
_YEARS = ParameterRange(0.0, float(MAX_HORIZON_YEARS), domain_below=True)
_POSITIVE_YEARS = ParameterRange(0.0, float(MAX_HORIZON_YEARS), low_inclusive=False, domain_below=True)

PARAMETER_RANGES: Dict[str, ParameterRange] = {
    # Amounts
    "principal": _AMOUNT,
    "monthly_contribution": _AMOUNT,
    "annual_expenses": _AMOUNT,
    "current_savings": _AMOUNT,
    "part_time_income": _AMOUNT,
    "target_amount": _AMOUNT,
    "initial_value": _AMOUNT,
    "target": _AMOUNT,
    "fire_number": _AMOUNT,
    "monthly_budget": _AMOUNT,
    "base_fire_number": _AMOUNT,
    "current_net_worth": _SIGNED_AMOUNT,
    "annual_income": ParameterRange(0.0, MAX_PRINCIPAL_AMOUNT, low_inclusive=False, domain_below=True),
    # Rates
    "annual_rate": _RATE,
    "expected_return": _RATE,
    "withdrawal_rate": ParameterRange(0.0, 0.10, low_inclusive=False, domain_below=True),
    "volatility": ParameterRange(0.0, 2.0, domain_below=True),
    "inflation_rate": ParameterRange(-0.5, 1.0),
    "max_savings_rate": ParameterRange(0.0, 1.0, low_inclusive=False),
    "safety_margin": _FRACTION,
    "cost_of_living_multiplier": ParameterRange(0.0, 10.0, low_inclusive=False, domain_below=True),
    "consolidation_rate": _FRACTION,
    "origination_fee": ParameterRange(0.0, 0.25, domain_below=True),
    "contribution_reduction": _FRACTION,
    "recovery_strength": ParameterRange(0.0, 2.0),
    "shock_magnitude": ParameterRange(-1.0, 0.0, low_inclusive=False, domain_below=True),
    "cost_of_living_index": ParameterRange(0.0, 10.0, low_inclusive=False, domain_below=True),
    # Time
    "years": _YEARS,
    "horizon_years": _POSITIVE_YEARS,
    "current_age": ParameterRange(0.0, 120.0, domain_below=True),
    "retirement_age": ParameterRange(0.0, 120.0, domain_below=True),
    "life_expectancy": ParameterRange(0.0, 120.0, domain_below=True),
    "claiming_age": ParameterRange(62.0, 70.0),
    "projection_years": _YEARS,
    "emergency_fund_months": ParameterRange(0.0, 120.0, domain_below=True),
    "consolidation_term_months": ParameterRange(1.0, float(MAX_DEBT_MONTHS)),
    "shock_duration_months": ParameterRange(1.0, float(MAX_DEBT_MONTHS)),
    "recovery_months": ParameterRange(0.0, float(MAX_DEBT_MONTHS)),
    # Nested collections
    "goals.target_amount": _AMOUNT,
    "goals.years": _POSITIVE_YEARS,
    "goals.current_saved": _AMOUNT,
    "goals.priority": ParameterRange(0.0, 100.0, low_inclusive=False),
    "debts.balance": _AMOUNT,
    "debts.annual_rate": ParameterRange(0.0, 1.0, domain_below=True),
    "debts.minimum_payment": _AMOUNT,
    "categories.monthly_amount": _AMOUNT,
    "categories.inflation_rate": ParameterRange(-0.5, 1.0),
    "stress_scenarios.market_return_adjustment": ParameterRange(-0.5, 0.5),
    "stress_scenarios.inflation_adjustment": ParameterRange(-0.5, 1.0),
    "stress_scenarios.benefit_adjustment": ParameterRange(-1.0, 1.0),
    "stress_scenarios.healthcare_inflation_adjustment": ParameterRange(-0.5, 1.0),
}
"""Declared valid ranges, keyed by parameter name (``collection.field`` for nested items)."""

# Iteration counts have a configurable cap and are checked separately.
_ITERATION_FIELDS = {"monte_carlo": 1, "market_stress_test": 0}


# ---------------------------------------------------------------------------
# String sanitization
# ---------------------------------------------------------------------------

DANGEROUS_PATTERNS: Tuple[re.Pattern, ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"javascript:",
        r"<\s*script",
        r"eval\s*\(",
        r"function\s*\(",
        r"settimeout",
        r"setinterval",
        r"document\.",
        r"window\.",
        r"[<>]",
    )
)
"""Patterns rejected in any string parameter."""


# ---------------------------------------------------------------------------
# Outcomes and audit events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Accepted:
    request: CalculationRequest
    warnings: Tuple[str, ...] = ()

    @property
    def accepted(self) -> bool:
        return True


@dataclass(frozen=True)
class Rejected:
    reason: str
    error_kind: str
    field: Optional[str] = None
    retry_after: Optional[float] = None
    error: Optional[FinCalcError] = dc_field(default=None, compare=False, repr=False)

    @property
    def accepted(self) -> bool:
        return False

    def to_error(self) -> FinCalcError:
        """The exception to raise for this rejection."""
        if self.error is not None:
            return self.error
        return ValidationError(self.reason, field=self.field)


ValidationOutcome = Union[Accepted, Rejected]


@dataclass(frozen=True)
class SecurityAuditEvent:
    caller_id: str
    reason: str
    severity: Severity
    error_kind: str
    event_type: str
    timestamp: datetime = dc_field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink(Protocol):
    """Receives audit events; implementations must be thread-safe."""

    def emit(self, event: SecurityAuditEvent) -> None:
        ...


class LoggingAuditSink:
    """Default sink: writes each event to the ``fincalc.audit`` logger."""

    _LEVELS = {"low": logging.INFO, "medium": logging.WARNING, "high": logging.ERROR}

    def __init__(self, logger_name: str = "fincalc.audit"):
        self._log = logging.getLogger(logger_name)

    def emit(self, event: SecurityAuditEvent) -> None:
        self._log.log(
            self._LEVELS.get(event.severity, logging.WARNING),
            "[SECURITY] %s: caller %s - %s (%s, severity %s)",
            event.event_type.upper(), event.caller_id, event.reason,
            event.error_kind, event.severity,
        )


class AuditDispatcher:
    """
    Fire-and-forget delivery of audit events.

    Events are queued (bounded) and delivered by a daemon thread. A full
    queue drops the event; a failing sink is logged. Neither ever reaches
    the caller of ``publish``.
    """

    _STOP = object()

    def __init__(self, sink: Optional[AuditSink] = None, maxsize: int = 1_000):
        self.sink = sink if sink is not None else LoggingAuditSink()
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=maxsize)
        self._dropped = 0
        self._lock = threading.Lock()
        self._closed = False
        self._thread = threading.Thread(target=self._run, name="fincalc-audit", daemon=True)
        self._thread.start()

    @property
    def dropped(self) -> int:
        return self._dropped

    def publish(self, event: SecurityAuditEvent) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            with self._lock:
                self._dropped += 1
            logger.debug("audit queue full; dropped event for %s", event.caller_id)

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until queued events are delivered; False on timeout."""
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.005)
        return True

    def close(self, timeout: float = 5.0) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put(self._STOP, timeout=timeout)
        except queue.Full:
            logger.warning("audit queue still full at shutdown; worker not signalled")
            return
        self._thread.join(timeout)

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is self._STOP:
                    return
                self.sink.emit(event)
            except Exception:
                logger.exception("audit sink failed to record event")
            finally:
                self._queue.task_done()


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

class RateLimitBucket:
    """
    Token bucket with continuous refill.

    Parameters
    ----------
    capacity : float
        Maximum tokens (burst size).
    refill_per_second : float
        Tokens added per second.
    clock : callable
        Monotonic time source.
    """

    def __init__(self, capacity: float, refill_per_second: float, clock: Callable[[], float]):
        self.capacity = float(capacity)
        self.refill_per_second = float(refill_per_second)
        self._clock = clock
        self._tokens = float(capacity)
        self._last = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_second)
        self._last = now

    @property
    def tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def try_acquire(self, cost: float = 1.0) -> float:
        """Take *cost* tokens; return 0.0 on success or the seconds to wait."""
        with self._lock:
            self._refill()
            if self._tokens >= cost:
                self._tokens -= cost
                return 0.0
            return (cost - self._tokens) / self.refill_per_second


class RateLimiter:
    """Per-caller, per-cost-class token buckets."""

    def __init__(self, config: Optional[RateLimitConfig] = None, clock: Callable[[], float] = time.monotonic):
        self.cfg = config if config is not None else RateLimitConfig()
        self._clock = clock
        self._buckets: Dict[Tuple[str, str], RateLimitBucket] = {}
        self._lock = threading.Lock()

    def _bucket(self, caller_id: str, cost_class: str) -> RateLimitBucket:
        key = (caller_id, cost_class)
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                if cost_class == "expensive":
                    bucket = RateLimitBucket(
                        self.cfg.expensive_capacity, self.cfg.expensive_refill_per_second, self._clock
                    )
                else:
                    bucket = RateLimitBucket(
                        self.cfg.standard_capacity, self.cfg.standard_refill_per_second, self._clock
                    )
                self._buckets[key] = bucket
            return bucket

    def acquire(self, caller_id: str, cost_class: str) -> None:
        """Consume one token or raise RateLimitedError."""
        if not self.cfg.enabled:
            return
        wait = self._bucket(caller_id, cost_class).try_acquire()
        if wait > 0:
            raise RateLimitedError(
                f"rate limit exceeded for caller {caller_id!r} ({cost_class}); "
                f"retry in {wait:.1f}s",
                retry_after=wait,
            )

    @property
    def tracked_callers(self) -> int:
        with self._lock:
            return len({caller for caller, _ in self._buckets})


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------

_SEVERITY = {
    "DomainError": ("low", "validation_error"),
    "ValidationError": ("low", "validation_error"),
    "ComplexityRejected": ("medium", "overflow_attempt"),
    "RateLimited": ("medium", "rate_limit"),
}


class _DangerousInput(ValidationError):
    """Sanitization failure; audited with high severity."""


class InputGuard:
    """
    Validates and rate-limits calculation requests.

    Parameters
    ----------
    config : GuardConfig, optional
        Caps, ceilings, string limits and rate-limit budgets.
    sink : AuditSink, optional
        Destination of audit events (default logs them).
    clock : callable, default time.monotonic
        Time source for the rate-limit buckets.
    """

    def __init__(
        self,
        config: Optional[GuardConfig] = None,
        sink: Optional[AuditSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cfg = config if config is not None else GuardConfig()
        self.limiter = RateLimiter(self.cfg.rate_limit, clock=clock)
        self.audit = AuditDispatcher(sink, maxsize=self.cfg.audit_queue_size)
        self._rejections: Counter = Counter()
        self._lock = threading.Lock()

    # -------------------- Public API --------------------
    def validate(self, request: Union[CalculationRequest, Mapping[str, Any]]) -> ValidationOutcome:
        """Check *request*; return Accepted (maybe clamped) or Rejected."""
        caller = _caller_of(request)
        try:
            parsed = request if isinstance(request, CalculationRequest) else request_from_dict(request)
        except FinCalcError as exc:
            # Malformed requests still spend the caller's standard budget.
            try:
                self.limiter.acquire(caller, "standard")
            except RateLimitedError as limited:
                return self._reject(caller, limited)
            return self._reject(caller, exc)
        try:
            caller = parsed.caller_id
            self._sanitize(parsed)
            self.limiter.acquire(parsed.caller_id, parsed.cost_class)
            self._check_ranges(parsed)
            parsed, warnings = self._clamp(parsed)
            self._check_complexity(parsed)
        except FinCalcError as exc:
            return self._reject(caller, exc)
        return Accepted(parsed, tuple(warnings))

    def check(self, request: Union[CalculationRequest, Mapping[str, Any]]) -> Accepted:
        """Like ``validate`` but raises the rejection's FinCalcError."""
        outcome = self.validate(request)
        if isinstance(outcome, Rejected):
            raise outcome.to_error()
        return outcome

    def stats(self) -> GuardStatsDict:
        with self._lock:
            by_kind = dict(self._rejections)
        return {
            "tracked_callers": self.limiter.tracked_callers,
            "rejections": sum(by_kind.values()),
            "rejections_by_kind": by_kind,
            "audit_dropped": self.audit.dropped,
        }

    def close(self) -> None:
        self.audit.close()

    # -------------------- Steps --------------------
    def _sanitize(self, request: CalculationRequest) -> None:
        for name, value in _strings(request):
            if len(value) > self.cfg.max_string_length:
                raise ValidationError(
                    f"{name} exceeds {self.cfg.max_string_length} characters", field=name
                )
            for pattern in DANGEROUS_PATTERNS:
                if pattern.search(value):
                    raise _DangerousInput(
                        f"{name} contains a disallowed pattern ({pattern.pattern})", field=name
                    )

    def _check_ranges(self, request: CalculationRequest) -> None:
        for name, value in _numbers(request):
            spec = PARAMETER_RANGES.get(name)
            if spec is None:
                continue
            error = spec.violation(name, value)
            if error is not None:
                raise error
        iterations = getattr(request.params, "iterations", None)
        if iterations is not None:
            minimum = _ITERATION_FIELDS.get(request.kind, 1)
            if iterations < minimum:
                raise ValidationError(
                    f"iterations must be >= {minimum}, got {iterations}", field="iterations"
                )

    def _clamp(self, request: CalculationRequest) -> Tuple[CalculationRequest, List[str]]:
        warnings: List[str] = []
        iterations = getattr(request.params, "iterations", None)
        cap = self.cfg.max_iterations
        if iterations is not None and iterations > cap:
            if not self.cfg.clamp_iterations:
                raise ValidationError(
                    f"iterations must be <= {cap:,}, got {iterations:,}", field="iterations"
                )
            warnings.append(f"iterations clamped from {iterations:,} to {cap:,}")
            request = request.with_params(iterations=cap)
        return request, warnings

    def _check_complexity(self, request: CalculationRequest) -> None:
        p = request.params
        if request.kind == "monte_carlo":
            work = p.iterations * max(1, round(p.years * MONTHS_PER_YEAR))
        elif request.kind == "market_stress_test":
            # Each scenario runs a baseline and a stressed simulation.
            runs = 2 * _scenario_count(p)
            work = p.iterations * max(1, round(p.horizon_years * MONTHS_PER_YEAR)) * runs
        elif request.kind == "debt_payoff":
            steps = len(p.debts) * MAX_DEBT_MONTHS
            if steps > self.cfg.debt_step_ceiling:
                raise ComplexityRejectedError(
                    f"{len(p.debts)} debts x {MAX_DEBT_MONTHS} months = {steps:,} exceeds "
                    f"the ceiling of {self.cfg.debt_step_ceiling:,} debt-months"
                )
            return
        else:
            return
        if work > self.cfg.complexity_ceiling:
            raise ComplexityRejectedError(
                f"iterations x months = {work:,} exceeds the ceiling of "
                f"{self.cfg.complexity_ceiling:,}; reduce iterations or horizon"
            )

    def _reject(self, caller: str, exc: FinCalcError) -> Rejected:
        kind = exc.error_kind
        severity, event_type = _SEVERITY.get(kind, ("low", "validation_error"))
        if isinstance(exc, _DangerousInput):
            severity, event_type = "high", "dangerous_input"
            exc = ValidationError(str(exc), field=exc.field)
        with self._lock:
            self._rejections[kind] += 1
        self.audit.publish(SecurityAuditEvent(
            caller_id=caller,
            reason=str(exc),
            severity=severity,
            error_kind=kind,
            event_type=event_type,
        ))
        logger.debug("rejected request from %s: %s (%s)", caller, exc, kind)
        return Rejected(
            reason=str(exc),
            error_kind=kind,
            field=getattr(exc, "field", None),
            retry_after=getattr(exc, "retry_after", None),
            error=exc,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _caller_of(request: Any) -> str:
    if isinstance(request, CalculationRequest):
        return request.caller_id
    if isinstance(request, Mapping):
        caller = request.get("caller_id", "anonymous")
        return caller if isinstance(caller, str) else repr(caller)[:64]
    return "anonymous"


def _scenario_count(params: Any) -> int:
    """Scenarios a stress request will run (custom shock plus named ones)."""
    named = len(params.scenarios)
    custom = 1 if params.shock_magnitude is not None else 0
    if named or custom:
        return named + custom
    return len(SCENARIOS)


def _strings(request: CalculationRequest) -> Iterator[Tuple[str, str]]:
    yield "caller_id", request.caller_id
    p = request.params
    for name in ("scenarios", "custom_order"):
        for value in getattr(p, name, ()):
            yield name, value
    for goal in getattr(p, "goals", ()):
        yield "goals.name", goal.name
    for debt in getattr(p, "debts", ()):
        yield "debts.id", debt.id
        yield "debts.debt_type", debt.debt_type
        if debt.name is not None:
            yield "debts.name", debt.name
    for category in getattr(p, "categories", ()):
        yield "categories.name", category.name
    for scenario in getattr(p, "stress_scenarios", None) or ():
        yield "stress_scenarios.name", scenario.name
    if getattr(p, "location", None) is not None:
        yield "location", p.location


def _numbers(request: CalculationRequest) -> Iterator[Tuple[str, float]]:
    p = request.params
    for name, value in p:
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)) and name != "iterations":
            yield name, float(value)
    for collection in ("goals", "debts", "categories", "stress_scenarios"):
        for item in getattr(p, collection, None) or ():
            for name, value in item:
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    yield f"{collection}.{name}", float(value)
