"""
Calculation result envelope for fincalc.

Every calculation returns a CalculationResult whose ``payload`` is the
kind-specific result dataclass defined next to its calculator
(FutureValueResult in numeric.py, MonteCarloResult in montecarlo.py, ...).
The envelope adds cache status, compute time, warnings and the request
fingerprint.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Literal, Optional, Tuple

from .exceptions import FinCalcError

__all__ = ["CacheStatus", "CalculationResult", "BatchItem"]

CacheStatus = Literal["hit", "miss", "bypassed"]


@dataclass(frozen=True)
class CalculationResult:
    kind: str
    payload: Any
    cache_status: CacheStatus = "miss"
    compute_time_ms: float = 0.0
    warnings: Tuple[str, ...] = ()
    fingerprint: str = ""

    def with_status(self, status: CacheStatus) -> "CalculationResult":
        """Copy with a different cache status (payload shared, immutable)."""
        return replace(self, cache_status=status)

    def with_warnings(self, extra: Tuple[str, ...]) -> "CalculationResult":
        """Copy with *extra* warnings appended (order preserved, no duplicates)."""
        merged = tuple(dict.fromkeys(self.warnings + tuple(extra)))
        return replace(self, warnings=merged)


@dataclass(frozen=True)
class BatchItem:
    """Outcome of one batch entry: either ``result`` or ``error`` is set."""

    index: int
    result: Optional[CalculationResult] = None
    error: Optional[FinCalcError] = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return self.error is None
