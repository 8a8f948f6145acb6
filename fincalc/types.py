"""
Type definitions for fincalc.

Purpose
-------
Provides TypedDict definitions for the dictionary shapes fincalc exchanges
with the outside world: serialized requests and results, batch files, and
the statistics reported by the cache, guard and service.

Usage
-----
>>> from fincalc.types import RequestDict
>>>
>>> request: RequestDict = {
...     "kind": "fire_number",
...     "params": {"annual_expenses": 50_000, "withdrawal_rate": 0.04},
...     "caller_id": "user-42",
... }

Type Definitions
----------------
RequestDict
    JSON form of a CalculationRequest: {"kind", "params", ...}

ResultDict
    JSON form of a CalculationResult: {"kind", "payload", "cache_status", ...}

BatchItemDict
    One batch outcome: {"index", "result"} or {"index", "error"}

BatchFileDict
    Batch file envelope: {"schema_version", "requests"}

CacheStatsDict, GuardStatsDict, ServiceStatsDict, HealthDict
    Introspection snapshots.
"""

from typing import Any, Dict, List, Optional
from typing_extensions import TypedDict, NotRequired

__all__ = [
    "RequestDict",
    "ResultDict",
    "ErrorDict",
    "BatchItemDict",
    "BatchFileDict",
    "CacheStatsDict",
    "GuardStatsDict",
    "LatencyDict",
    "ServiceStatsDict",
    "HealthDict",
]


class RequestDict(TypedDict):
    """
    JSON form of a calculation request.

    Attributes
    ----------
    kind : str
        Calculation kind tag (e.g. "monte_carlo").
    params : dict
        Flat parameter mapping for that kind.
    caller_id, seed, timeout_s, use_cache
        Optional envelope fields; defaults apply when omitted.
    """

    kind: str
    params: Dict[str, Any]
    caller_id: NotRequired[str]
    seed: NotRequired[Optional[int]]
    timeout_s: NotRequired[Optional[float]]
    use_cache: NotRequired[bool]


class ResultDict(TypedDict):
    """
    JSON form of a calculation result.

    Decimal amounts are rendered as strings; numpy arrays as lists.
    """

    kind: str
    payload: Dict[str, Any]
    cache_status: str
    compute_time_ms: float
    warnings: List[str]
    fingerprint: str


class ErrorDict(TypedDict):
    """Serialized FinCalcError."""

    error_kind: str
    message: str
    field: NotRequired[Optional[str]]
    retry_after: NotRequired[Optional[float]]


class BatchItemDict(TypedDict):
    """One batch outcome; exactly one of ``result`` / ``error`` is present."""

    index: int
    result: NotRequired[ResultDict]
    error: NotRequired[ErrorDict]


class BatchFileDict(TypedDict):
    """Envelope of a batch request or batch result file."""

    schema_version: str
    requests: NotRequired[List[RequestDict]]
    results: NotRequired[List[BatchItemDict]]


class CacheStatsDict(TypedDict):
    size: int
    hits: int
    misses: int
    bypasses: int
    in_flight: int
    hit_rate: float


class GuardStatsDict(TypedDict):
    tracked_callers: int
    rejections: int
    rejections_by_kind: Dict[str, int]
    audit_dropped: int


class LatencyDict(TypedDict):
    p50: float
    p95: float
    p99: float


class ServiceStatsDict(TypedDict):
    """Service-level counters and latency percentiles (milliseconds)."""

    calculations: int
    calculations_by_kind: Dict[str, int]
    rejections: int
    failures: int
    cache_hit_rate: float
    latency_ms: LatencyDict
    cache: CacheStatsDict
    guard: GuardStatsDict


class HealthDict(TypedDict):
    status: str
    uptime_s: float
    workers: int
    cache_reachable: bool
