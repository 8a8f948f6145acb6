"""
Fingerprint-keyed result cache with single-flight de-duplication.

Purpose
-------
Identical requests (same kind, parameters and seed) share one computation
and one cached result. The cache key is a fingerprint: the sha256 digest
of the canonical JSON of the normalized request.

Behaviour
---------
- Lookup hit: the stored result is returned with status ``hit``.
- Miss: the caller computes, the result is stored, status ``miss``.
- Concurrent misses on one fingerprint: the first caller computes; the
  others wait (bounded by their own deadline) and receive the same
  result, or the same exception. If the computing caller hits its own
  deadline or is cancelled, one waiter takes over and computes instead.
- Entries expire after their TTL (lazily on lookup, or via ``sweep()``
  and the optional background sweeper). The store is bounded; the oldest
  entry is evicted first.
- A failing store raises CacheUnavailableError internally; it is logged
  and the request is computed directly with status ``bypassed``.

Example
-------
>>> cache = ResultCache()
>>> result, status = cache.get_or_compute("abc", lambda: 42)
>>> status
'miss'
>>> cache.get_or_compute("abc", lambda: 0)
(42, 'hit')
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Tuple

from .concurrency import CancellationToken
from .config import CacheConfig
from .constants import CACHE_LOCK_STRIPES, FINGERPRINT_SIGNIFICANT_DIGITS
from .exceptions import CacheUnavailableError, CalculationTimeoutError
from .requests import CalculationRequest
from .types import CacheStatsDict

__all__ = ["fingerprint", "canonical_json", "CacheEntry", "CacheStore", "ResultCache"]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Fingerprints
# ---------------------------------------------------------------------------

def _normalize(value: Any) -> Any:
    if isinstance(value, bool) or value is None or isinstance(value, str):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value == 0:
            return 0.0
        if not math.isfinite(value):
            return repr(value)
        return float(f"{value:.{FINGERPRINT_SIGNIFICANT_DIGITS}g}")
    if isinstance(value, Decimal):
        return str(value.normalize())
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return str(value)


def canonical_json(payload: Any) -> str:
    """Canonical JSON: normalized numbers, sorted keys, no whitespace."""
    return json.dumps(_normalize(payload), sort_keys=True, separators=(",", ":"))


def fingerprint(request: CalculationRequest) -> str:
    """
    Cache key of *request*.

    Covers the kind, the parameters and the seed. Caller identity, timeout
    and the cache flag do not change the result and are excluded.
    """
    params = request.params.model_dump(mode="python")
    payload = {"kind": request.kind, "params": params, "seed": request.seed}
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

@dataclass
class CacheEntry:
    result: Any
    created_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class CacheStore:
    """
    Bounded in-memory store (insertion ordered; oldest evicted first).

    Subclasses may back the cache with something that can fail; any
    exception they raise is treated as the store being unavailable.
    """

    def __init__(self, max_entries: int):
        self.max_entries = max_entries
        self._data: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._data.get(key)

    def put(self, key: str, entry: CacheEntry) -> None:
        self._data.pop(key, None)
        self._data[key] = entry
        while len(self._data) > self.max_entries:
            self._data.popitem(last=False)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def clear(self) -> None:
        self._data.clear()

    def items(self):
        return list(self._data.items())

    def __len__(self) -> int:
        return len(self._data)


@dataclass
class _InFlight:
    done: threading.Event = field(default_factory=threading.Event)
    result: Any = None
    error: Optional[BaseException] = None
    abandoned: bool = False


class _Stripe:
    """A lock and the in-flight records of the fingerprints hashed to it."""

    __slots__ = ("lock", "in_flight")

    def __init__(self):
        self.lock = threading.Lock()
        self.in_flight: Dict[str, _InFlight] = {}


_RETRY = object()


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class ResultCache:
    """
    TTL result cache with single-flight computation.

    Single-flight coordination is locked per fingerprint (striped locks);
    the shared store lock is held only for individual store operations.

    Parameters
    ----------
    config : CacheConfig, optional
        TTL, capacity, sweep interval, enabled flag.
    clock : callable, default time.monotonic
        Time source for expiry; injectable for tests.
    store : CacheStore, optional
        Backing store (default: bounded in-memory store).
    stripes : int, default CACHE_LOCK_STRIPES
        Number of lock stripes.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        store: Optional[CacheStore] = None,
        stripes: int = CACHE_LOCK_STRIPES,
    ):
        self.cfg = config if config is not None else CacheConfig()
        self._clock = clock
        self._store = store if store is not None else CacheStore(self.cfg.max_entries)
        self._store_lock = threading.Lock()
        self._stripes = [_Stripe() for _ in range(max(1, stripes))]
        self._count_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._bypasses = 0
        self._sweeper: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def _stripe(self, key: str) -> _Stripe:
        return self._stripes[hash(key) % len(self._stripes)]

    def _count(self, status: str) -> None:
        with self._count_lock:
            if status == "hit":
                self._hits += 1
            elif status == "miss":
                self._misses += 1
            else:
                self._bypasses += 1

    # -------------------- Store access --------------------
    def _lookup(self, key: str) -> Optional[Any]:
        """Return a live cached result or None."""
        try:
            with self._store_lock:
                entry = self._store.get(key)
                if entry is None:
                    return None
                if entry.expired(self._clock()):
                    self._store.delete(key)
                    return None
                return entry.result
        except Exception as exc:
            raise CacheUnavailableError(f"cache lookup failed: {exc}") from exc

    def _save(self, key: str, result: Any) -> None:
        try:
            with self._store_lock:
                self._store.put(key, CacheEntry(result, self._clock(), self.cfg.ttl_seconds))
        except Exception as exc:
            raise CacheUnavailableError(f"cache store failed: {exc}") from exc

    # -------------------- Main entry point --------------------
    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Any],
        token: Optional[CancellationToken] = None,
    ) -> Tuple[Any, str]:
        """
        Return ``(result, status)`` for *key*, computing at most once.

        Status is ``hit``, ``miss`` or ``bypassed``. Exceptions raised by
        *compute* propagate to the computing caller and to every waiter;
        failed computations are not cached. A computing caller that runs
        out of time or is cancelled fails alone: one waiter takes over
        and computes under its own token.
        """
        if not self.cfg.enabled:
            self._count("bypassed")
            return compute(), "bypassed"

        stripe = self._stripe(key)
        while True:
            try:
                with stripe.lock:
                    cached = self._lookup(key)
                    if cached is not None:
                        self._count("hit")
                        return cached, "hit"
                    flight = stripe.in_flight.get(key)
                    leader = flight is None
                    if leader:
                        flight = _InFlight()
                        stripe.in_flight[key] = flight
            except CacheUnavailableError as exc:
                logger.warning("%s; computing directly", exc)
                self._count("bypassed")
                return compute(), "bypassed"

            if leader:
                return self._lead(key, stripe, flight, compute)

            outcome = self._wait(flight, token)
            if outcome is not _RETRY:
                self._count("hit")
                return outcome, "hit"
            logger.debug("computation for %s abandoned by its caller; retrying", key[:12])

    def _lead(
        self, key: str, stripe: _Stripe, flight: _InFlight, compute: Callable[[], Any]
    ) -> Tuple[Any, str]:
        self._count("miss")
        try:
            result = compute()
        except CalculationTimeoutError:
            # Deadline and cancellation belong to this caller, not the waiters.
            flight.abandoned = True
            raise
        except BaseException as exc:
            flight.error = exc
            raise
        else:
            flight.result = result
            try:
                self._save(key, result)
            except CacheUnavailableError as exc:
                logger.warning("%s; result not cached", exc)
                self._count("bypassed")
                return result, "bypassed"
            return result, "miss"
        finally:
            with stripe.lock:
                stripe.in_flight.pop(key, None)
            flight.done.set()

    def _wait(self, flight: _InFlight, token: Optional[CancellationToken]) -> Any:
        """Wait for the leader's outcome within this caller's own deadline."""
        while not flight.done.is_set():
            if token is not None:
                token.check()
                remaining = token.remaining()
                step = 0.05 if remaining is None else min(0.05, max(remaining, 0.001))
            else:
                step = 0.05
            flight.done.wait(step)
        if flight.abandoned:
            return _RETRY
        if flight.error is not None:
            raise flight.error
        return flight.result

    # -------------------- Maintenance --------------------
    def invalidate(self, key: str) -> bool:
        with self._store_lock:
            return self._store.delete(key)

    def clear(self) -> None:
        with self._store_lock:
            self._store.clear()

    def sweep(self) -> int:
        """Drop expired entries; return how many were removed."""
        now = self._clock()
        with self._store_lock:
            stale = [k for k, e in self._store.items() if e.expired(now)]
            for k in stale:
                self._store.delete(k)
        if stale:
            logger.debug("cache sweep removed %d expired entries", len(stale))
        return len(stale)

    def start_sweeper(self, interval: Optional[float] = None) -> None:
        """Run ``sweep()`` every *interval* seconds on a daemon thread."""
        interval = interval if interval is not None else self.cfg.sweep_interval
        if interval is None or self._sweeper is not None:
            return
        self._stop.clear()

        def loop():
            while not self._stop.wait(interval):
                try:
                    self.sweep()
                except Exception:
                    logger.exception("cache sweep failed")

        self._sweeper = threading.Thread(target=loop, name="fincalc-cache-sweeper", daemon=True)
        self._sweeper.start()

    def stop_sweeper(self, timeout: float = 5.0) -> None:
        if self._sweeper is None:
            return
        self._stop.set()
        self._sweeper.join(timeout)
        self._sweeper = None

    def reachable(self) -> bool:
        """True if the backing store answers a lookup."""
        try:
            with self._store_lock:
                self._store.get("__health__")
            return True
        except Exception:
            logger.warning("cache store unreachable", exc_info=True)
            return False

    def stats(self) -> CacheStatsDict:
        in_flight = 0
        for stripe in self._stripes:
            with stripe.lock:
                in_flight += len(stripe.in_flight)
        with self._store_lock:
            size = len(self._store)
        with self._count_lock:
            lookups = self._hits + self._misses
            return {
                "size": size,
                "hits": self._hits,
                "misses": self._misses,
                "bypasses": self._bypasses,
                "in_flight": in_flight,
                "hit_rate": self._hits / lookups if lookups else 0.0,
            }
