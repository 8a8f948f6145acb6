"""
Unit tests for cache.py module.

Tests request fingerprints, TTL expiry, eviction, single-flight
de-duplication and degraded operation when the store fails.
"""

import threading
import time

import pytest

from fincalc.cache import CacheStore, ResultCache, canonical_json, fingerprint
from fincalc.concurrency import CancellationToken
from fincalc.config import CacheConfig
from fincalc.exceptions import CalculationCancelledError, CalculationTimeoutError, DomainError
from fincalc.requests import CalculationRequest


def _fire(**overrides):
    params = {"annual_expenses": 50_000, "withdrawal_rate": 0.04}
    envelope = {}
    for key in ("caller_id", "seed", "timeout_s", "use_cache"):
        if key in overrides:
            envelope[key] = overrides.pop(key)
    params.update(overrides)
    return CalculationRequest.build("fire_number", params, **envelope)


class BrokenStore(CacheStore):
    """Store whose backend is down."""

    def __init__(self):
        super().__init__(max_entries=10)

    def get(self, key):
        raise ConnectionError("store offline")

    def put(self, key, entry):
        raise ConnectionError("store offline")


class WriteOnlyFailure(CacheStore):
    def __init__(self):
        super().__init__(max_entries=10)

    def put(self, key, entry):
        raise ConnectionError("disk full")


@pytest.fixture
def cache(clock):
    return ResultCache(CacheConfig(ttl_seconds=10, max_entries=3), clock=clock)


# ============================================================================
# FINGERPRINTS
# ============================================================================

class TestFingerprint:

    def test_identical_requests_share_key(self):
        assert fingerprint(_fire()) == fingerprint(_fire())

    def test_envelope_fields_excluded(self):
        a = _fire(caller_id="alice", timeout_s=5)
        b = _fire(caller_id="bob", use_cache=False)

        assert fingerprint(a) == fingerprint(b)

    def test_seed_included(self):
        assert fingerprint(_fire(seed=1)) != fingerprint(_fire(seed=2))

    def test_parameters_included(self):
        assert fingerprint(_fire()) != fingerprint(_fire(annual_expenses=50_001))

    def test_float_noise_normalized(self):
        assert fingerprint(_fire(withdrawal_rate=0.1 + 0.2 - 0.26)) == fingerprint(_fire(withdrawal_rate=0.04))

    def test_canonical_json_sorts_keys(self):
        assert canonical_json({"b": 1, "a": -0.0}) == '{"a":0.0,"b":1}'


# ============================================================================
# LOOKUP
# ============================================================================

class TestGetOrCompute:

    def test_miss_then_hit(self, cache):
        calls = []

        def compute():
            calls.append(1)
            return "result"

        assert cache.get_or_compute("k", compute) == ("result", "miss")
        assert cache.get_or_compute("k", compute) == ("result", "hit")
        assert len(calls) == 1

    def test_ttl_expiry(self, cache, clock):
        cache.get_or_compute("k", lambda: 1)
        clock.advance(9.9)
        assert cache.get_or_compute("k", lambda: 2) == (1, "hit")

        clock.advance(0.2)
        assert cache.get_or_compute("k", lambda: 2) == (2, "miss")

    def test_oldest_evicted(self, cache):
        for key in ("a", "b", "c", "d"):
            cache.get_or_compute(key, lambda: key)

        assert cache.stats()["size"] == 3
        assert cache.get_or_compute("a", lambda: "again") == ("again", "miss")

    def test_errors_propagate_and_are_not_cached(self, cache):
        def fail():
            raise DomainError("bad input", field="x")

        with pytest.raises(DomainError):
            cache.get_or_compute("k", fail)
        assert cache.get_or_compute("k", lambda: "ok") == ("ok", "miss")

    def test_disabled_cache_bypasses(self, clock):
        cache = ResultCache(CacheConfig(enabled=False), clock=clock)

        assert cache.get_or_compute("k", lambda: 1) == (1, "bypassed")
        assert cache.get_or_compute("k", lambda: 2) == (2, "bypassed")

    def test_unavailable_store_bypasses(self, clock):
        cache = ResultCache(clock=clock, store=BrokenStore())

        assert cache.get_or_compute("k", lambda: 1) == (1, "bypassed")
        assert cache.reachable() is False

    def test_failed_write_still_returns_result(self, clock):
        cache = ResultCache(clock=clock, store=WriteOnlyFailure())

        assert cache.get_or_compute("k", lambda: 1) == (1, "bypassed")


class TestSingleFlight:

    def test_concurrent_misses_compute_once(self, cache):
        release = threading.Event()
        calls = []
        outcomes = []

        def compute():
            calls.append(1)
            release.wait(5)
            return 42

        def worker():
            outcomes.append(cache.get_or_compute("k", compute))

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        time.sleep(0.1)
        release.set()
        for t in threads:
            t.join(5)

        assert len(calls) == 1
        assert sorted(status for _, status in outcomes) == ["hit"] * 4 + ["miss"]
        assert all(value == 42 for value, _ in outcomes)

    def test_waiters_share_the_error(self, cache):
        release = threading.Event()
        errors = []

        def compute():
            release.wait(5)
            raise DomainError("boom")

        def worker():
            try:
                cache.get_or_compute("k", compute)
            except DomainError as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for t in threads:
            t.start()
        time.sleep(0.1)
        release.set()
        for t in threads:
            t.join(5)

        assert len(errors) == 3

    def test_waiter_respects_its_deadline(self, cache):
        started = threading.Event()
        release = threading.Event()

        def compute():
            started.set()
            release.wait(5)
            return 1

        leader = threading.Thread(target=cache.get_or_compute, args=("k", compute))
        leader.start()
        try:
            assert started.wait(5)
            with pytest.raises(CalculationTimeoutError):
                cache.get_or_compute("k", lambda: 2, CancellationToken(0.05))
        finally:
            release.set()
            leader.join(5)

    def test_leader_deadline_does_not_fail_waiter(self, cache):
        started = threading.Event()
        leader_errors = []

        def runs_out_of_time():
            token = CancellationToken(0.2)
            started.set()
            while True:
                token.check()
                time.sleep(0.01)

        def leader():
            try:
                cache.get_or_compute("k", runs_out_of_time)
            except CalculationTimeoutError as exc:
                leader_errors.append(exc)

        thread = threading.Thread(target=leader)
        thread.start()
        assert started.wait(5)
        outcome = cache.get_or_compute("k", lambda: 7, CancellationToken())
        thread.join(5)

        assert len(leader_errors) == 1
        assert outcome == (7, "miss")
        assert cache.get_or_compute("k", lambda: 0) == (7, "hit")

    def test_cancelled_leader_hands_over_to_waiter(self, cache):
        leader_token = CancellationToken()
        started = threading.Event()
        outcomes = []

        def until_cancelled():
            started.set()
            while True:
                leader_token.check()
                time.sleep(0.01)

        def leader():
            try:
                cache.get_or_compute("k", until_cancelled, leader_token)
            except CalculationCancelledError:
                outcomes.append("cancelled")

        def waiter():
            outcomes.append(cache.get_or_compute("k", lambda: 5))

        first = threading.Thread(target=leader)
        first.start()
        assert started.wait(5)
        second = threading.Thread(target=waiter)
        second.start()
        time.sleep(0.1)
        leader_token.cancel()
        first.join(5)
        second.join(5)

        assert sorted(outcomes, key=str) == [(5, "miss"), "cancelled"]

    def test_distinct_keys_compute_concurrently(self, cache):
        both_started = threading.Barrier(2, timeout=5)

        def compute(value):
            both_started.wait()
            return value

        results = []
        threads = [
            threading.Thread(target=lambda v=v: results.append(cache.get_or_compute(f"k{v}", lambda: compute(v))))
            for v in (1, 2)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert sorted(results) == [(1, "miss"), (2, "miss")]


# ============================================================================
# MAINTENANCE
# ============================================================================

class TestMaintenance:

    def test_sweep_removes_expired(self, cache, clock):
        cache.get_or_compute("a", lambda: 1)
        clock.advance(5)
        cache.get_or_compute("b", lambda: 2)
        clock.advance(5)

        assert cache.sweep() == 1
        assert cache.stats()["size"] == 1

    def test_invalidate_and_clear(self, cache):
        cache.get_or_compute("a", lambda: 1)
        cache.get_or_compute("b", lambda: 2)

        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False
        cache.clear()
        assert cache.stats()["size"] == 0

    def test_stats(self, cache):
        cache.get_or_compute("a", lambda: 1)
        cache.get_or_compute("a", lambda: 1)

        stats = cache.stats()

        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["in_flight"] == 0
