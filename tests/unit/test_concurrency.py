"""Unit tests for concurrency.py (cancellation tokens and handles)."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from fincalc.concurrency import CalculationHandle, CancellationToken
from fincalc.exceptions import CalculationCancelledError, CalculationTimeoutError


class TestCancellationToken:

    def test_no_deadline(self, clock):
        token = CancellationToken(clock=clock)
        clock.advance(10_000)

        token.check()
        assert token.remaining() is None
        assert token.expired is False

    def test_cancel(self):
        token = CancellationToken()
        token.cancel()

        assert token.cancelled
        with pytest.raises(CalculationCancelledError):
            token.check()

    def test_expiry(self, clock):
        token = CancellationToken(2.0, clock=clock)
        assert token.remaining() == 2.0

        clock.advance(1.5)
        token.check()
        assert token.remaining() == pytest.approx(0.5)

        clock.advance(0.5)
        assert token.expired
        assert token.remaining() == 0.0
        with pytest.raises(CalculationTimeoutError):
            token.check()

    def test_cancelled_is_a_timeout(self):
        assert issubclass(CalculationCancelledError, CalculationTimeoutError)


class TestCalculationHandle:

    def test_result(self):
        with ThreadPoolExecutor(max_workers=1) as pool:
            handle = CalculationHandle(pool.submit(lambda: 42), CancellationToken())
            assert handle.result(timeout=5) == 42
            assert handle.done()

    def test_result_timeout(self):
        release = threading.Event()
        with ThreadPoolExecutor(max_workers=1) as pool:
            handle = CalculationHandle(pool.submit(release.wait), CancellationToken())
            with pytest.raises(CalculationTimeoutError):
                handle.result(timeout=0.01)
            release.set()

    def test_cancel_queued(self):
        release = threading.Event()
        with ThreadPoolExecutor(max_workers=1) as pool:
            pool.submit(release.wait)
            handle = CalculationHandle(pool.submit(lambda: 1), CancellationToken())

            assert handle.cancel() is True
            assert handle.cancelled()
            release.set()
            with pytest.raises(CalculationCancelledError):
                handle.result(timeout=5)
