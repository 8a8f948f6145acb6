"""
Cancellation and result handles for long-running calculations.

A CancellationToken combines an explicit cancel flag with an optional
monotonic deadline. Long computations call ``token.check()`` at their
checkpoints (between Monte Carlo chunks, between stress scenarios, while
waiting on an in-flight cache computation); it raises
CalculationCancelledError or CalculationTimeoutError and the partial work
is discarded.

A CalculationHandle wraps the future returned by the worker pool and the
token of the computation it represents.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import CancelledError, Future, TimeoutError as FutureTimeoutError
from typing import Callable, Optional

from .exceptions import CalculationCancelledError, CalculationTimeoutError

__all__ = ["CancellationToken", "CalculationHandle"]


class CancellationToken:
    """
    Cooperative cancellation flag with an optional deadline.

    Parameters
    ----------
    timeout : float, optional
        Seconds from construction until the token expires. None never expires.
    clock : callable, default time.monotonic
        Time source; injectable for tests.

    Examples
    --------
    >>> token = CancellationToken(timeout=2.0)
    >>> token.check()          # passes while within the deadline
    >>> token.cancel()
    >>> token.cancelled
    True
    """

    def __init__(self, timeout: Optional[float] = None, *, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._cancelled = threading.Event()
        self._timeout = timeout
        self._deadline = None if timeout is None else clock() + timeout

    @property
    def timeout(self) -> Optional[float]:
        return self._timeout

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def cancel(self) -> None:
        self._cancelled.set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (None without a deadline)."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def check(self) -> None:
        """Raise if the token was cancelled or its deadline has passed."""
        if self._cancelled.is_set():
            raise CalculationCancelledError("calculation cancelled by caller")
        if self.expired:
            raise CalculationTimeoutError(
                f"calculation exceeded its {self._timeout:g}s deadline"
            )

    def __repr__(self) -> str:
        return f"CancellationToken(timeout={self._timeout}, cancelled={self.cancelled})"


class CalculationHandle:
    """
    Future-like handle of a submitted calculation.

    ``result(timeout)`` waits for the outcome and re-raises the
    calculation's FinCalcError. ``cancel()`` sets the token so the
    computation stops at its next checkpoint; a calculation that has not
    started yet is dropped from the queue.
    """

    def __init__(self, future: Future, token: CancellationToken):
        self._future = future
        self._token = token

    @property
    def token(self) -> CancellationToken:
        return self._token

    def result(self, timeout: Optional[float] = None):
        """Wait up to *timeout* seconds; raise CalculationTimeoutError if still running."""
        try:
            return self._future.result(timeout=timeout)
        except CancelledError:
            raise CalculationCancelledError("calculation cancelled before it started") from None
        except FutureTimeoutError:
            raise CalculationTimeoutError(
                f"no result within {timeout:g}s"
            ) from None

    def cancel(self) -> bool:
        """Request cancellation; True if the calculation will not complete normally."""
        self._token.cancel()
        self._future.cancel()
        return not self._future.done() or self._future.cancelled()

    def cancelled(self) -> bool:
        return self._token.cancelled

    def done(self) -> bool:
        return self._future.done()
