"""
Custom exceptions for fincalc.

Purpose
-------
Provides a unified exception hierarchy for consistent error handling
across all fincalc modules. All exceptions inherit from FinCalcError,
enabling catch-all handling when needed. Every exception carries an
``error_kind`` tag, which is the stable name reported to external callers
(batch items, audit events, serialized responses).

Exception Hierarchy
-------------------
FinCalcError (base)
├── DomainError - Mathematically invalid input (negative periods, rate <= -1)
├── ValidationError - Parameter outside its declared range
├── RateLimitedError - Caller exceeded its token budget
├── ComplexityRejectedError - Request would force intractable computation
├── CalculationTimeoutError - Deadline expired mid-computation
│   └── CalculationCancelledError - Caller cancelled the computation
├── CacheUnavailableError - Cache store failed (never surfaces to callers)
└── InfeasibleError - No feasible plan exists for the given budget

Usage
-----
>>> from fincalc.exceptions import DomainError, FinCalcError
>>>
>>> # Raise specific exception
>>> raise DomainError("years must be >= 0, got -1")
>>>
>>> # Catch all fincalc exceptions
>>> try:
...     result = service.calculate(request)
... except FinCalcError as e:
...     print(f"{e.error_kind}: {e}")
"""

from typing import Optional

__all__ = [
    "FinCalcError",
    "DomainError",
    "ValidationError",
    "RateLimitedError",
    "ComplexityRejectedError",
    "CalculationTimeoutError",
    "CalculationCancelledError",
    "CacheUnavailableError",
    "InfeasibleError",
]


class FinCalcError(Exception):
    """
    Base exception for all fincalc errors.

    All fincalc-specific exceptions inherit from this class,
    enabling unified error handling when needed.

    Attributes
    ----------
    error_kind : str
        Stable identifier of the error category (class level).

    Examples
    --------
    >>> try:
    ...     service.calculate(request)
    ... except FinCalcError as e:
    ...     logger.error(f"Calculation failed: {e}")
    """

    error_kind: str = "FinCalcError"


class DomainError(FinCalcError):
    """
    Mathematically invalid input.

    Raised when an input makes the formula itself meaningless, such as:
    - Negative periods or negative principal
    - Annual rate <= -1 (wipes out the balance)
    - NaN or infinite values in inputs or outputs

    Always rejected locally; nothing is partially computed.

    Examples
    --------
    >>> raise DomainError(
    ...     f"annual_rate must be > -1, got {annual_rate}. "
    ...     f"A rate of -100% or lower destroys the principal."
    ... )
    """

    error_kind = "DomainError"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ValidationError(FinCalcError):
    """
    Parameter outside its declared valid range.

    Raised by the input guard when a parameter parses but falls outside
    the range declared for it. The offending field is named.

    Examples
    --------
    >>> raise ValidationError(
    ...     "iterations must be in [1, 50000], got 0", field="iterations"
    ... )
    """

    error_kind = "ValidationError"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class RateLimitedError(FinCalcError):
    """
    Caller exceeded its request budget.

    Attributes
    ----------
    retry_after : float
        Seconds until enough tokens have been refilled for one request.

    Examples
    --------
    >>> raise RateLimitedError(
    ...     "Rate limit exceeded for caller 'u-1' (expensive)", retry_after=6.0
    ... )
    """

    error_kind = "RateLimited"

    def __init__(self, message: str, retry_after: float = 0.0):
        super().__init__(message)
        self.retry_after = float(retry_after)


class ComplexityRejectedError(FinCalcError):
    """
    Request would force intractable computation.

    Raised before any computation begins when the combination of
    parameters exceeds a complexity ceiling, such as:
    - iterations x months above the path-month ceiling
    - number of debts x simulation horizon above the step ceiling

    Examples
    --------
    >>> raise ComplexityRejectedError(
    ...     f"iterations x months = {work:,} exceeds ceiling {ceiling:,}. "
    ...     f"Reduce iterations or horizon."
    ... )
    """

    error_kind = "ComplexityRejected"


class CalculationTimeoutError(FinCalcError):
    """
    Computation aborted because its deadline expired.

    Partial results are discarded.

    Examples
    --------
    >>> raise CalculationTimeoutError("Monte Carlo exceeded 2.0s deadline")
    """

    error_kind = "Timeout"


class CalculationCancelledError(CalculationTimeoutError):
    """
    Computation aborted because the caller cancelled it.

    Subclass of CalculationTimeoutError: both abort cooperatively at the
    same checkpoints and discard partial results.
    """

    error_kind = "Cancelled"


class CacheUnavailableError(FinCalcError):
    """
    Cache storage failed.

    Logged by the result cache, which then computes directly. Never
    surfaces to callers.
    """

    error_kind = "CacheUnavailable"


class InfeasibleError(FinCalcError):
    """
    No feasible plan exists.

    Raised when a plan cannot be satisfied under its constraints:
    - Debt budget below the sum of minimum payments
    - Goals requiring more than the savings-rate cap

    Most planners report infeasibility as a flag on the result; this
    exception is used where a caller asked for a strict solve.

    Examples
    --------
    >>> raise InfeasibleError(
    ...     f"Budget {budget} is below the sum of minimum payments {minimums}."
    ... )
    """

    error_kind = "Infeasible"
