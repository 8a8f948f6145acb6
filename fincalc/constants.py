"""
Global constants for fincalc.

Purpose
-------
Centralizes default values and magic numbers used throughout the fincalc
codebase. Using constants instead of hardcoded values improves
maintainability, ensures consistency, and makes configuration intentions
explicit.

Usage
-----
>>> from fincalc.constants import DEFAULT_MAX_ITERATIONS, MONTHS_PER_YEAR
>>>
>>> months = years * MONTHS_PER_YEAR
>>> iterations = min(requested, DEFAULT_MAX_ITERATIONS)

Categories
----------
- Time: month/year conversions, horizon bounds
- FIRE: withdrawal-rate bounds, lean/fat multipliers
- Expenses and benefits: location sensitivity, savings rules, pension formula
- Monte Carlo: iteration cap, chunk size, percentiles
- Debt: simulation horizon cap, recommendation thresholds
- Guard: complexity ceilings, rate-limit budgets
- Cache: TTL, capacity
- Service: worker pool and latency window
"""

from typing import Dict, Tuple

__all__ = [
    # Time
    "MONTHS_PER_YEAR",
    "MAX_HORIZON_YEARS",
    # FIRE
    "DEFAULT_WITHDRAWAL_RATE",
    "MAX_WITHDRAWAL_RATE",
    "LEAN_FIRE_MULTIPLIER",
    "FAT_FIRE_MULTIPLIER",
    "DEFAULT_MAX_SAVINGS_RATE",
    "DEFAULT_GOAL_MAX_ITERATIONS",
    # Expenses and benefits
    "DEFAULT_EXPENSE_PROJECTION_YEARS",
    "LOCATION_SENSITIVITY",
    "SAVINGS_OPPORTUNITIES",
    "DEFAULT_SAVINGS_OPPORTUNITY",
    "SAVINGS_REVIEW_THRESHOLD",
    "BEND_POINT",
    "FULL_RETIREMENT_AGE",
    "MIN_CLAIMING_AGE",
    "MAX_CLAIMING_AGE",
    "EARLY_CLAIM_REDUCTION_PER_MONTH",
    "DELAYED_CREDIT_PER_MONTH",
    "DEFAULT_LIFE_EXPECTANCY",
    "BENEFIT_DISCOUNT_RATE",
    "MIN_STRESSED_WITHDRAWAL_RATE",
    # Monte Carlo
    "DEFAULT_MAX_ITERATIONS",
    "DEFAULT_ITERATIONS",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_PERCENTILES",
    "DEFAULT_INFLATION_RATE",
    "DEFAULT_CONFIDENCE",
    # Debt
    "MAX_DEBT_MONTHS",
    "AVALANCHE_INTEREST_THRESHOLD",
    "AVALANCHE_MONTHS_THRESHOLD",
    # Guard
    "DEFAULT_COMPLEXITY_CEILING",
    "DEFAULT_DEBT_STEP_CEILING",
    "MAX_PRINCIPAL_AMOUNT",
    "MAX_STRING_LENGTH",
    "STANDARD_BUCKET_CAPACITY",
    "STANDARD_REFILL_PER_SECOND",
    "EXPENSIVE_BUCKET_CAPACITY",
    "EXPENSIVE_REFILL_PER_SECOND",
    "AUDIT_QUEUE_SIZE",
    # Cache
    "DEFAULT_CACHE_TTL",
    "DEFAULT_CACHE_MAX_ENTRIES",
    "FINGERPRINT_SIGNIFICANT_DIGITS",
    "CACHE_LOCK_STRIPES",
    # Service
    "DEFAULT_MAX_WORKERS",
    "DEFAULT_BATCH_CONCURRENCY",
    "LATENCY_WINDOW",
]


# =============================================================================
# Time
# =============================================================================

MONTHS_PER_YEAR: int = 12
"""Number of months in a year (used for array sizing and conversions)."""

MAX_HORIZON_YEARS: int = 100
"""Longest projection horizon accepted by any calculator."""


# =============================================================================
# FIRE Defaults
# =============================================================================

DEFAULT_WITHDRAWAL_RATE: float = 0.04
"""Default sustainable withdrawal rate (the 4% rule)."""

MAX_WITHDRAWAL_RATE: float = 0.10
"""Upper bound for withdrawal rates; the lower bound is exclusive zero."""

LEAN_FIRE_MULTIPLIER: float = 0.7
"""Lean FIRE covers 70% of current expenses."""

FAT_FIRE_MULTIPLIER: float = 2.0
"""Fat FIRE covers 200% of current expenses."""

DEFAULT_MAX_SAVINGS_RATE: float = 0.95
"""Savings rates above this fraction of income are reported as infeasible."""

DEFAULT_GOAL_MAX_ITERATIONS: int = 50
"""Iteration bound for the multi-goal allocation re-solve loop."""


# =============================================================================
# Expenses and Benefits
# =============================================================================

DEFAULT_EXPENSE_PROJECTION_YEARS: int = 10
"""Years over which category expenses are inflated before sizing the portfolio."""

LOCATION_SENSITIVITY: Dict[str, float] = {
    "housing": 1.2,
    "food": 0.8,
    "transportation": 0.9,
    "healthcare": 1.1,
    "utilities": 0.95,
    "entertainment": 0.85,
}
"""How strongly each category tracks the cost-of-living index (others use 1.0)."""

SAVINGS_OPPORTUNITIES: Dict[str, Tuple[float, str, str]] = {
    "housing": (0.30, "hard", "Consider house hacking, downsizing or a lower cost area"),
    "transportation": (0.40, "medium", "Consider a used car, public transport or cycling"),
    "food": (0.25, "easy", "Cook at home, meal prep and buy in bulk"),
    "entertainment": (0.50, "easy", "Look for free activities and cancel unused subscriptions"),
    "utilities": (0.20, "medium", "Improve energy efficiency and compare providers"),
}
"""Achievable reduction, difficulty and suggestion per category."""

DEFAULT_SAVINGS_OPPORTUNITY: Tuple[float, str, str] = (
    0.15, "medium", "Review {category} spending for optimization opportunities"
)
"""Fallback savings rule for categories without a specific one."""

SAVINGS_REVIEW_THRESHOLD: float = 100_000.0
"""FIRE contribution above which even essential categories are reviewed."""

BEND_POINT: float = 1_174.0
"""Monthly earnings bend point of the simplified benefit formula."""

FULL_RETIREMENT_AGE: int = 67
"""Age at which the unreduced public pension is paid."""

MIN_CLAIMING_AGE: int = 62
"""Earliest claiming age."""

MAX_CLAIMING_AGE: int = 70
"""Latest age at which delayed credits accrue."""

EARLY_CLAIM_REDUCTION_PER_MONTH: float = 0.0055
"""Benefit reduction per month claimed before full retirement age."""

DELAYED_CREDIT_PER_MONTH: float = 0.0067
"""Benefit increase per month claimed after full retirement age."""

DEFAULT_LIFE_EXPECTANCY: int = 85
"""Age used to value lifetime benefits when none is given."""

BENEFIT_DISCOUNT_RATE: float = 0.03
"""Annual rate discounting benefits that start after retirement."""

MIN_STRESSED_WITHDRAWAL_RATE: float = 0.025
"""Floor on the withdrawal rate after a scenario adjustment."""


# =============================================================================
# Monte Carlo Defaults
# =============================================================================

DEFAULT_MAX_ITERATIONS: int = 50_000
"""Hard ceiling on Monte Carlo paths; larger requests are clamped with a warning."""

DEFAULT_ITERATIONS: int = 1_000
"""Default number of Monte Carlo paths when a request does not specify one."""

DEFAULT_CHUNK_SIZE: int = 2_500
"""Paths per chunk. Fixed so seeded output does not depend on worker count."""

DEFAULT_PERCENTILES: Tuple[int, ...] = (5, 10, 25, 50, 75, 90, 95)
"""Percentiles reported for ending values and yearly bands."""

DEFAULT_INFLATION_RATE: float = 0.03
"""Annual inflation used to deflate nominal percentiles into real values."""

DEFAULT_CONFIDENCE: float = 0.95
"""Confidence level for the mean and success-probability intervals."""


# =============================================================================
# Debt Defaults
# =============================================================================

MAX_DEBT_MONTHS: int = 600
"""Simulation horizon cap for debt payoff (50 years)."""

AVALANCHE_INTEREST_THRESHOLD: float = 1_000.0
"""Interest saved above which avalanche is recommended over snowball."""

AVALANCHE_MONTHS_THRESHOLD: int = 6
"""Months saved above which avalanche is recommended over snowball."""


# =============================================================================
# Guard Defaults
# =============================================================================

DEFAULT_COMPLEXITY_CEILING: int = 30_000_000
"""Maximum iterations x months accepted for Monte Carlo and stress tests."""

DEFAULT_DEBT_STEP_CEILING: int = 60_000
"""Maximum debts x simulated months accepted for debt payoff."""

MAX_PRINCIPAL_AMOUNT: float = 1_000_000_000.0
"""Largest monetary amount accepted (one billion)."""

MAX_STRING_LENGTH: int = 200
"""Longest string parameter accepted (ids, names, scenario keys)."""

STANDARD_BUCKET_CAPACITY: float = 100.0
"""Token bucket size for cheap closed-form calculations."""

STANDARD_REFILL_PER_SECOND: float = 100.0 / 60.0
"""Refill rate for the standard bucket (100 per minute)."""

EXPENSIVE_BUCKET_CAPACITY: float = 10.0
"""Token bucket size for Monte Carlo and stress tests."""

EXPENSIVE_REFILL_PER_SECOND: float = 10.0 / 60.0
"""Refill rate for the expensive bucket (10 per minute)."""

AUDIT_QUEUE_SIZE: int = 1_000
"""Pending audit events kept before new ones are dropped."""


# =============================================================================
# Cache Defaults
# =============================================================================

DEFAULT_CACHE_TTL: float = 300.0
"""Seconds a cached result stays valid (5 minutes)."""

DEFAULT_CACHE_MAX_ENTRIES: int = 1_000
"""Maximum cached results; the oldest entry is evicted first."""

FINGERPRINT_SIGNIFICANT_DIGITS: int = 10
"""Float parameters are rounded to this many significant digits before hashing."""

CACHE_LOCK_STRIPES: int = 16
"""Number of lock stripes coordinating in-flight computations by fingerprint."""


# =============================================================================
# Service Defaults
# =============================================================================

DEFAULT_MAX_WORKERS: int = 4
"""Worker threads in the calculation pool."""

DEFAULT_BATCH_CONCURRENCY: int = 3
"""Default number of batch items in flight at once."""

LATENCY_WINDOW: int = 1_000
"""Number of recent calculation latencies kept for percentile stats."""
