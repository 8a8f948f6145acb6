"""
Configuration management module for fincalc.

Purpose
-------
Centralized configuration using Pydantic models for type-safe parameter
management, validation, and serialization. Supports environment variables,
JSON configs, and programmatic defaults.

Design Principles
-----------------
- Type-safe: Pydantic enforces types and validates ranges
- Immutable: Frozen models prevent accidental mutation
- Serializable: Easy conversion to/from JSON for config files
- Environment-aware: Supports .env files and FINCALC_ variables
- Defaults: Sensible defaults for all parameters (see constants.py)

Example
-------
>>> from fincalc.config import ServiceConfig, CacheConfig
>>> config = ServiceConfig(cache=CacheConfig(ttl_seconds=60))
>>> config.cache.ttl_seconds
60.0
>>>
>>> # Serialize to dict/JSON
>>> config_dict = config.model_dump()
>>> loaded = ServiceConfig.model_validate(config_dict)
>>>
>>> # Build from environment (FINCALC_CACHE_TTL_SECONDS=30, ...)
>>> config = ServiceConfig.from_settings(AppSettings())
"""

from __future__ import annotations
from typing import Optional, Literal, Tuple
import logging

from pydantic import BaseModel, Field, field_validator, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    AUDIT_QUEUE_SIZE,
    DEFAULT_BATCH_CONCURRENCY,
    DEFAULT_CACHE_MAX_ENTRIES,
    DEFAULT_CACHE_TTL,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_COMPLEXITY_CEILING,
    DEFAULT_CONFIDENCE,
    DEFAULT_DEBT_STEP_CEILING,
    DEFAULT_INFLATION_RATE,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_MAX_WORKERS,
    DEFAULT_PERCENTILES,
    EXPENSIVE_BUCKET_CAPACITY,
    EXPENSIVE_REFILL_PER_SECOND,
    LATENCY_WINDOW,
    MAX_DEBT_MONTHS,
    MAX_PRINCIPAL_AMOUNT,
    MAX_STRING_LENGTH,
    STANDARD_BUCKET_CAPACITY,
    STANDARD_REFILL_PER_SECOND,
)

__all__ = [
    "CacheConfig",
    "RateLimitConfig",
    "GuardConfig",
    "MonteCarloConfig",
    "DebtConfig",
    "ServiceConfig",
    "AppSettings",
    "configure_logging",
]


# ---------------------------------------------------------------------------
# Cache Configuration
# ---------------------------------------------------------------------------

class CacheConfig(BaseModel):
    """
    Configuration for the fingerprint-keyed result cache.

    Attributes
    ----------
    enabled : bool
        When False every request is computed directly (status "bypassed").
    ttl_seconds : float
        Lifetime of a cached result.
    max_entries : int
        Store capacity; the oldest entry is evicted first.
    sweep_interval : float, optional
        Seconds between background sweeps of expired entries.
        None disables the sweeper (expiry is then purely lazy).

    Examples
    --------
    >>> config = CacheConfig(ttl_seconds=60, max_entries=500)
    >>> config.enabled
    True
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = Field(
        default=True,
        description="Enable result caching"
    )
    ttl_seconds: float = Field(
        default=DEFAULT_CACHE_TTL,
        gt=0,
        le=86_400,
        description="Cache entry time-to-live (seconds)"
    )
    max_entries: int = Field(
        default=DEFAULT_CACHE_MAX_ENTRIES,
        ge=1,
        le=1_000_000,
        description="Maximum number of cached results"
    )
    sweep_interval: Optional[float] = Field(
        default=None,
        gt=0,
        description="Background sweep interval (seconds); None disables"
    )


# ---------------------------------------------------------------------------
# Guard Configuration
# ---------------------------------------------------------------------------

class RateLimitConfig(BaseModel):
    """
    Token-bucket budgets per caller.

    Cheap closed-form calculations draw from the standard bucket; Monte
    Carlo and stress tests draw from the much smaller expensive bucket.

    Examples
    --------
    >>> config = RateLimitConfig(expensive_capacity=5)
    >>> config.standard_capacity
    100.0
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = Field(
        default=True,
        description="Enable per-caller rate limiting"
    )
    standard_capacity: float = Field(
        default=STANDARD_BUCKET_CAPACITY,
        gt=0,
        description="Bucket size for cheap calculations"
    )
    standard_refill_per_second: float = Field(
        default=STANDARD_REFILL_PER_SECOND,
        gt=0,
        description="Tokens added per second to the standard bucket"
    )
    expensive_capacity: float = Field(
        default=EXPENSIVE_BUCKET_CAPACITY,
        gt=0,
        description="Bucket size for Monte Carlo and stress tests"
    )
    expensive_refill_per_second: float = Field(
        default=EXPENSIVE_REFILL_PER_SECOND,
        gt=0,
        description="Tokens added per second to the expensive bucket"
    )


class GuardConfig(BaseModel):
    """
    Configuration for input validation and abuse protection.

    Attributes
    ----------
    max_iterations : int
        Monte Carlo iteration cap; larger requests are clamped with a warning.
    clamp_iterations : bool
        If False, iteration counts above the cap are rejected instead.
    complexity_ceiling : int
        Maximum iterations x months for stochastic calculations.
    debt_step_ceiling : int
        Maximum debts x months for debt payoff simulations.
    max_amount : float
        Largest accepted monetary amount.
    max_string_length : int
        Longest accepted string parameter.
    audit_queue_size : int
        Pending audit events kept before new ones are dropped.
    rate_limit : RateLimitConfig
        Token-bucket budgets.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_iterations: int = Field(
        default=DEFAULT_MAX_ITERATIONS,
        ge=1,
        le=1_000_000,
        description="Monte Carlo iteration cap"
    )
    clamp_iterations: bool = Field(
        default=True,
        description="Clamp (and warn) instead of rejecting oversized iteration counts"
    )
    complexity_ceiling: int = Field(
        default=DEFAULT_COMPLEXITY_CEILING,
        ge=1,
        description="Maximum iterations x months"
    )
    debt_step_ceiling: int = Field(
        default=DEFAULT_DEBT_STEP_CEILING,
        ge=1,
        description="Maximum debts x months"
    )
    max_amount: float = Field(
        default=MAX_PRINCIPAL_AMOUNT,
        gt=0,
        description="Largest accepted monetary amount"
    )
    max_string_length: int = Field(
        default=MAX_STRING_LENGTH,
        ge=1,
        le=10_000,
        description="Longest accepted string parameter"
    )
    audit_queue_size: int = Field(
        default=AUDIT_QUEUE_SIZE,
        ge=1,
        description="Pending audit events kept before dropping"
    )
    rate_limit: RateLimitConfig = Field(
        default_factory=RateLimitConfig,
        description="Token-bucket budgets"
    )


# ---------------------------------------------------------------------------
# Engine Configuration
# ---------------------------------------------------------------------------

class MonteCarloConfig(BaseModel):
    """
    Configuration for Monte Carlo simulation.

    Attributes
    ----------
    max_iterations : int
        Hard ceiling enforced by the engine itself.
    chunk_size : int
        Paths per chunk. Each chunk draws from its own child seed, so the
        chunk size (not the worker count) determines seeded output.
    parallel_threshold : int
        Minimum number of paths before chunks are spread over the pool.
    percentiles : tuple of int
        Percentiles reported for ending values and yearly bands.
    inflation_rate : float
        Annual inflation used for real (deflated) percentile values.
    confidence : float
        Confidence level for mean and success-probability intervals.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_iterations: int = Field(
        default=DEFAULT_MAX_ITERATIONS,
        ge=1,
        le=1_000_000,
        description="Hard iteration ceiling"
    )
    chunk_size: int = Field(
        default=DEFAULT_CHUNK_SIZE,
        ge=1,
        le=1_000_000,
        description="Paths per chunk"
    )
    parallel_threshold: int = Field(
        default=10_000,
        ge=1,
        description="Paths above which chunks run on the worker pool"
    )
    percentiles: Tuple[int, ...] = Field(
        default=DEFAULT_PERCENTILES,
        description="Reported percentiles"
    )
    inflation_rate: float = Field(
        default=DEFAULT_INFLATION_RATE,
        ge=-0.5,
        le=1.0,
        description="Annual inflation for real values"
    )
    confidence: float = Field(
        default=DEFAULT_CONFIDENCE,
        gt=0,
        lt=1,
        description="Confidence level for intervals"
    )

    @field_validator("percentiles")
    @classmethod
    def validate_percentiles(cls, v):
        """Ensure percentiles are non-empty, sorted and within [0, 100]."""
        if not v:
            raise ValueError("percentiles must not be empty")
        if any(p < 0 or p > 100 for p in v):
            raise ValueError(f"percentiles must be within [0, 100], got {v}")
        return tuple(sorted(set(v)))


class DebtConfig(BaseModel):
    """Configuration for debt payoff simulation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_months: int = Field(
        default=MAX_DEBT_MONTHS,
        ge=1,
        le=1_200,
        description="Simulation horizon cap (months)"
    )


# ---------------------------------------------------------------------------
# Service Configuration
# ---------------------------------------------------------------------------

class ServiceConfig(BaseModel):
    """
    Top-level configuration for CalculationService.

    Attributes
    ----------
    max_workers : int
        Worker threads in the calculation pool.
    batch_concurrency : int
        Default number of batch items in flight.
    latency_window : int
        Recent latencies kept for percentile statistics.
    cache, guard, monte_carlo, debt
        Component configurations.

    Examples
    --------
    >>> config = ServiceConfig(max_workers=8, batch_concurrency=4)
    >>> config.guard.max_iterations
    50000
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_workers: int = Field(
        default=DEFAULT_MAX_WORKERS,
        ge=1,
        le=256,
        description="Worker pool size"
    )
    batch_concurrency: int = Field(
        default=DEFAULT_BATCH_CONCURRENCY,
        ge=1,
        le=256,
        description="Default batch items in flight"
    )
    latency_window: int = Field(
        default=LATENCY_WINDOW,
        ge=10,
        le=100_000,
        description="Recent latencies kept for stats"
    )
    cache: CacheConfig = Field(
        default_factory=CacheConfig,
        description="Result cache parameters"
    )
    guard: GuardConfig = Field(
        default_factory=GuardConfig,
        description="Input guard parameters"
    )
    monte_carlo: MonteCarloConfig = Field(
        default_factory=MonteCarloConfig,
        description="Monte Carlo parameters"
    )
    debt: DebtConfig = Field(
        default_factory=DebtConfig,
        description="Debt planner parameters"
    )

    @classmethod
    def from_settings(cls, settings: Optional["AppSettings"] = None) -> "ServiceConfig":
        """Build a service configuration from environment-backed settings."""
        settings = settings if settings is not None else AppSettings()
        return cls(
            max_workers=settings.max_workers,
            cache=CacheConfig(
                enabled=settings.cache_enabled,
                ttl_seconds=settings.cache_ttl_seconds,
            ),
            guard=GuardConfig(
                max_iterations=settings.max_iterations,
                rate_limit=RateLimitConfig(enabled=settings.rate_limit_enabled),
            ),
            monte_carlo=MonteCarloConfig(max_iterations=settings.max_iterations),
        )


# ---------------------------------------------------------------------------
# Application Settings (Environment Variables)
# ---------------------------------------------------------------------------

class AppSettings(BaseSettings):
    """
    Global application settings loaded from environment variables.

    Supports .env files for local development. Environment variables
    should be prefixed with FINCALC_ (e.g., FINCALC_DEBUG=true).

    Attributes
    ----------
    debug : bool
        Enable debug mode with verbose logging
    log_level : str
        Logging level: "DEBUG", "INFO", "WARNING", "ERROR"
    cache_enabled : bool
        Enable the result cache
    cache_ttl_seconds : float
        Cache entry lifetime
    max_workers : int
        Worker pool size
    max_iterations : int
        Monte Carlo iteration cap
    rate_limit_enabled : bool
        Enable per-caller rate limiting

    Examples
    --------
    >>> settings = AppSettings()
    >>> settings.debug
    False

    # With .env file:
    # FINCALC_DEBUG=true
    # FINCALC_CACHE_TTL_SECONDS=60
    >>> settings = AppSettings(_env_file=".env")
    >>> settings.debug
    True
    """

    model_config = SettingsConfigDict(
        env_prefix="FINCALC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level"
    )
    cache_enabled: bool = Field(
        default=True,
        description="Enable result caching"
    )
    cache_ttl_seconds: float = Field(
        default=DEFAULT_CACHE_TTL,
        gt=0,
        le=86_400,
        description="Cache entry lifetime (seconds)"
    )
    max_workers: int = Field(
        default=DEFAULT_MAX_WORKERS,
        ge=1,
        le=256,
        description="Worker pool size"
    )
    max_iterations: int = Field(
        default=DEFAULT_MAX_ITERATIONS,
        ge=1,
        le=1_000_000,
        description="Monte Carlo iteration cap"
    )
    rate_limit_enabled: bool = Field(
        default=True,
        description="Enable per-caller rate limiting"
    )


def configure_logging(settings: Optional[AppSettings] = None) -> None:
    """Configure the ``fincalc`` logger hierarchy from settings.

    DEBUG wins over ``log_level`` when ``settings.debug`` is set.
    """
    settings = settings if settings is not None else AppSettings()
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("fincalc").setLevel(level)
