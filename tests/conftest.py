"""
Pytest configuration and fixtures for the fincalc test suite.

This module provides reusable fixtures for testing all fincalc components.
Time-dependent components (rate limiter, cache TTL) take a FakeClock so
tests never sleep.
"""

from typing import List

import pytest

from fincalc.config import CacheConfig, GuardConfig, RateLimitConfig, ServiceConfig
from fincalc.debt import DebtAccount
from fincalc.goals import Goal
from fincalc.guard import SecurityAuditEvent
from fincalc.service import CalculationService
from fincalc.stress import BaseProjection


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

class RecordingSink:
    """Audit sink that keeps every event in memory."""

    def __init__(self):
        self.events: List[SecurityAuditEvent] = []

    def emit(self, event: SecurityAuditEvent) -> None:
        self.events.append(event)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

@pytest.fixture
def service_config() -> ServiceConfig:
    """Small pool, generous rate limits."""
    return ServiceConfig(
        max_workers=4,
        batch_concurrency=3,
        guard=GuardConfig(
            rate_limit=RateLimitConfig(standard_capacity=1_000, expensive_capacity=100),
        ),
        cache=CacheConfig(ttl_seconds=60),
    )


@pytest.fixture
def service(service_config, clock, sink):
    """CalculationService with a fake clock and recording audit sink."""
    svc = CalculationService(service_config, sink=sink, clock=clock)
    yield svc
    svc.close()


# ---------------------------------------------------------------------------
# Domain data
# ---------------------------------------------------------------------------

@pytest.fixture
def debts() -> List[DebtAccount]:
    """
    Typical consumer debt mix.

    Credit card: 5,000 at 22%
    Car loan: 12,000 at 6%
    Store card: 800 at 18%
    """
    return [
        DebtAccount("card", 5_000, 0.22, 150, debt_type="credit"),
        DebtAccount("car", 12_000, 0.06, 300, debt_type="loan"),
        DebtAccount("store", 800, 0.18, 40, debt_type="credit"),
    ]


@pytest.fixture
def goals() -> List[Goal]:
    return [
        Goal("emergency", 20_000, 2, priority=3),
        Goal("house", 80_000, 5, priority=2),
        Goal("car", 25_000, 3, priority=1),
    ]


@pytest.fixture
def base_projection() -> BaseProjection:
    return BaseProjection(
        current_net_worth=250_000,
        monthly_contribution=2_000,
        expected_return=0.07,
        target_amount=1_000_000,
        horizon_years=30,
        volatility=0.15,
        emergency_fund_months=6,
    )


@pytest.fixture
def fire_request() -> dict:
    return {
        "kind": "fire_number",
        "params": {"annual_expenses": 50_000, "withdrawal_rate": 0.04},
        "caller_id": "user-1",
    }
