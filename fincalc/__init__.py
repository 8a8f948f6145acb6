"""
fincalc: Personal Finance Calculation Engine

Computes FIRE targets, savings plans, debt payoff strategies, Monte Carlo
projections and market stress tests behind one service that validates,
rate-limits, caches and parallelizes requests.

Modules
-------
- numeric      : Closed-form calculators (future value, FIRE, coast, barista, savings rate)
- goals        : Multi-goal allocation of a shared savings capacity
- montecarlo   : Chunked, seeded Monte Carlo projections
- debt         : Avalanche / snowball / custom payoff and consolidation analysis
- expenses     : FIRE number built from inflated, location-adjusted spending categories
- benefits     : Public pension estimate, its FIRE offset and pension stress scenarios
- stress       : Historical and custom market shock scenarios
- guard        : Input validation, sanitization, rate limiting, audit events
- cache        : Fingerprint-keyed result cache with single-flight
- service      : CalculationService (entry point), batches, health and stats
- serialization: JSON forms of requests, results and batch files

"""

__version__ = "0.1.0"

from .exceptions import FinCalcError
from .requests import CalculationRequest
from .results import BatchItem, CalculationResult
from .service import CalculationService
from . import utils
