"""
Core Module Package.

This package contains the core infrastructure components
that all other modules depend on.

Components:
- clock: Unified time abstraction and date helpers
- config: Engine configuration
- exceptions: Custom exception hierarchy
- reference_data: Registered model variants
- retry: Bounded retry loop for external calls
"""

from .clock import ClockProtocol, MockClock, SystemClock, parse_settlement_date
from .config import ReconcilerConfig
from .exceptions import (
    ConfigurationError,
    InvalidDateError,
    ReconciliationException,
    TransientIOError,
)
from .reference_data import ModelParameters, ReferenceData
from .retry import RetryPolicy

__all__ = [
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "parse_settlement_date",
    "ReconcilerConfig",
    "ConfigurationError",
    "InvalidDateError",
    "ReconciliationException",
    "TransientIOError",
    "ModelParameters",
    "ReferenceData",
    "RetryPolicy",
]
