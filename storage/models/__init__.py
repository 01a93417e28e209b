"""
Storage Models Package.

This package contains all ORM models for the reconciliation store.

============================================================
MODEL ORGANIZATION
============================================================

Source data (facts.py)
- SourceFact

Derived data (derived.py)
- DerivedCalculation
- DerivedDailySummary
- DerivedMonthlySummary
- DerivedYearlySummary

Network reference (network.py)
- NetworkDifficulty

Aggregates (summaries.py)
- DailySummary
- MonthlySummary
- YearlySummary

============================================================
"""

from storage.models.base import Base, RefreshedAtMixin
from storage.models.derived import (
    DerivedCalculation,
    DerivedDailySummary,
    DerivedMonthlySummary,
    DerivedYearlySummary,
)
from storage.models.facts import SourceFact
from storage.models.network import NetworkDifficulty
from storage.models.summaries import DailySummary, MonthlySummary, YearlySummary

__all__ = [
    "Base",
    "RefreshedAtMixin",
    "SourceFact",
    "DerivedCalculation",
    "DerivedDailySummary",
    "DerivedMonthlySummary",
    "DerivedYearlySummary",
    "NetworkDifficulty",
    "DailySummary",
    "MonthlySummary",
    "YearlySummary",
]
