"""
Repository Layer Package.

============================================================
PURPOSE
============================================================
The Repository Layer is the ONLY gateway to persistent storage.
All database access MUST go through repository classes.

============================================================
ARCHITECTURE PRINCIPLES
============================================================
1. Session Injection: Sessions are injected, not created internally
2. Explicit Methods: No generic 'execute', clear method names
3. Typed Results: Aggregates are returned as frozen structs
4. Exception Handling: All DB errors wrapped in repository exceptions

============================================================
REPOSITORIES
============================================================
- FactRepository: Source facts, grouped counts, duplicate groups
- DerivedRepository: Derived values and their per-variant summaries
- DifficultyRepository: Historical network difficulty per date
- SummaryRepository: Daily, monthly and yearly aggregates

============================================================
USAGE
============================================================

    with database.transaction_scope() as session:
        facts = FactRepository(session)
        groups = facts.duplicate_groups(day)

============================================================
"""

# =============================================================
# EXCEPTIONS
# =============================================================
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
    RepositoryException,
    TransactionError,
    ValidationError,
)

# =============================================================
# BASE & TYPES
# =============================================================
from storage.repositories.base import BaseRepository
from storage.repositories.types import (
    DateFactCount,
    DerivedCount,
    DerivedPeriodTotals,
    DerivedRow,
    DerivedTotals,
    DuplicateKeyGroup,
    FactIngestRow,
    FactKey,
    FactQuantity,
    FactTotals,
    SummaryTotals,
)

# =============================================================
# REPOSITORIES
# =============================================================
from storage.repositories.derived import DerivedRepository
from storage.repositories.facts import FactRepository
from storage.repositories.network import DifficultyRepository
from storage.repositories.summaries import SummaryLevel, SummaryRepository


__all__ = [
    # Exceptions
    "RepositoryException",
    "ConnectionError",
    "DuplicateRecordError",
    "IntegrityError",
    "QueryError",
    "TransactionError",
    "ValidationError",
    # Base & types
    "BaseRepository",
    "DateFactCount",
    "DerivedCount",
    "DerivedPeriodTotals",
    "DerivedRow",
    "DerivedTotals",
    "DuplicateKeyGroup",
    "FactIngestRow",
    "FactKey",
    "FactQuantity",
    "FactTotals",
    "SummaryTotals",
    # Repositories
    "FactRepository",
    "DerivedRepository",
    "DifficultyRepository",
    "SummaryRepository",
    "SummaryLevel",
]
