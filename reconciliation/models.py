"""
Reconciliation Models.

============================================================
PURPOSE
============================================================
Result types produced by the reconciliation components.
All are plain dataclasses with a to_dict() for CLI output
and structured logging.

============================================================
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Tuple

from storage.repositories.types import FactKey, SummaryTotals


def completion_percent(actual: int, expected: int) -> float:
    """
    Percentage of expected derived rows present, two decimals.

    An empty expectation is complete by definition.
    """
    if expected <= 0:
        return 100.0
    ratio = Decimal(actual) * 100 / Decimal(expected)
    return float(ratio.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


# ============================================================
# GAP DETECTION
# ============================================================

@dataclass(frozen=True)
class DateCompletion:
    """Derived row coverage of one settlement date."""

    settlement_date: date
    actual_count: int
    expected_count: int
    completion_percent: float

    @property
    def missing(self) -> int:
        return max(self.expected_count - self.actual_count, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.settlement_date.isoformat(),
            "actual": self.actual_count,
            "expected": self.expected_count,
            "completion_percent": self.completion_percent,
        }


@dataclass(frozen=True)
class VariantCompletion:
    """
    Coverage of one model variant on one date.

    count only includes rows matching a current fact key; rows left
    behind by removed facts are reported as orphaned.
    """

    count: int
    expected: int
    percent: float
    orphaned: int = 0


@dataclass
class DateDetails:
    """Per-date breakdown used by check-date."""

    settlement_date: date
    fact_count: int
    unique_combos: int
    duplicate_rows: int
    by_model_variant: Dict[str, VariantCompletion] = field(default_factory=dict)
    missing_combos: Dict[str, List[FactKey]] = field(default_factory=dict)
    last_computed_at: Optional[datetime] = None

    @property
    def expected_total(self) -> int:
        return sum(item.expected for item in self.by_model_variant.values())

    @property
    def actual_total(self) -> int:
        return sum(item.count for item in self.by_model_variant.values())

    @property
    def completion_percent(self) -> float:
        return completion_percent(
            min(self.actual_total, self.expected_total), self.expected_total
        )

    @property
    def is_complete(self) -> bool:
        return self.actual_total >= self.expected_total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.settlement_date.isoformat(),
            "fact_count": self.fact_count,
            "unique_combos": self.unique_combos,
            "duplicate_rows": self.duplicate_rows,
            "expected_total": self.expected_total,
            "actual_total": self.actual_total,
            "completion_percent": self.completion_percent,
            "by_model_variant": {
                variant: {
                    "count": item.count,
                    "expected": item.expected,
                    "percent": item.percent,
                    "orphaned": item.orphaned,
                }
                for variant, item in self.by_model_variant.items()
            },
            "missing_combos": {
                variant: [[key.settlement_period, key.entity_id] for key in keys]
                for variant, keys in self.missing_combos.items()
            },
        }


@dataclass(frozen=True)
class ReconciliationStatus:
    """Overall coverage across a date range (or all stored dates)."""

    total_facts: int
    unique_combos: int
    by_model_variant: Dict[str, int]
    actual_total: int
    expected_total: int
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @property
    def missing(self) -> int:
        return max(self.expected_total - self.actual_total, 0)

    @property
    def completion_percent(self) -> float:
        return min(completion_percent(self.actual_total, self.expected_total), 100.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_facts": self.total_facts,
            "unique_combos": self.unique_combos,
            "by_model_variant": dict(self.by_model_variant),
            "actual_total": self.actual_total,
            "expected_total": self.expected_total,
            "missing": self.missing,
            "completion_percent": self.completion_percent,
        }


# ============================================================
# DEDUPLICATION
# ============================================================

@dataclass(frozen=True)
class DuplicateGroup:
    """Fact rows sharing one natural key. member_ids ascending."""

    settlement_date: date
    settlement_period: int
    entity_id: str
    member_ids: Tuple[int, ...]
    total_quantity: Decimal
    total_payment: Decimal = Decimal(0)

    @property
    def natural_key(self) -> Tuple[date, int, str]:
        return (self.settlement_date, self.settlement_period, self.entity_id)

    @property
    def keep_id(self) -> int:
        return self.member_ids[0]

    @property
    def remove_ids(self) -> Tuple[int, ...]:
        return self.member_ids[1:]


@dataclass(frozen=True)
class RollupResult:
    """Summary rows written by one bottom-up rebuild."""

    daily: SummaryTotals
    monthly: SummaryTotals
    yearly: SummaryTotals


@dataclass(frozen=True)
class DeduplicationResult:
    """Outcome of deduplicating one date."""

    settlement_date: date
    groups_resolved: int
    records_removed: int
    quantity_delta: Decimal
    payment_delta: Decimal
    rollup: Optional[RollupResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.settlement_date.isoformat(),
            "groups_resolved": self.groups_resolved,
            "records_removed": self.records_removed,
            "quantity_delta": str(self.quantity_delta),
            "payment_delta": str(self.payment_delta),
        }


@dataclass(frozen=True)
class DeduplicationPreview:
    """What deduplicate() would change, computed without writes."""

    settlement_date: date
    groups: List[DuplicateGroup]
    records_to_remove: int
    before_quantity: Decimal
    after_quantity: Decimal
    before_payment: Decimal
    after_payment: Decimal

    @property
    def quantity_to_remove(self) -> Decimal:
        return self.before_quantity - self.after_quantity

    @property
    def payment_to_remove(self) -> Decimal:
        return self.before_payment - self.after_payment


# ============================================================
# RECALCULATION
# ============================================================

@dataclass(frozen=True)
class RecalculationResult:
    """Outcome of recomputing one (date, variant)."""

    settlement_date: date
    model_variant: str
    records_processed: int
    records_skipped: int
    total_value: Decimal
    rows_replaced: int = 0
    difficulty: Optional[Decimal] = None
    monthly_total: Optional[Decimal] = None
    yearly_total: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.settlement_date.isoformat(),
            "model_variant": self.model_variant,
            "records_processed": self.records_processed,
            "records_skipped": self.records_skipped,
            "total_value": str(self.total_value),
            "difficulty": str(self.difficulty) if self.difficulty is not None else None,
            "monthly_total": str(self.monthly_total) if self.monthly_total is not None else None,
            "yearly_total": str(self.yearly_total) if self.yearly_total is not None else None,
        }


# ============================================================
# INGESTION
# ============================================================

@dataclass
class IngestionResult:
    """Outcome of re-fetching the facts of one date."""

    settlement_date: date
    periods_fetched: int = 0
    periods_empty: int = 0
    records_inserted: int = 0
    records_replaced: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.settlement_date.isoformat(),
            "periods_fetched": self.periods_fetched,
            "periods_empty": self.periods_empty,
            "records_inserted": self.records_inserted,
            "records_replaced": self.records_replaced,
        }
