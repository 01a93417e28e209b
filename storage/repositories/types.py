"""
Typed Query Results.

============================================================
PURPOSE
============================================================
Frozen structs returned by repositories. Aggregate rows are
decoded here once, at the repository boundary, so the engine
never indexes raw result tuples or coerces driver types.

============================================================
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple


QUANTITY_PLACES = Decimal("0.000001")
VALUE_PLACES = Decimal("0.00000001")


def to_decimal(value: Any, places: Optional[Decimal] = None) -> Decimal:
    """
    Decode a numeric column or aggregate into Decimal.

    SQL SUM() over no rows yields NULL, which decodes to zero.
    Some drivers return floats for aggregates; going through str()
    and quantizing to the column scale removes binary noise.
    """
    if value is None:
        result = Decimal(0)
    elif isinstance(value, Decimal):
        result = value
    else:
        result = Decimal(str(value))
    return result.quantize(places) if places is not None else result


# ============================================================
# FACT RESULTS
# ============================================================

@dataclass(frozen=True, order=True)
class FactKey:
    """Natural key of a fact within one settlement date."""

    settlement_period: int
    entity_id: str


@dataclass(frozen=True)
class FactQuantity:
    """The fields of a fact the recalculation engine needs."""

    id: int
    settlement_period: int
    entity_id: str
    quantity: Optional[Decimal]

    @property
    def key(self) -> FactKey:
        return FactKey(self.settlement_period, self.entity_id)


@dataclass(frozen=True)
class FactTotals:
    """Magnitude totals of the facts in a scope."""

    record_count: int
    total_quantity: Decimal
    total_payment: Decimal


@dataclass(frozen=True)
class DateFactCount:
    """Distinct fact keys stored for one date."""

    settlement_date: date
    unique_combos: int


@dataclass(frozen=True)
class DuplicateKeyGroup:
    """Fact rows sharing one natural key. member_ids ascending."""

    key: FactKey
    member_ids: Tuple[int, ...]
    total_quantity: Decimal
    total_payment: Decimal

    @property
    def keep_id(self) -> int:
        return self.member_ids[0]

    @property
    def remove_ids(self) -> Tuple[int, ...]:
        return self.member_ids[1:]


@dataclass(frozen=True)
class FactIngestRow:
    """One fact to insert."""

    settlement_date: date
    settlement_period: int
    entity_id: str
    quantity: Optional[Decimal]
    unit_price: Optional[Decimal] = None
    derived_payment: Optional[Decimal] = None
    lead_party_name: Optional[str] = None
    so_flag: bool = False
    cadl_flag: Optional[bool] = None


# ============================================================
# DERIVED RESULTS
# ============================================================

@dataclass(frozen=True)
class DerivedCount:
    """Derived rows stored for one (date, variant)."""

    settlement_date: date
    model_variant: str
    count: int


@dataclass(frozen=True)
class DerivedRow:
    """One derived value to insert."""

    settlement_date: date
    settlement_period: int
    entity_id: str
    model_variant: str
    value: Decimal
    parameter_snapshot: Dict[str, Any] = field(default_factory=dict)
    computed_at: Optional[datetime] = None


@dataclass(frozen=True)
class DerivedTotals:
    """Stored daily derived summary for one (date, variant)."""

    summary_date: date
    model_variant: str
    total_value: Decimal
    record_count: int


@dataclass(frozen=True)
class DerivedPeriodTotals:
    """Stored monthly or yearly derived summary for one variant."""

    period_key: str
    model_variant: str
    total_value: Decimal
    record_count: int


# ============================================================
# SUMMARY RESULTS
# ============================================================

@dataclass(frozen=True)
class SummaryTotals:
    """One aggregate summary row."""

    period_key: str
    total_quantity: Decimal
    total_payment: Decimal
    last_updated: Optional[datetime] = None


__all__ = [
    "QUANTITY_PLACES",
    "VALUE_PLACES",
    "to_decimal",
    "FactKey",
    "FactQuantity",
    "FactTotals",
    "DateFactCount",
    "DuplicateKeyGroup",
    "FactIngestRow",
    "DerivedCount",
    "DerivedRow",
    "DerivedTotals",
    "DerivedPeriodTotals",
    "SummaryTotals",
]
