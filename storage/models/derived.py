"""
Derived Calculation ORM Models.

============================================================
PURPOSE
============================================================
Values computed from source facts by a calculation model
variant, plus their per-day totals.

============================================================
DATA LIFECYCLE ROLE
============================================================
- Stage: DERIVED
- Mutability: deleted and re-inserted per (date, variant)
- Source: Recalculation engine
- Consumers: Gap finder, reporting

============================================================
MODELS
============================================================
- DerivedCalculation: One value per fact key and variant
- DerivedDailySummary: Per-day total per variant
- DerivedMonthlySummary: Sum of a month's daily rows per variant
- DerivedYearlySummary: Sum of a year's monthly rows per variant

============================================================
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import Date, DateTime, Index, Integer, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, RefreshedAtMixin


class DerivedCalculation(Base):
    """
    Derived value for one (date, period, entity, variant).

    parameter_snapshot records the model parameters that produced
    value, so a later change of constants is visible per row.
    """

    __tablename__ = "derived_calculations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    settlement_date: Mapped[date] = mapped_column(Date, nullable=False)

    settlement_period: Mapped[int] = mapped_column(Integer, nullable=False)

    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    model_variant: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="Registered calculation model variant"
    )

    value: Mapped[Decimal] = mapped_column(
        Numeric(28, 12),
        nullable=False,
        comment="Model output for the fact quantity"
    )

    parameter_snapshot: Mapped[Dict[str, Any]] = mapped_column(
        nullable=False,
        comment="Model parameters used for this value"
    )

    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint(
            "settlement_date",
            "settlement_period",
            "entity_id",
            "model_variant",
            name="uq_derived_calculations_key",
        ),
        Index("ix_derived_calculations_date_variant", "settlement_date", "model_variant"),
    )

    def __repr__(self) -> str:
        return (
            f"<DerivedCalculation(date={self.settlement_date}, period={self.settlement_period}, "
            f"entity={self.entity_id}, variant={self.model_variant}, value={self.value})>"
        )


class DerivedDailySummary(Base, RefreshedAtMixin):
    """Total derived value per (date, variant)."""

    __tablename__ = "derived_daily_summaries"

    summary_date: Mapped[date] = mapped_column(Date, primary_key=True)

    model_variant: Mapped[str] = mapped_column(String(32), primary_key=True)

    total_value: Mapped[Decimal] = mapped_column(Numeric(28, 12), nullable=False)

    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class _DerivedPeriodColumns(RefreshedAtMixin):
    """Monthly and yearly rows are keyed by period string and variant."""

    period_key: Mapped[str] = mapped_column(String(7), primary_key=True)

    model_variant: Mapped[str] = mapped_column(String(32), primary_key=True)

    total_value: Mapped[Decimal] = mapped_column(Numeric(28, 12), nullable=False)

    record_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Derived rows summed into this period"
    )

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__}(key={self.period_key}, "
            f"variant={self.model_variant}, value={self.total_value})>"
        )


class DerivedMonthlySummary(_DerivedPeriodColumns, Base):
    __tablename__ = "derived_monthly_summaries"


class DerivedYearlySummary(_DerivedPeriodColumns, Base):
    __tablename__ = "derived_yearly_summaries"
