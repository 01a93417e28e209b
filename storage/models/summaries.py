"""
Aggregate Summary ORM Models.

============================================================
PURPOSE
============================================================
Curtailment totals at three granularities. The hierarchy is
strict: daily from facts, monthly from daily, yearly from
monthly. Monthly and yearly rows are never built from facts.

============================================================
MODELS
============================================================
- DailySummary: period_key YYYY-MM-DD
- MonthlySummary: period_key YYYY-MM
- YearlySummary: period_key YYYY

============================================================
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base


class _AggregateSummaryColumns:
    """Columns shared by every summary granularity."""

    period_key: Mapped[str] = mapped_column(String(10), primary_key=True)

    total_quantity: Mapped[Decimal] = mapped_column(
        Numeric(24, 6),
        nullable=False,
        comment="Sum of curtailed volume magnitudes (MWh)"
    )

    total_payment: Mapped[Decimal] = mapped_column(
        Numeric(24, 6),
        nullable=False,
        comment="Sum of payment magnitudes"
    )

    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__}(key={self.period_key}, "
            f"quantity={self.total_quantity}, payment={self.total_payment})>"
        )


class DailySummary(_AggregateSummaryColumns, Base):
    __tablename__ = "daily_summaries"


class MonthlySummary(_AggregateSummaryColumns, Base):
    __tablename__ = "monthly_summaries"


class YearlySummary(_AggregateSummaryColumns, Base):
    __tablename__ = "yearly_summaries"
