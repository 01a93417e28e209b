"""
Aggregate Summary Repository.

============================================================
PURPOSE
============================================================
Upserts and reads of the daily, monthly and yearly curtailment
summaries, plus the child-level sums used to rebuild a parent.

Rollup order is owned by the deduplicator: daily from facts,
then monthly as the sum of its daily rows, then yearly as the
sum of its monthly rows.

============================================================
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple, Type

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storage.models.summaries import DailySummary, MonthlySummary, YearlySummary
from storage.repositories.base import BaseRepository
from storage.repositories.types import QUANTITY_PLACES, SummaryTotals, to_decimal


class SummaryLevel(Enum):
    """Summary granularity."""

    DAILY = "daily"
    MONTHLY = "monthly"
    YEARLY = "yearly"


_MODELS = {
    SummaryLevel.DAILY: DailySummary,
    SummaryLevel.MONTHLY: MonthlySummary,
    SummaryLevel.YEARLY: YearlySummary,
}


class SummaryRepository(BaseRepository[DailySummary]):
    """Repository for the three aggregate summary tables."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, DailySummary, "SummaryRepository")

    @staticmethod
    def _summary_model(level: SummaryLevel) -> Type:
        return _MODELS[level]

    def upsert(
        self,
        level: SummaryLevel,
        period_key: str,
        total_quantity: Decimal,
        total_payment: Decimal,
        updated_at: datetime,
    ) -> SummaryTotals:
        model = self._summary_model(level)
        try:
            summary = self._session.get(model, period_key)
            if summary is None:
                summary = model(period_key=period_key)
                self._session.add(summary)
            summary.total_quantity = total_quantity
            summary.total_payment = total_payment
            summary.last_updated = updated_at
            self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, f"upsert_{level.value}", {"period_key": period_key})
            raise
        self._logger.debug(
            f"{level.value} summary {period_key}: quantity={total_quantity} payment={total_payment}"
        )
        return SummaryTotals(period_key, total_quantity, total_payment, updated_at)

    def get(self, level: SummaryLevel, period_key: str) -> Optional[SummaryTotals]:
        model = self._summary_model(level)
        try:
            summary = self._session.get(model, period_key)
        except SQLAlchemyError as e:
            self._handle_db_error(e, f"get_{level.value}", {"period_key": period_key})
            raise
        if summary is None:
            return None
        return SummaryTotals(
            period_key=summary.period_key,
            total_quantity=to_decimal(summary.total_quantity, QUANTITY_PLACES),
            total_payment=to_decimal(summary.total_payment, QUANTITY_PLACES),
            last_updated=summary.last_updated,
        )

    def delete(self, level: SummaryLevel, period_key: str) -> int:
        model = self._summary_model(level)
        stmt = delete(model).where(model.period_key == period_key)
        return self._execute_write(stmt, f"delete_{level.value}")

    def sum_children(self, level: SummaryLevel, period_key: str) -> Tuple[int, Decimal, Decimal]:
        """
        Sum the child rows of a monthly or yearly period.

        Children of month "2025-03" are daily keys "2025-03-DD";
        children of year "2025" are monthly keys "2025-MM".

        Returns:
            (child row count, total quantity, total payment)
        """
        if level == SummaryLevel.MONTHLY:
            child = DailySummary
        elif level == SummaryLevel.YEARLY:
            child = MonthlySummary
        else:
            raise ValueError("Daily summaries are built from facts, not children")

        stmt = select(
            func.count(),
            func.sum(child.total_quantity),
            func.sum(child.total_payment),
        ).where(child.period_key.like(f"{period_key}-%"))
        row = self._execute_rows(stmt, f"sum_children_{level.value}")[0]
        return (
            int(row[0] or 0),
            to_decimal(row[1], QUANTITY_PLACES),
            to_decimal(row[2], QUANTITY_PLACES),
        )
