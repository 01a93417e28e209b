"""
Derived Calculation Repository.

============================================================
PURPOSE
============================================================
Reads and writes of derived values and their daily, monthly
and yearly totals per model variant.

The (date, variant) pair is the unit of rewrite: the
recalculation engine deletes every row of the pair and inserts
the full replacement set. One writer per pair at a time.

============================================================
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.clock import month_bounds
from storage.models.derived import (
    DerivedCalculation,
    DerivedDailySummary,
    DerivedMonthlySummary,
    DerivedYearlySummary,
)
from storage.models.facts import SourceFact
from storage.repositories.base import BaseRepository
from storage.repositories.summaries import SummaryLevel
from storage.repositories.types import (
    VALUE_PLACES,
    DerivedCount,
    DerivedPeriodTotals,
    DerivedRow,
    DerivedTotals,
    FactKey,
    to_decimal,
)


class DerivedRepository(BaseRepository[DerivedCalculation]):
    """Repository for derived calculations and their summaries."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, DerivedCalculation, "DerivedRepository")

    # =========================================================
    # WRITE OPERATIONS
    # =========================================================

    def delete_for(self, settlement_date: date, model_variant: str) -> int:
        """Delete every derived row of (date, variant). Returns rows removed."""
        stmt = delete(DerivedCalculation).where(
            DerivedCalculation.settlement_date == settlement_date,
            DerivedCalculation.model_variant == model_variant,
        )
        removed = self._execute_write(stmt, "delete_for")
        self._logger.debug(f"Deleted {removed} derived rows for {settlement_date} {model_variant}")
        return removed

    def insert_rows(self, rows: Sequence[DerivedRow]) -> int:
        """
        Insert one batch of derived rows in a single round trip.

        Raises:
            DuplicateRecordError: If a row already exists for its key
        """
        if not rows:
            return 0
        params = []
        for row in rows:
            values = {
                "settlement_date": row.settlement_date,
                "settlement_period": row.settlement_period,
                "entity_id": row.entity_id,
                "model_variant": row.model_variant,
                "value": row.value,
                "parameter_snapshot": row.parameter_snapshot,
            }
            if row.computed_at is not None:
                values["computed_at"] = row.computed_at
            params.append(values)
        try:
            self._session.execute(insert(DerivedCalculation), params)
            self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "insert_rows", {"count": len(rows)})
            raise
        return len(params)

    def upsert_daily_summary(
        self,
        summary_date: date,
        model_variant: str,
        total_value: Decimal,
        record_count: int,
    ) -> DerivedTotals:
        try:
            summary = self._session.get(DerivedDailySummary, (summary_date, model_variant))
            if summary is None:
                summary = DerivedDailySummary(
                    summary_date=summary_date,
                    model_variant=model_variant,
                )
                self._session.add(summary)
            summary.total_value = total_value
            summary.record_count = record_count
            self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(
                e,
                "upsert_daily_summary",
                {"date": str(summary_date), "variant": model_variant},
            )
            raise
        return DerivedTotals(
            summary_date=summary_date,
            model_variant=model_variant,
            total_value=total_value,
            record_count=record_count,
        )

    def upsert_period_summary(
        self,
        level: SummaryLevel,
        period_key: str,
        model_variant: str,
        total_value: Decimal,
        record_count: int,
    ) -> DerivedPeriodTotals:
        """Write the monthly ("YYYY-MM") or yearly ("YYYY") total of a variant."""
        model = _period_model(level)
        try:
            summary = self._session.get(model, (period_key, model_variant))
            if summary is None:
                summary = model(period_key=period_key, model_variant=model_variant)
                self._session.add(summary)
            summary.total_value = total_value
            summary.record_count = record_count
            self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(
                e,
                f"upsert_{level.value}_summary",
                {"period_key": period_key, "variant": model_variant},
            )
            raise
        return DerivedPeriodTotals(period_key, model_variant, total_value, record_count)

    # =========================================================
    # READ OPERATIONS
    # =========================================================

    def sum_period_children(
        self,
        level: SummaryLevel,
        period_key: str,
        model_variant: str,
    ) -> Tuple[int, Decimal, int]:
        """
        Sum the derived summaries one level below a period.

        A month sums its daily rows, a year sums its monthly rows.

        Returns:
            (child row count, total value, total record count)
        """
        if level == SummaryLevel.MONTHLY:
            year, month = (int(part) for part in period_key.split("-"))
            first, last = month_bounds(date(year, month, 1))
            child = DerivedDailySummary
            in_period = DerivedDailySummary.summary_date.between(first, last)
        elif level == SummaryLevel.YEARLY:
            child = DerivedMonthlySummary
            in_period = DerivedMonthlySummary.period_key.like(f"{period_key}-%")
        else:
            raise ValueError("Daily derived summaries are built from derived rows")

        stmt = select(
            func.count(),
            func.sum(child.total_value),
            func.sum(child.record_count),
        ).where(in_period, child.model_variant == model_variant)
        row = self._execute_rows(stmt, f"sum_children_{level.value}")[0]
        return int(row[0] or 0), to_decimal(row[1], VALUE_PLACES), int(row[2] or 0)

    def period_summary(
        self,
        level: SummaryLevel,
        period_key: str,
        model_variant: str,
    ) -> Optional[DerivedPeriodTotals]:
        model = _period_model(level)
        try:
            summary = self._session.get(model, (period_key, model_variant))
        except SQLAlchemyError as e:
            self._handle_db_error(e, f"{level.value}_summary")
            raise
        if summary is None:
            return None
        return DerivedPeriodTotals(
            period_key=summary.period_key,
            model_variant=summary.model_variant,
            total_value=to_decimal(summary.total_value, VALUE_PLACES),
            record_count=summary.record_count,
        )

    def count_for(self, settlement_date: date, model_variant: str) -> int:
        return self._count(
            DerivedCalculation.settlement_date == settlement_date,
            DerivedCalculation.model_variant == model_variant,
        )

    def counts_by_date(
        self,
        model_variants: Sequence[str],
        start: Optional[date] = None,
        end: Optional[date] = None,
        require_fact: bool = False,
    ) -> List[DerivedCount]:
        """
        Rows per (date, variant), restricted to the given variants.

        With require_fact, rows whose (date, period, entity) no longer
        has a source fact are left out of the count.
        """
        conditions = [DerivedCalculation.model_variant.in_(list(model_variants))]
        if start is not None:
            conditions.append(DerivedCalculation.settlement_date >= start)
        if end is not None:
            conditions.append(DerivedCalculation.settlement_date <= end)
        if require_fact:
            conditions.append(
                select(SourceFact.id).where(
                    SourceFact.settlement_date == DerivedCalculation.settlement_date,
                    SourceFact.settlement_period == DerivedCalculation.settlement_period,
                    SourceFact.entity_id == DerivedCalculation.entity_id,
                ).exists()
            )
        stmt = (
            select(
                DerivedCalculation.settlement_date,
                DerivedCalculation.model_variant,
                func.count().label("row_count"),
            )
            .where(*conditions)
            .group_by(DerivedCalculation.settlement_date, DerivedCalculation.model_variant)
            .order_by(DerivedCalculation.settlement_date, DerivedCalculation.model_variant)
        )
        return [
            DerivedCount(
                settlement_date=row.settlement_date,
                model_variant=row.model_variant,
                count=int(row.row_count),
            )
            for row in self._execute_rows(stmt, "counts_by_date")
        ]

    def counts_by_variant(
        self,
        model_variants: Sequence[str],
        start: Optional[date] = None,
        end: Optional[date] = None,
        require_fact: bool = False,
    ) -> Dict[str, int]:
        """Rows per variant over a date range; every variant present, zero if none."""
        counts = {variant: 0 for variant in model_variants}
        for item in self.counts_by_date(model_variants, start, end, require_fact):
            counts[item.model_variant] += item.count
        return counts

    def keys_for(self, settlement_date: date, model_variant: str) -> Set[FactKey]:
        stmt = select(
            DerivedCalculation.settlement_period,
            DerivedCalculation.entity_id,
        ).where(
            DerivedCalculation.settlement_date == settlement_date,
            DerivedCalculation.model_variant == model_variant,
        )
        return {
            FactKey(row.settlement_period, row.entity_id)
            for row in self._execute_rows(stmt, "keys_for")
        }

    def values_for(self, settlement_date: date, model_variant: str) -> Dict[FactKey, Decimal]:
        stmt = select(
            DerivedCalculation.settlement_period,
            DerivedCalculation.entity_id,
            DerivedCalculation.value,
        ).where(
            DerivedCalculation.settlement_date == settlement_date,
            DerivedCalculation.model_variant == model_variant,
        )
        return {
            FactKey(row.settlement_period, row.entity_id): to_decimal(row.value, VALUE_PLACES)
            for row in self._execute_rows(stmt, "values_for")
        }

    def daily_summary(self, summary_date: date, model_variant: str) -> Optional[DerivedTotals]:
        try:
            summary = self._session.get(DerivedDailySummary, (summary_date, model_variant))
        except SQLAlchemyError as e:
            self._handle_db_error(e, "daily_summary")
            raise
        if summary is None:
            return None
        return DerivedTotals(
            summary_date=summary.summary_date,
            model_variant=summary.model_variant,
            total_value=to_decimal(summary.total_value, VALUE_PLACES),
            record_count=summary.record_count,
        )

    def latest_computed_at(self, settlement_date: date) -> Optional[datetime]:
        stmt = select(func.max(DerivedCalculation.computed_at)).where(
            DerivedCalculation.settlement_date == settlement_date
        )
        return self._execute_value(stmt, "latest_computed_at")


def _period_model(level: SummaryLevel):
    if level == SummaryLevel.MONTHLY:
        return DerivedMonthlySummary
    if level == SummaryLevel.YEARLY:
        return DerivedYearlySummary
    raise ValueError("Daily derived summaries are keyed by date, not period")
