"""
Source Fact Repository.

============================================================
PURPOSE
============================================================
All reads and writes of curtailment records: grouped counts
for gap detection, duplicate group discovery, per-date totals
for summary rebuilds, and replace-per-period ingestion.

============================================================
DATA LIFECYCLE
============================================================
- Stage: RAW
- Rows are inserted by ingestion and deleted only by
  deduplication or by re-ingestion of the same period

============================================================
"""

from datetime import date
from typing import Dict, List, Optional, Sequence, Set

from sqlalchemy import and_, delete, distinct, func, select
from sqlalchemy.orm import Session

from storage.models.facts import SourceFact
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import ValidationError
from storage.repositories.types import (
    QUANTITY_PLACES,
    DateFactCount,
    DuplicateKeyGroup,
    FactIngestRow,
    FactKey,
    FactQuantity,
    FactTotals,
    to_decimal,
)


MIN_SETTLEMENT_PERIOD = 1
MAX_SETTLEMENT_PERIOD = 48
DELETE_CHUNK_SIZE = 500


def _date_filter(start: Optional[date], end: Optional[date]) -> list:
    conditions = []
    if start is not None:
        conditions.append(SourceFact.settlement_date >= start)
    if end is not None:
        conditions.append(SourceFact.settlement_date <= end)
    return conditions


class FactRepository(BaseRepository[SourceFact]):
    """
    Repository for source facts.

    Natural key (settlement_date, settlement_period, entity_id)
    may repeat; every count here distinguishes raw rows from
    distinct keys.
    """

    def __init__(self, session: Session) -> None:
        super().__init__(session, SourceFact, "FactRepository")

    # =========================================================
    # CREATE OPERATIONS
    # =========================================================

    def insert_facts(self, rows: Sequence[FactIngestRow]) -> int:
        """
        Insert facts.

        Raises:
            ValidationError: If a row has an out-of-range period or no entity
        """
        entities = []
        for row in rows:
            if not MIN_SETTLEMENT_PERIOD <= row.settlement_period <= MAX_SETTLEMENT_PERIOD:
                raise ValidationError(
                    repository_name=self._repository_name,
                    operation="insert_facts",
                    field="settlement_period",
                    reason=f"{row.settlement_period} outside 1..48",
                )
            if not row.entity_id:
                raise ValidationError(
                    repository_name=self._repository_name,
                    operation="insert_facts",
                    field="entity_id",
                    reason="must not be empty",
                )
            entities.append(SourceFact(
                settlement_date=row.settlement_date,
                settlement_period=row.settlement_period,
                entity_id=row.entity_id,
                lead_party_name=row.lead_party_name,
                quantity=row.quantity,
                unit_price=row.unit_price,
                derived_payment=row.derived_payment,
                so_flag=row.so_flag,
                cadl_flag=row.cadl_flag,
            ))
        return self._add_all(entities, "insert_facts")

    # =========================================================
    # DELETE OPERATIONS
    # =========================================================

    def delete_period(self, settlement_date: date, settlement_period: int) -> int:
        """Delete every fact of one (date, period). Returns rows removed."""
        stmt = delete(SourceFact).where(
            SourceFact.settlement_date == settlement_date,
            SourceFact.settlement_period == settlement_period,
        )
        return self._execute_write(stmt, "delete_period")

    def delete_by_ids(self, ids: Sequence[int]) -> int:
        """Delete facts by id, in bounded chunks. Returns rows removed."""
        removed = 0
        id_list = list(ids)
        for offset in range(0, len(id_list), DELETE_CHUNK_SIZE):
            chunk = id_list[offset:offset + DELETE_CHUNK_SIZE]
            stmt = delete(SourceFact).where(SourceFact.id.in_(chunk))
            removed += self._execute_write(stmt, "delete_by_ids")
        return removed

    # =========================================================
    # READ OPERATIONS
    # =========================================================

    def facts_for_date(self, settlement_date: date) -> List[FactQuantity]:
        """All facts of a date in ingestion order."""
        stmt = (
            select(
                SourceFact.id,
                SourceFact.settlement_period,
                SourceFact.entity_id,
                SourceFact.quantity,
            )
            .where(SourceFact.settlement_date == settlement_date)
            .order_by(SourceFact.id)
        )
        return [
            FactQuantity(
                id=row.id,
                settlement_period=row.settlement_period,
                entity_id=row.entity_id,
                quantity=row.quantity,
            )
            for row in self._execute_rows(stmt, "facts_for_date")
        ]

    def fact_keys(self, settlement_date: date) -> Set[FactKey]:
        """Distinct natural keys stored for a date."""
        stmt = (
            select(SourceFact.settlement_period, SourceFact.entity_id)
            .where(SourceFact.settlement_date == settlement_date)
            .distinct()
        )
        return {
            FactKey(row.settlement_period, row.entity_id)
            for row in self._execute_rows(stmt, "fact_keys")
        }

    def count_for_date(self, settlement_date: date) -> int:
        """Raw fact rows for a date, duplicates included."""
        return self._count(SourceFact.settlement_date == settlement_date)

    def unique_combos_by_date(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[DateFactCount]:
        """Distinct natural keys per date, ascending by date."""
        keys = (
            select(
                SourceFact.settlement_date,
                SourceFact.settlement_period,
                SourceFact.entity_id,
            )
            .where(*_date_filter(start, end))
            .distinct()
            .subquery()
        )
        stmt = (
            select(keys.c.settlement_date, func.count().label("unique_combos"))
            .group_by(keys.c.settlement_date)
            .order_by(keys.c.settlement_date)
        )
        return [
            DateFactCount(
                settlement_date=row.settlement_date,
                unique_combos=int(row.unique_combos),
            )
            for row in self._execute_rows(stmt, "unique_combos_by_date")
        ]

    def unique_combo_count(self, settlement_date: date) -> int:
        counts = self.unique_combos_by_date(settlement_date, settlement_date)
        return counts[0].unique_combos if counts else 0

    def total_fact_count(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> int:
        return self._count(*_date_filter(start, end))

    def totals_for_date(self, settlement_date: date) -> FactTotals:
        """Magnitude totals of a date's facts (the daily summary source)."""
        stmt = select(
            func.count(SourceFact.id),
            func.sum(func.abs(SourceFact.quantity)),
            func.sum(func.abs(SourceFact.derived_payment)),
        ).where(SourceFact.settlement_date == settlement_date)
        row = self._execute_rows(stmt, "totals_for_date")[0]
        return FactTotals(
            record_count=int(row[0] or 0),
            total_quantity=to_decimal(row[1], QUANTITY_PLACES),
            total_payment=to_decimal(row[2], QUANTITY_PLACES),
        )

    def totals_for_ids(self, ids: Sequence[int]) -> FactTotals:
        """Magnitude totals of specific fact rows."""
        record_count = 0
        total_quantity = to_decimal(0, QUANTITY_PLACES)
        total_payment = to_decimal(0, QUANTITY_PLACES)
        id_list = list(ids)
        for offset in range(0, len(id_list), DELETE_CHUNK_SIZE):
            chunk = id_list[offset:offset + DELETE_CHUNK_SIZE]
            stmt = select(
                func.count(SourceFact.id),
                func.sum(func.abs(SourceFact.quantity)),
                func.sum(func.abs(SourceFact.derived_payment)),
            ).where(SourceFact.id.in_(chunk))
            row = self._execute_rows(stmt, "totals_for_ids")[0]
            record_count += int(row[0] or 0)
            total_quantity += to_decimal(row[1], QUANTITY_PLACES)
            total_payment += to_decimal(row[2], QUANTITY_PLACES)
        return FactTotals(record_count, total_quantity, total_payment)

    # =========================================================
    # DUPLICATE DETECTION
    # =========================================================

    def has_duplicates(self, settlement_date: date) -> bool:
        """EXISTS check for any natural key stored more than once."""
        grouped = (
            select(SourceFact.settlement_period)
            .where(SourceFact.settlement_date == settlement_date)
            .group_by(SourceFact.settlement_period, SourceFact.entity_id)
            .having(func.count() > 1)
        )
        return bool(self._execute_value(select(grouped.exists()), "has_duplicates"))

    def duplicate_groups(self, settlement_date: date) -> List[DuplicateKeyGroup]:
        """
        Natural keys stored more than once on a date.

        Ordered by member count descending, then period ascending.
        """
        grouped = (
            select(
                SourceFact.settlement_period,
                SourceFact.entity_id,
                func.count().label("member_count"),
                func.sum(func.abs(SourceFact.quantity)).label("total_quantity"),
                func.sum(func.abs(SourceFact.derived_payment)).label("total_payment"),
            )
            .where(SourceFact.settlement_date == settlement_date)
            .group_by(SourceFact.settlement_period, SourceFact.entity_id)
            .having(func.count() > 1)
            .order_by(
                func.count().desc(),
                SourceFact.settlement_period,
                SourceFact.entity_id,
            )
        )
        group_rows = self._execute_rows(grouped, "duplicate_groups")
        if not group_rows:
            return []

        members: Dict[FactKey, List[int]] = {
            FactKey(row.settlement_period, row.entity_id): [] for row in group_rows
        }
        id_stmt = (
            select(SourceFact.id, SourceFact.settlement_period, SourceFact.entity_id)
            .where(
                and_(
                    SourceFact.settlement_date == settlement_date,
                    SourceFact.settlement_period.in_(
                        sorted({key.settlement_period for key in members})
                    ),
                )
            )
            .order_by(SourceFact.id)
        )
        for row in self._execute_rows(id_stmt, "duplicate_group_members"):
            key = FactKey(row.settlement_period, row.entity_id)
            if key in members:
                members[key].append(row.id)

        return [
            DuplicateKeyGroup(
                key=FactKey(row.settlement_period, row.entity_id),
                member_ids=tuple(members[FactKey(row.settlement_period, row.entity_id)]),
                total_quantity=to_decimal(row.total_quantity, QUANTITY_PLACES),
                total_payment=to_decimal(row.total_payment, QUANTITY_PLACES),
            )
            for row in group_rows
        ]

    def dates_with_facts(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[date]:
        stmt = (
            select(distinct(SourceFact.settlement_date))
            .where(*_date_filter(start, end))
            .order_by(SourceFact.settlement_date)
        )
        return [row[0] for row in self._execute_rows(stmt, "dates_with_facts")]
