"""
Deduplicator.

============================================================
RESPONSIBILITY
============================================================
Removes fact rows that repeat a natural key and keeps the
aggregate summaries consistent with the remaining facts.

============================================================
POLICY
============================================================
- The lowest id of a duplicate group is kept. It is the
  earliest-ingested row; this is a convention, not proof
  that it carries the correct values.
- After any deduplication the summaries are rebuilt strictly
  bottom-up: daily from facts, monthly as the sum of daily
  rows, yearly as the sum of monthly rows.
- The rebuild runs even when no duplicates were found, so a
  call also repairs drifted summaries.

============================================================
"""

from datetime import date
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from core.clock import ClockProtocol, SystemClock, day_key, month_key, parse_settlement_date, year_key
from storage.database import Database
from storage.repositories import FactRepository, FactTotals, SummaryLevel, SummaryRepository

from .models import (
    DeduplicationPreview,
    DeduplicationResult,
    DuplicateGroup,
    RollupResult,
)


class Deduplicator:
    """
    Duplicate fact removal plus summary rollup.

    Each deduplicate() call is one transaction: deletions and the
    rollup commit together or not at all.
    """

    def __init__(self, database: Database, clock: Optional[ClockProtocol] = None):
        self._database = database
        self._clock = clock or SystemClock()
        self._logger = logging.getLogger("reconciliation.deduplicator")

    # =========================================================
    # DETECTION
    # =========================================================

    def needs_deduplication(self, settlement_date: date) -> bool:
        day = parse_settlement_date(settlement_date)
        with self._database.session() as session:
            return FactRepository(session).has_duplicates(day)

    def find_duplicates(self, settlement_date: date) -> List[DuplicateGroup]:
        """Duplicate groups of a date, largest first."""
        day = parse_settlement_date(settlement_date)
        with self._database.session() as session:
            return self._groups(FactRepository(session), day)

    def preview(self, settlement_date: date) -> DeduplicationPreview:
        """Compute what deduplicate() would change. No writes."""
        day = parse_settlement_date(settlement_date)
        with self._database.session() as session:
            facts = FactRepository(session)
            before = facts.totals_for_date(day)
            groups = self._groups(facts, day)
            removable = facts.totals_for_ids([i for group in groups for i in group.remove_ids])

        return DeduplicationPreview(
            settlement_date=day,
            groups=groups,
            records_to_remove=removable.record_count,
            before_quantity=before.total_quantity,
            after_quantity=before.total_quantity - removable.total_quantity,
            before_payment=before.total_payment,
            after_payment=before.total_payment - removable.total_payment,
        )

    # =========================================================
    # MUTATION
    # =========================================================

    def deduplicate(self, settlement_date: date) -> DeduplicationResult:
        """
        Keep the lowest id of each duplicate group, delete the rest,
        then rebuild daily, monthly and yearly summaries.
        """
        day = parse_settlement_date(settlement_date)

        with self._database.transaction_scope() as session:
            facts = FactRepository(session)
            before = facts.totals_for_date(day)
            groups = self._groups(facts, day)
            removed = facts.delete_by_ids([i for group in groups for i in group.remove_ids])
            after = facts.totals_for_date(day)
            rollup = self._rollup(session, day, after)

        result = DeduplicationResult(
            settlement_date=day,
            groups_resolved=len(groups),
            records_removed=removed,
            quantity_delta=before.total_quantity - after.total_quantity,
            payment_delta=before.total_payment - after.total_payment,
            rollup=rollup,
        )
        if groups:
            self._logger.info(
                f"Deduplicated {day}: {len(groups)} groups, {removed} rows removed, "
                f"quantity -{result.quantity_delta} MWh, payment -{result.payment_delta}"
            )
        else:
            self._logger.debug(f"No duplicates on {day}; summaries refreshed")
        return result

    def rollup(self, settlement_date: date) -> RollupResult:
        """Rebuild daily, monthly and yearly summaries for a date."""
        day = parse_settlement_date(settlement_date)
        with self._database.transaction_scope() as session:
            totals = FactRepository(session).totals_for_date(day)
            return self._rollup(session, day, totals)

    # =========================================================
    # INTERNALS
    # =========================================================

    @staticmethod
    def _groups(facts: FactRepository, day: date) -> List[DuplicateGroup]:
        return [
            DuplicateGroup(
                settlement_date=day,
                settlement_period=group.key.settlement_period,
                entity_id=group.key.entity_id,
                member_ids=group.member_ids,
                total_quantity=group.total_quantity,
                total_payment=group.total_payment,
            )
            for group in facts.duplicate_groups(day)
        ]

    def _rollup(self, session: Session, day: date, totals: FactTotals) -> RollupResult:
        summaries = SummaryRepository(session)
        now = self._clock.now()

        daily = summaries.upsert(
            SummaryLevel.DAILY,
            day_key(day),
            totals.total_quantity,
            totals.total_payment,
            now,
        )

        month = month_key(day)
        _, month_quantity, month_payment = summaries.sum_children(SummaryLevel.MONTHLY, month)
        monthly = summaries.upsert(SummaryLevel.MONTHLY, month, month_quantity, month_payment, now)

        year = year_key(day)
        _, year_quantity, year_payment = summaries.sum_children(SummaryLevel.YEARLY, year)
        yearly = summaries.upsert(SummaryLevel.YEARLY, year, year_quantity, year_payment, now)

        return RollupResult(daily=daily, monthly=monthly, yearly=yearly)
