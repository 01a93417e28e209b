"""
Gap Finder.

============================================================
RESPONSIBILITY
============================================================
Measures how complete the derived dataset is relative to the
source facts, and ranks the incomplete dates.

    expected(date) = distinct fact keys(date) x registered variants
    actual(date)   = derived rows(date) of registered variants
                     whose key still has a source fact

Read-only. Every query runs in its own short session.

============================================================
"""

from datetime import date
from typing import Dict, List, Optional, Tuple
import logging

from core.clock import parse_settlement_date
from core.exceptions import ConfigurationError
from core.reference_data import ReferenceData
from storage.database import Database
from storage.repositories import DerivedRepository, FactRepository

from .models import (
    DateCompletion,
    DateDetails,
    ReconciliationStatus,
    VariantCompletion,
    completion_percent,
)


DateRange = Tuple[date, date]


def _bounds(date_range: Optional[DateRange]) -> Tuple[Optional[date], Optional[date]]:
    if date_range is None:
        return None, None
    start, end = (parse_settlement_date(value) for value in date_range)
    if start > end:
        raise ConfigurationError(
            f"Start date {start} is after end date {end}",
            config_key="date_range",
            actual_value=f"{start}..{end}",
        )
    return start, end


class GapFinder:
    """
    Detects dates whose derived rows are missing.

    Usage:
        finder = GapFinder(database, reference)
        for gap in finder.find_incomplete(limit=10):
            print(gap.settlement_date, gap.completion_percent)
    """

    def __init__(self, database: Database, reference: ReferenceData):
        self._database = database
        self._reference = reference
        self._logger = logging.getLogger("reconciliation.gap_finder")

    def find_incomplete(
        self,
        date_range: Optional[DateRange] = None,
        limit: Optional[int] = None,
    ) -> List[DateCompletion]:
        """
        Dates with fewer derived rows than expected.

        Ordered by completion percent ascending (worst first), then
        by date descending (most recent first among equals).
        """
        start, end = _bounds(date_range)
        variants = self._reference.model_variants

        with self._database.session() as session:
            combos = FactRepository(session).unique_combos_by_date(start, end)
            derived = DerivedRepository(session).counts_by_date(variants, start, end, require_fact=True)

        actual_by_date: Dict[date, int] = {}
        for item in derived:
            actual_by_date[item.settlement_date] = actual_by_date.get(item.settlement_date, 0) + item.count

        incomplete = []
        for item in combos:
            expected = item.unique_combos * len(variants)
            actual = actual_by_date.get(item.settlement_date, 0)
            if actual < expected:
                incomplete.append(DateCompletion(
                    settlement_date=item.settlement_date,
                    actual_count=actual,
                    expected_count=expected,
                    completion_percent=completion_percent(actual, expected),
                ))

        incomplete.sort(key=lambda gap: (gap.completion_percent, -gap.settlement_date.toordinal()))
        if limit is not None:
            incomplete = incomplete[:max(limit, 0)]

        self._logger.info(
            f"Found {len(incomplete)} incomplete dates"
            + (f" in {start}..{end}" if start else "")
        )
        return incomplete

    def details_for_date(self, settlement_date: date) -> DateDetails:
        """Per-variant coverage of one date, including the missing fact keys."""
        day = parse_settlement_date(settlement_date)

        with self._database.session() as session:
            facts = FactRepository(session)
            derived = DerivedRepository(session)

            fact_count = facts.count_for_date(day)
            keys = facts.fact_keys(day)
            details = DateDetails(
                settlement_date=day,
                fact_count=fact_count,
                unique_combos=len(keys),
                duplicate_rows=fact_count - len(keys),
                last_computed_at=derived.latest_computed_at(day),
            )

            for variant in self._reference.model_variants:
                present = derived.keys_for(day, variant)
                matched = len(present & keys)
                details.by_model_variant[variant] = VariantCompletion(
                    count=matched,
                    expected=len(keys),
                    percent=completion_percent(matched, len(keys)),
                    orphaned=len(present) - matched,
                )
                missing = sorted(keys - present)
                if missing:
                    details.missing_combos[variant] = missing

        return details

    def overall_status(self, date_range: Optional[DateRange] = None) -> ReconciliationStatus:
        """Totals across a range, or across every stored date."""
        start, end = _bounds(date_range)
        variants = self._reference.model_variants

        with self._database.session() as session:
            facts = FactRepository(session)
            total_facts = facts.total_fact_count(start, end)
            unique_combos = sum(item.unique_combos for item in facts.unique_combos_by_date(start, end))
            by_variant = DerivedRepository(session).counts_by_variant(variants, start, end, require_fact=True)

        return ReconciliationStatus(
            total_facts=total_facts,
            unique_combos=unique_combos,
            by_model_variant=by_variant,
            actual_total=sum(by_variant.values()),
            expected_total=unique_combos * len(variants),
            start_date=start,
            end_date=end,
        )

    def is_complete(self, settlement_date: date) -> bool:
        day = parse_settlement_date(settlement_date)
        status = self.overall_status((day, day))
        return status.actual_total >= status.expected_total
