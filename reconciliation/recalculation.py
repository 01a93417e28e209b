"""
Recalculation Engine.

============================================================
RESPONSIBILITY
============================================================
Rebuilds the derived rows of one (date, model variant) from
the current source facts.

Each call is delete-then-insert inside a single transaction,
so repeating it yields the same rows and a failure leaves the
previous rows in place.

The same transaction rewrites the variant's daily summary and
then rolls it up: the month is the sum of its daily rows, the
year the sum of its monthly rows.

============================================================
CONCURRENCY CONTRACT
============================================================
At most one writer per (date, variant) at a time. Two writers
on the same pair would violate the unique derived key; callers
partition work by date to avoid this.

============================================================
"""

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging

from core.clock import ClockProtocol, SystemClock, month_key, parse_settlement_date, year_key
from core.exceptions import DataIntegrityError
from core.reference_data import ReferenceData
from storage.database import Database
from storage.repositories import (
    DerivedPeriodTotals,
    DerivedRepository,
    DerivedRow,
    FactRepository,
    SummaryLevel,
)

from .calculation import CalculationModel, MiningOutputModel
from .models import RecalculationResult


DEFAULT_INSERT_BATCH_SIZE = 500


def fact_magnitude(quantity: Optional[Decimal]) -> Optional[Decimal]:
    """
    Magnitude of a fact quantity, or None when it cannot produce a value.

    Missing, non-finite and zero quantities are not calculated.
    """
    if quantity is None:
        return None
    if not isinstance(quantity, Decimal):
        quantity = Decimal(str(quantity))
    if not quantity.is_finite():
        return None
    magnitude = abs(quantity)
    if magnitude == 0:
        return None
    return magnitude


class RecalculationEngine:
    """
    Idempotent per-(date, variant) rebuild of derived rows.

    When duplicate facts are still present for a key, only the
    lowest-id fact is used, so the derived key stays unique.
    """

    def __init__(
        self,
        database: Database,
        reference: ReferenceData,
        model: Optional[CalculationModel] = None,
        clock: Optional[ClockProtocol] = None,
        insert_batch_size: int = DEFAULT_INSERT_BATCH_SIZE,
    ):
        self._database = database
        self._reference = reference
        self._model = model or MiningOutputModel()
        self._clock = clock or SystemClock()
        self._insert_batch_size = max(insert_batch_size, 1)
        self._logger = logging.getLogger("reconciliation.recalculation")

    @property
    def model(self) -> CalculationModel:
        return self._model

    def recompute_date(self, settlement_date: date, model_variant: str) -> RecalculationResult:
        """
        Replace every derived row of (date, variant).

        Raises:
            ConfigurationError: If the variant is not registered (no writes)
            CalculationError: If the model fails for a fact (rolled back)
        """
        day = parse_settlement_date(settlement_date)
        self._reference.require_variant(model_variant)
        parameters = self._reference.parameters_for(model_variant, day)
        snapshot = dict(parameters.snapshot(), model=self._model.name)
        computed_at = self._clock.now()

        processed = 0
        skipped = 0
        shadowed = 0
        total_value = Decimal(0)

        with self._database.transaction_scope() as session:
            derived = DerivedRepository(session)
            replaced = derived.delete_for(day, model_variant)

            seen = set()
            batch: List[DerivedRow] = []
            for fact in FactRepository(session).facts_for_date(day):
                if fact.key in seen:
                    shadowed += 1
                    continue
                seen.add(fact.key)

                magnitude = fact_magnitude(fact.quantity)
                if magnitude is None:
                    skipped += 1
                    continue

                value = self._model.apply(magnitude, parameters)
                batch.append(DerivedRow(
                    settlement_date=day,
                    settlement_period=fact.settlement_period,
                    entity_id=fact.entity_id,
                    model_variant=model_variant,
                    value=value,
                    parameter_snapshot=snapshot,
                    computed_at=computed_at,
                ))
                total_value += value
                processed += 1

                if len(batch) >= self._insert_batch_size:
                    derived.insert_rows(batch)
                    batch = []

            if batch:
                derived.insert_rows(batch)

            derived.upsert_daily_summary(day, model_variant, total_value, processed)
            monthly, yearly = self._roll_up(derived, day, model_variant)

        if shadowed:
            warning = DataIntegrityError(
                f"{shadowed} duplicate facts ignored; deduplicate {day} to clean up",
                context={"date": day.isoformat(), "model_variant": model_variant},
            )
            self._logger.warning(warning.to_log_format())

        self._logger.info(
            f"Recomputed {day} {model_variant}: {processed} rows, "
            f"{skipped} skipped, total {total_value}"
        )
        return RecalculationResult(
            settlement_date=day,
            model_variant=model_variant,
            records_processed=processed,
            records_skipped=skipped,
            total_value=total_value,
            rows_replaced=replaced,
            difficulty=parameters.difficulty,
            monthly_total=monthly.total_value,
            yearly_total=yearly.total_value,
        )

    def recompute_all_variants(self, settlement_date: date) -> Dict[str, RecalculationResult]:
        """Recompute every registered variant for a date, in registration order."""
        return {
            variant: self.recompute_date(settlement_date, variant)
            for variant in self._reference.model_variants
        }

    @staticmethod
    def _roll_up(
        derived: DerivedRepository,
        day: date,
        model_variant: str,
    ) -> Tuple[DerivedPeriodTotals, DerivedPeriodTotals]:
        month = month_key(day)
        _, month_value, month_records = derived.sum_period_children(SummaryLevel.MONTHLY, month, model_variant)
        monthly = derived.upsert_period_summary(
            SummaryLevel.MONTHLY, month, model_variant, month_value, month_records
        )

        year = year_key(day)
        _, year_value, year_records = derived.sum_period_children(SummaryLevel.YEARLY, year, model_variant)
        yearly = derived.upsert_period_summary(
            SummaryLevel.YEARLY, year, model_variant, year_value, year_records
        )
        return monthly, yearly
