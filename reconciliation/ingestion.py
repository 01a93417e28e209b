"""
Fact Ingestion.

============================================================
RESPONSIBILITY
============================================================
Re-fetches the facts of a settlement date from the market-data
source and replaces the stored facts period by period.

- Each (date, period) fetch is retried with capped backoff
- A fetched period replaces the stored rows of that period
- An empty fetch leaves stored rows untouched
- A period that still fails after retries fails the date

============================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional
import logging

from core.clock import ClockProtocol, SystemClock, parse_settlement_date
from core.retry import RetryPolicy
from storage.database import Database
from storage.repositories import FactIngestRow, FactRepository
from storage.repositories.facts import MAX_SETTLEMENT_PERIOD, MIN_SETTLEMENT_PERIOD

from .models import IngestionResult


ALL_PERIODS = range(MIN_SETTLEMENT_PERIOD, MAX_SETTLEMENT_PERIOD + 1)


@dataclass(frozen=True)
class FetchedFact:
    """One record as returned by the market-data source."""

    entity_id: str
    quantity: Decimal
    unit_price: Optional[Decimal] = None
    derived_payment: Optional[Decimal] = None
    lead_party_name: Optional[str] = None
    so_flag: bool = False
    cadl_flag: Optional[bool] = None


class FactSource(ABC):
    """Market-data fetch client."""

    @abstractmethod
    def fetch_facts(self, settlement_date: date, settlement_period: int) -> List[FetchedFact]:
        """
        Fetch the curtailment records of one settlement period.

        Raises:
            TransientIOError: On network failure or upstream error
        """


class FactIngestor:
    """
    Replace-per-period re-ingestion of one date.

    Usage:
        ingestor = FactIngestor(database, source, RetryPolicy(config.retry, clock))
        result = ingestor.refresh_date(date(2025, 3, 21))
    """

    def __init__(
        self,
        database: Database,
        source: FactSource,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._database = database
        self._source = source
        self._clock = clock or SystemClock()
        self._retry = retry_policy or RetryPolicy(clock=self._clock)
        self._logger = logging.getLogger("reconciliation.ingestion")

    def refresh_date(
        self,
        settlement_date: date,
        periods: Iterable[int] = ALL_PERIODS,
    ) -> IngestionResult:
        """
        Re-fetch and replace the facts of a date.

        Raises:
            TransientIOError: If a period still fails after retries.
                Periods before it stay replaced.
        """
        day = parse_settlement_date(settlement_date)
        result = IngestionResult(settlement_date=day)

        for period in periods:
            fetched = self._retry.call(
                self._source.fetch_facts,
                day,
                period,
                description=f"fetch {day} P{period}",
            )
            if not fetched:
                result.periods_empty += 1
                continue

            rows = [self._to_row(day, period, fact) for fact in fetched]
            with self._database.transaction_scope() as session:
                facts = FactRepository(session)
                result.records_replaced += facts.delete_period(day, period)
                result.records_inserted += facts.insert_facts(rows)
            result.periods_fetched += 1

        self._logger.info(
            f"Refreshed {day}: {result.periods_fetched} periods, "
            f"{result.records_inserted} inserted, {result.records_replaced} replaced"
        )
        return result

    @staticmethod
    def _to_row(day: date, period: int, fact: FetchedFact) -> FactIngestRow:
        payment = fact.derived_payment
        if payment is None and fact.unit_price is not None and fact.quantity is not None:
            payment = abs(fact.quantity) * fact.unit_price
        return FactIngestRow(
            settlement_date=day,
            settlement_period=period,
            entity_id=fact.entity_id,
            quantity=fact.quantity,
            unit_price=fact.unit_price,
            derived_payment=payment,
            lead_party_name=fact.lead_party_name,
            so_flag=fact.so_flag,
            cadl_flag=fact.cadl_flag,
        )
