"""
Tests for the Batch Orchestrator.

============================================================
PURPOSE
============================================================
1. Single-date fix end to end
2. Batched runs with delays and checkpoints
3. Resume after interruption
4. Per-date failure isolation vs fatal errors
5. Store retry and cooperative stop

============================================================
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import List

import pytest

from core.config import BatchConfig, CheckpointConfig, ReconcilerConfig, RetryConfig
from core.exceptions import CalculationError, CheckpointError, ConfigurationError, PartialFailure
from orchestrator.core import BatchOrchestrator, is_fatal, split_batches
from reconciliation.checkpoint import CheckpointManager, CheckpointStatus, FileCheckpointStore
from reconciliation.ingestion import FactIngestor, FactSource, FetchedFact
from reconciliation.recalculation import RecalculationEngine
from storage.repositories import (
    ConnectionError as StoreConnectionError,
    DerivedRepository,
    FactRepository,
    QueryError,
    SummaryLevel,
    SummaryRepository,
)


DAY = date(2025, 3, 21)
FIRST = date(2025, 3, 1)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def config(tmp_path):
    return ReconcilerConfig(
        batch=BatchConfig(batch_size=2, batch_delay_seconds=1.5),
        checkpoint=CheckpointConfig(directory=str(tmp_path / "checkpoints"), autosave_seconds=0),
        retry=RetryConfig(max_attempts=3, initial_delay_seconds=0.25),
    )


@pytest.fixture
def seed_dates(seed_facts):
    """Seed N consecutive dates from FIRST with two fact keys each."""
    def seed(count: int) -> List[date]:
        days = [FIRST + timedelta(days=i) for i in range(count)]
        for day in days:
            seed_facts(day, [(1, "T_A", Decimal("-10")), (2, "T_A", Decimal("-5"))])
        return days

    return seed


class RecordingEngine(RecalculationEngine):
    """
    Recalculation engine that records every date it is asked to
    recompute and can inject a failure for chosen dates.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls: List[date] = []
        self.failures = {}
        self.before_call = None

    def recompute_all_variants(self, settlement_date):
        self.calls.append(settlement_date)
        if self.before_call is not None:
            self.before_call(settlement_date)
        pending = self.failures.get(settlement_date)
        if pending:
            error = pending.pop(0)
            raise error
        return super().recompute_all_variants(settlement_date)


@pytest.fixture
def engine(database, reference, clock):
    return RecordingEngine(database, reference, clock=clock)


@pytest.fixture
def orchestrator(database, reference, config, clock, engine):
    return BatchOrchestrator(database, reference, config, clock=clock, recalculation=engine)


def _checkpoint(config, clock, operation="fix-all"):
    store = FileCheckpointStore(config.checkpoint.directory)
    return CheckpointManager(operation, store, clock).load()


# ============================================================
# HELPER TESTS
# ============================================================

class TestHelpers:
    """Tests for module helpers."""

    def test_split_batches(self):
        assert split_batches(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]
        assert split_batches([], 3) == []

    def test_is_fatal(self):
        assert is_fatal(ConfigurationError("x"))
        assert is_fatal(CheckpointError("x"))
        assert is_fatal(StoreConnectionError("FactRepository", "count", "down"))
        assert not is_fatal(QueryError("FactRepository", "count", "bad sql"))
        assert not is_fatal(PartialFailure("2025-03-01", "boom"))
        assert not is_fatal(ValueError("x"))

    def test_invalid_config_rejected(self, database, reference, clock):
        bad = ReconcilerConfig(batch=BatchConfig(batch_size=0))
        with pytest.raises(ConfigurationError):
            BatchOrchestrator(database, reference, bad, clock=clock)


# ============================================================
# SINGLE DATE TESTS
# ============================================================

class TestFixDate:
    """Tests for fix_date()."""

    def test_end_to_end(self, database, orchestrator, seed_facts, seed_derived):
        # 4 distinct keys (one duplicated) x 3 variants = 12 expected
        keys = [(1, "T_A"), (2, "T_A"), (1, "T_B"), (2, "T_B")]
        seed_facts(DAY, [(p, e, Decimal("-10")) for p, e in keys] + [(1, "T_A", Decimal("-10"))])
        seed_derived(DAY, "S19J_PRO", keys)
        seed_derived(DAY, "S9", keys)
        seed_derived(DAY, "M20S", keys[:1])

        details = orchestrator.gap_finder.details_for_date(DAY)
        assert details.expected_total == 12
        assert details.actual_total == 9
        assert details.completion_percent == 75.0

        result = orchestrator.fix_date("2025-03-21")

        assert result.before_percent == 75.0
        assert result.after_percent == 100.0
        assert result.records_removed == 1
        assert result.rows_written == 12
        assert orchestrator.gap_finder.is_complete(DAY)
        with database.session() as session:
            assert FactRepository(session).count_for_date(DAY) == 4
            assert DerivedRepository(session).count_for(DAY, "M20S") == 4
            daily = SummaryRepository(session).get(SummaryLevel.DAILY, "2025-03-21")
        assert daily.total_quantity == Decimal("40")

    def test_without_duplicates_still_rolls_up(self, database, orchestrator, seed_facts):
        seed_facts(DAY, [(1, "T_A", Decimal("-3"))])

        result = orchestrator.fix_date(DAY)

        assert result.deduplication is None
        assert result.rollup.daily.total_quantity == Decimal("3")
        assert result.after_percent == 100.0

    def test_idempotent(self, database, orchestrator, seed_facts):
        seed_facts(DAY, [(1, "T_A", Decimal("-3"))] * 2)

        orchestrator.fix_date(DAY)
        with database.session() as session:
            first = DerivedRepository(session).values_for(DAY, "S9")
        again = orchestrator.fix_date(DAY)
        with database.session() as session:
            second = DerivedRepository(session).values_for(DAY, "S9")

        assert again.before_percent == 100.0
        assert again.records_removed == 0
        assert first == second

    def test_store_connection_retried(self, orchestrator, engine, clock, seed_facts):
        seed_facts(DAY, [(1, "T_A", Decimal("-3"))])
        engine.failures[DAY] = [
            StoreConnectionError("DerivedRepository", "insert_rows", "server closed the connection"),
        ]

        result = orchestrator.fix_date(DAY)

        assert result.after_percent == 100.0
        assert engine.calls == [DAY, DAY]
        assert clock.sleeps == [0.25]

    def test_refresh_before_dedup(self, database, reference, config, clock, engine, seed_facts):
        seed_facts(DAY, [(1, "T_A", Decimal("-10"))] * 2)

        class OnePeriodSource(FactSource):
            def fetch_facts(self, settlement_date, settlement_period):
                if settlement_period == 1:
                    return [FetchedFact("T_A", Decimal("-12")), FetchedFact("T_A", Decimal("-12"))]
                return []

        ingestor = FactIngestor(database, OnePeriodSource(), clock=clock)
        orchestrator = BatchOrchestrator(
            database, reference, config, clock=clock, ingestor=ingestor, recalculation=engine
        )

        result = orchestrator.fix_date(DAY)

        assert result.ingestion.records_replaced == 2
        assert result.ingestion.periods_empty == 47
        assert result.records_removed == 1
        with database.session() as session:
            assert FactRepository(session).totals_for_date(DAY).total_quantity == Decimal("12")

    def test_failure_propagates(self, orchestrator, engine, seed_facts):
        seed_facts(DAY, [(1, "T_A", Decimal("-3"))])
        engine.failures[DAY] = [CalculationError("bad model", model_variant="S9")]

        with pytest.raises(CalculationError):
            orchestrator.fix_date(DAY)


# ============================================================
# BATCH RUN TESTS
# ============================================================

class TestBatchRun:
    """Tests for fix_all() and fix_range()."""

    def test_fix_all_processes_every_gap(self, orchestrator, config, clock, seed_dates):
        days = seed_dates(5)

        result = orchestrator.fix_all()

        assert result.keys_total == 5
        assert result.succeeded == 5
        assert result.failed == 0
        assert result.batches_run == 3
        assert clock.sleeps == [1.5, 1.5]
        assert result.initial_status.completion_percent == 0.0
        assert result.final_status.completion_percent == 100.0
        assert sorted(result.processed) == [day.isoformat() for day in days]

        checkpoint = _checkpoint(config, clock)
        assert checkpoint.status == CheckpointStatus.COMPLETED
        assert checkpoint.progress_percent == 100.0
        assert checkpoint.stats["total_keys"] == 5
        assert checkpoint.stats["rows_written"] == 30

    def test_most_recent_first_among_equals(self, orchestrator, engine, seed_dates):
        days = seed_dates(3)
        orchestrator.fix_all()
        assert engine.calls == list(reversed(days))

    def test_limit(self, orchestrator, engine, seed_dates):
        seed_dates(5)
        result = orchestrator.fix_all(limit=2)
        assert result.keys_total == 2
        assert len(engine.calls) == 2

    def test_nothing_to_do(self, orchestrator, config, clock):
        result = orchestrator.fix_all()
        assert result.keys_total == 0
        assert result.batches_run == 0
        assert _checkpoint(config, clock).status == CheckpointStatus.COMPLETED

    def test_fix_range(self, orchestrator, engine, config, clock, seed_dates):
        days = seed_dates(5)

        result = orchestrator.fix_range("2025-03-02", "2025-03-03")

        assert result.operation == "fix-range_2025-03-02_2025-03-03"
        assert sorted(engine.calls) == days[1:3]
        checkpoint = _checkpoint(config, clock, result.operation)
        assert checkpoint.start_key == "2025-03-02"
        assert checkpoint.end_key == "2025-03-03"

    def test_inverted_range_rejected(self, orchestrator):
        with pytest.raises(ConfigurationError):
            orchestrator.fix_range("2025-03-05", "2025-03-01")

    def test_invalid_batch_size(self, orchestrator):
        with pytest.raises(ConfigurationError):
            orchestrator.run(batch_size=0)

    def test_to_dict(self, orchestrator, seed_dates):
        seed_dates(1)
        data = orchestrator.fix_all().to_dict()
        assert data["operation"] == "fix-all"
        assert data["succeeded"] == 1
        assert data["final_completion"] == 100.0


# ============================================================
# FAILURE HANDLING TESTS
# ============================================================

class TestFailureHandling:
    """Tests for per-date failures and fatal errors."""

    def test_date_failure_does_not_stop_run(self, orchestrator, engine, config, clock, seed_dates):
        days = seed_dates(4)
        engine.failures[days[1]] = [CalculationError("model blew up", model_variant="S9")]

        result = orchestrator.fix_all()

        assert result.succeeded == 3
        assert result.failed == 1
        assert result.failures[0].key == days[1].isoformat()
        assert "CalculationError" in result.failures[0].reason
        checkpoint = _checkpoint(config, clock)
        assert checkpoint.status == CheckpointStatus.COMPLETED
        assert checkpoint.failed_key_names == [days[1].isoformat()]

    def test_failed_date_retried_next_run(self, orchestrator, engine, seed_dates):
        days = seed_dates(3)
        engine.failures[days[0]] = [RuntimeError("transient glitch")]

        orchestrator.fix_all()
        engine.calls.clear()
        second = orchestrator.fix_all()

        assert engine.calls == [days[0]]
        assert second.succeeded == 1
        assert not second.resumed

    def test_fatal_error_aborts_and_fails_checkpoint(self, orchestrator, engine, config, clock, seed_dates):
        days = seed_dates(4)
        order = list(reversed(days))
        engine.failures[order[1]] = [ConfigurationError("unknown variant")]

        with pytest.raises(ConfigurationError):
            orchestrator.fix_all()

        assert engine.calls == order[:2]
        checkpoint = _checkpoint(config, clock)
        assert checkpoint.status == CheckpointStatus.FAILED
        assert checkpoint.processed_keys == [order[0].isoformat()]

    def test_store_down_is_fatal_after_retries(self, orchestrator, engine, config, clock, seed_dates):
        days = seed_dates(2)
        engine.failures[days[1]] = [
            StoreConnectionError("FactRepository", "count", "connection refused")
            for _ in range(3)
        ]

        with pytest.raises(StoreConnectionError):
            orchestrator.fix_all()

        assert engine.calls == [days[1]] * 3
        assert _checkpoint(config, clock).status == CheckpointStatus.FAILED


# ============================================================
# RESUME AND STOP TESTS
# ============================================================

class TestResume:
    """Tests for resuming interrupted runs."""

    def test_resume_after_interrupt(self, orchestrator, engine, config, clock, seed_dates):
        days = seed_dates(10)
        order = list(reversed(days))
        engine.failures[order[5]] = [KeyboardInterrupt()]

        with pytest.raises(KeyboardInterrupt):
            orchestrator.fix_all()

        interrupted = _checkpoint(config, clock)
        assert interrupted.status == CheckpointStatus.RUNNING
        assert interrupted.processed_keys == [day.isoformat() for day in order[:5]]
        assert engine.calls == order[:6]

        engine.calls.clear()
        result = orchestrator.fix_all()

        assert result.resumed
        assert result.checkpoint_id == interrupted.id
        assert engine.calls == order[5:]
        checkpoint = _checkpoint(config, clock)
        assert checkpoint.status == CheckpointStatus.COMPLETED
        assert len(checkpoint.processed_keys) == 10
        assert checkpoint.stats["total_keys"] == 10
        assert result.final_status.completion_percent == 100.0

    def test_resume_skips_processed_keys(self, orchestrator, engine, config, clock, seed_dates):
        days = seed_dates(3)
        manager = CheckpointManager("fix-all", FileCheckpointStore(config.checkpoint.directory), clock)
        manager.init()
        manager.start()
        manager.mark_processed(days[2].isoformat())

        result = orchestrator.fix_all()

        assert result.resumed
        assert result.keys_skipped == 1
        assert sorted(engine.calls) == days[:2]

    def test_stop_request_leaves_checkpoint_resumable(self, orchestrator, engine, config, clock, seed_dates):
        days = seed_dates(5)
        engine.before_call = lambda day: orchestrator.request_stop()

        result = orchestrator.fix_all()

        assert result.stopped_early
        assert result.batches_run == 1
        assert result.succeeded == 2
        assert _checkpoint(config, clock).status == CheckpointStatus.RUNNING

        engine.before_call = None
        resumed = orchestrator.fix_all()

        assert resumed.resumed
        assert resumed.succeeded == 3
        assert not resumed.stopped_early
        assert _checkpoint(config, clock).status == CheckpointStatus.COMPLETED
        assert orchestrator.gap_finder.find_incomplete() == []
