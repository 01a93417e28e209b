"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Drives long reconciliation runs over many settlement dates.

- Ranks incomplete dates and processes them in batches
- Records progress in a checkpoint so runs can resume
- Isolates per-date failures; aborts only on fatal errors
- Pauses between batches to respect upstream rate limits
- Reports completion before and after the run

============================================================
ARCHITECTURAL POSITION
============================================================
- This orchestrator has NO calculation logic
- It ONLY coordinates the reconciliation components
- One logical worker: batches and dates run sequentially

============================================================
"""

from datetime import date
from typing import Callable, List, Optional, Sequence, TypeVar
import json
import logging
import sys
import threading

from core.clock import ClockProtocol, SystemClock, parse_settlement_date
from core.config import ReconcilerConfig
from core.exceptions import ConfigurationError, ReconciliationException, describe_failure
from core.reference_data import ReferenceData
from core.retry import RetryPolicy
from reconciliation.checkpoint import CheckpointManager, CheckpointStore, FileCheckpointStore
from reconciliation.deduplicator import Deduplicator
from reconciliation.gap_finder import GapFinder
from reconciliation.ingestion import FactIngestor
from reconciliation.recalculation import RecalculationEngine
from storage.database import Database
from storage.repositories.exceptions import ConnectionError as StoreConnectionError
from storage.repositories.exceptions import RepositoryException

from .models import BatchRunResult, DateFixResult, KeyFailure


T = TypeVar("T")


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    run_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        run_id: Identifier stamped on every line

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
                "run_id": run_id or "",
            })
        )
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {run_id or '-'} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


def is_fatal(error: BaseException) -> bool:
    """
    Whether an error must abort the whole run.

    Fatal: configuration mistakes, checkpoint failures and an
    unreachable store. Everything else fails only its date.
    """
    if isinstance(error, ReconciliationException):
        return error.is_fatal
    if isinstance(error, RepositoryException):
        return error.fatal
    return False


def split_batches(keys: Sequence[str], batch_size: int) -> List[List[str]]:
    return [list(keys[i:i + batch_size]) for i in range(0, len(keys), batch_size)]


# ============================================================
# BATCH ORCHESTRATOR
# ============================================================

class BatchOrchestrator:
    """
    Checkpointed, batched reconciliation of incomplete dates.

    Usage:
        orchestrator = BatchOrchestrator(database, reference, config)
        result = orchestrator.run(date(2025, 3, 1), date(2025, 3, 31))
    """

    def __init__(
        self,
        database: Database,
        reference: ReferenceData,
        config: Optional[ReconcilerConfig] = None,
        clock: Optional[ClockProtocol] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        ingestor: Optional[FactIngestor] = None,
        gap_finder: Optional[GapFinder] = None,
        deduplicator: Optional[Deduplicator] = None,
        recalculation: Optional[RecalculationEngine] = None,
    ):
        self._config = config or ReconcilerConfig()

        errors = self._config.validate()
        if errors:
            raise ConfigurationError(f"Invalid configuration: {', '.join(errors)}")

        self._clock = clock or SystemClock()
        self._reference = reference
        self._checkpoint_store = checkpoint_store or FileCheckpointStore(
            self._config.checkpoint.directory
        )
        self._ingestor = ingestor
        self._gap_finder = gap_finder or GapFinder(database, reference)
        self._deduplicator = deduplicator or Deduplicator(database, self._clock)
        self._recalculation = recalculation or RecalculationEngine(
            database,
            reference,
            clock=self._clock,
            insert_batch_size=self._config.batch.insert_batch_size,
        )
        self._store_retry = RetryPolicy(
            self._config.retry,
            self._clock,
            retry_on=(StoreConnectionError,),
        )
        self._stop_requested = threading.Event()
        self._logger = logging.getLogger("orchestrator")

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def config(self) -> ReconcilerConfig:
        return self._config

    @property
    def gap_finder(self) -> GapFinder:
        return self._gap_finder

    @property
    def deduplicator(self) -> Deduplicator:
        return self._deduplicator

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def request_stop(self) -> None:
        """Ask the running batch loop to stop at the next batch boundary."""
        if not self._stop_requested.is_set():
            self._logger.warning("Stop requested; finishing current batch")
        self._stop_requested.set()

    # --------------------------------------------------------
    # Single date
    # --------------------------------------------------------

    def fix_date(self, settlement_date: date) -> DateFixResult:
        """
        Deduplicate and recompute one date, without a checkpoint.

        Raises:
            ReconciliationException / RepositoryException on failure
        """
        day = parse_settlement_date(settlement_date)
        before = self._gap_finder.details_for_date(day)
        result = self._store_retry.call(self._fix, day, description=f"fix {day}")
        result.before_percent = before.completion_percent
        result.after_percent = self._gap_finder.details_for_date(day).completion_percent
        self._logger.info(
            f"Fixed {day}: {result.before_percent}% -> {result.after_percent}%"
        )
        return result

    def _fix(self, day: date) -> DateFixResult:
        result = DateFixResult(settlement_date=day)

        if self._ingestor is not None:
            result.ingestion = self._ingestor.refresh_date(day)

        if self._deduplicator.needs_deduplication(day):
            result.deduplication = self._deduplicator.deduplicate(day)
            result.rollup = result.deduplication.rollup
        else:
            result.rollup = self._deduplicator.rollup(day)

        result.recalculations = self._recalculation.recompute_all_variants(day)
        return result

    # --------------------------------------------------------
    # Batch runs
    # --------------------------------------------------------

    def fix_all(self, limit: Optional[int] = None) -> BatchRunResult:
        """Reconcile every incomplete date, worst first."""
        return self.run(limit=limit, operation_name="fix-all")

    def fix_range(self, start_date: date, end_date: date) -> BatchRunResult:
        start = parse_settlement_date(start_date)
        end = parse_settlement_date(end_date)
        return self.run(start, end, operation_name=f"fix-range_{start}_{end}")

    def run(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        batch_size: Optional[int] = None,
        limit: Optional[int] = None,
        operation_name: str = "reconcile",
    ) -> BatchRunResult:
        """
        Reconcile the incomplete dates of a range.

        Per-date failures are recorded in the checkpoint and the
        run continues. Fatal errors mark the checkpoint failed and
        propagate.

        Raises:
            ConfigurationError: Bad range or batch size
            CheckpointError: Checkpoint cannot be persisted
            ConnectionError: Store unreachable after retries
        """
        batch_size = batch_size if batch_size is not None else self._config.batch.batch_size
        if batch_size < 1:
            raise ConfigurationError(
                "batch_size must be at least 1",
                config_key="batch_size",
                actual_value=batch_size,
            )

        date_range = None
        if start_date is not None or end_date is not None:
            if start_date is None or end_date is None:
                raise ConfigurationError("Both start and end dates are required for a range")
            date_range = (parse_settlement_date(start_date), parse_settlement_date(end_date))

        self._stop_requested.clear()
        result = BatchRunResult(operation=operation_name, started_at=self._clock.now())

        # 1. Initial state
        result.initial_status = self._gap_finder.overall_status(date_range)
        gaps = self._gap_finder.find_incomplete(date_range, limit)
        keys = [gap.settlement_date.isoformat() for gap in gaps]
        result.keys_total = len(keys)

        self._logger.info(
            f"Starting {operation_name}: {len(keys)} incomplete dates, "
            f"completion {result.initial_status.completion_percent}%"
        )

        # 2. Checkpoint
        checkpoint = CheckpointManager(
            operation_name,
            self._checkpoint_store,
            self._clock,
            autosave_seconds=self._config.checkpoint.autosave_seconds,
        )
        state = checkpoint.init(
            start_key=date_range[0].isoformat() if date_range else None,
            end_key=date_range[1].isoformat() if date_range else None,
        )
        result.checkpoint_id = state.id
        result.resumed = checkpoint.is_resumed

        pending = checkpoint.pending_keys(keys)
        result.keys_skipped = len(keys) - len(pending)
        if result.keys_skipped:
            self._logger.info(f"Skipping {result.keys_skipped} dates already processed")

        try:
            checkpoint.update(lambda cp: {
                "stats": dict(cp.stats, total_keys=len(set(keys) | set(cp.processed_keys))),
            })
            checkpoint.start()

            # 3. Batches
            batches = split_batches(pending, batch_size)
            for index, batch in enumerate(batches):
                if self._stop_requested.is_set():
                    result.stopped_early = True
                    self._logger.warning(
                        f"Stopping before batch {index + 1}/{len(batches)}"
                    )
                    break
                if index > 0:
                    self._clock.sleep(self._config.batch.batch_delay_seconds)

                self._logger.info(
                    f"Batch {index + 1}/{len(batches)}: {batch[0]}..{batch[-1]}"
                )
                for key in batch:
                    self._process_key(key, checkpoint, result)
                result.batches_run += 1

        except Exception as e:
            self._logger.error(f"{operation_name} aborted: {describe_failure(e)}")
            self._abandon(checkpoint)
            raise
        except BaseException:
            checkpoint.stop_autosave()
            raise

        # 4. Final state
        result.final_status = self._gap_finder.overall_status(date_range)
        result.completed_at = self._clock.now()

        if result.stopped_early:
            checkpoint.stop_autosave()
        else:
            checkpoint.complete(success=True)

        self._logger.info(
            f"Finished {operation_name}: {result.succeeded} succeeded, {result.failed} failed, "
            f"completion {result.initial_status.completion_percent}% -> "
            f"{result.final_status.completion_percent}%"
        )
        return result

    def _process_key(
        self,
        key: str,
        checkpoint: CheckpointManager,
        result: BatchRunResult,
    ) -> None:
        day = parse_settlement_date(key)
        try:
            fix = self._store_retry.call(self._fix, day, description=f"fix {key}")
        except Exception as e:
            if is_fatal(e):
                raise
            reason = describe_failure(e)
            self._logger.warning(f"Date {key} failed: {reason}", exc_info=True)
            checkpoint.mark_failed(key, reason)
            result.failures.append(KeyFailure(key, reason))
            return

        checkpoint.mark_processed(key, fix.stats_delta())
        result.processed.append(key)
        self._logger.debug(
            f"Date {key} done: removed {fix.records_removed}, wrote {fix.rows_written}"
        )

    def _abandon(self, checkpoint: CheckpointManager) -> None:
        """Mark the checkpoint failed after a fatal error, if it can still be written."""
        try:
            checkpoint.complete(success=False)
        except ReconciliationException as e:
            self._logger.error(f"Could not mark checkpoint failed: {e.to_log_format()}")
