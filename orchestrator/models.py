"""
Orchestrator - Models.

============================================================
RESPONSIBILITY
============================================================
Result models for batch runs and single-date fixes.

============================================================
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from reconciliation.models import (
    DeduplicationResult,
    IngestionResult,
    RecalculationResult,
    ReconciliationStatus,
    RollupResult,
)


# ============================================================
# KEY FAILURE
# ============================================================

@dataclass(frozen=True)
class KeyFailure:
    """One date that failed during a run."""

    key: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"key": self.key, "reason": self.reason}


# ============================================================
# DATE FIX RESULT
# ============================================================

@dataclass
class DateFixResult:
    """Result of deduplicating and recomputing one date."""

    settlement_date: date
    deduplication: Optional[DeduplicationResult] = None
    rollup: Optional[RollupResult] = None
    recalculations: Dict[str, RecalculationResult] = field(default_factory=dict)
    ingestion: Optional[IngestionResult] = None
    before_percent: Optional[float] = None
    after_percent: Optional[float] = None

    @property
    def records_removed(self) -> int:
        return self.deduplication.records_removed if self.deduplication else 0

    @property
    def rows_written(self) -> int:
        return sum(result.records_processed for result in self.recalculations.values())

    @property
    def rows_skipped(self) -> int:
        return sum(result.records_skipped for result in self.recalculations.values())

    def stats_delta(self) -> Dict[str, int]:
        """Counters added to the checkpoint stats for this date."""
        return {
            "records_removed": self.records_removed,
            "rows_written": self.rows_written,
            "rows_skipped": self.rows_skipped,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.settlement_date.isoformat(),
            "deduplication": self.deduplication.to_dict() if self.deduplication else None,
            "recalculations": {
                variant: result.to_dict() for variant, result in self.recalculations.items()
            },
            "ingestion": self.ingestion.to_dict() if self.ingestion else None,
            "before_percent": self.before_percent,
            "after_percent": self.after_percent,
        }


# ============================================================
# BATCH RUN RESULT
# ============================================================

@dataclass
class BatchRunResult:
    """Result of one orchestrated batch run."""

    operation: str
    started_at: datetime
    checkpoint_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    resumed: bool = False
    keys_total: int = 0
    keys_skipped: int = 0
    processed: List[str] = field(default_factory=list)
    failures: List[KeyFailure] = field(default_factory=list)
    batches_run: int = 0
    stopped_early: bool = False
    initial_status: Optional[ReconciliationStatus] = None
    final_status: Optional[ReconciliationStatus] = None

    @property
    def attempted(self) -> int:
        return len(self.processed) + len(self.failures)

    @property
    def succeeded(self) -> int:
        return len(self.processed)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def duration_seconds(self) -> float:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "operation": self.operation,
            "checkpoint_id": self.checkpoint_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "resumed": self.resumed,
            "keys_total": self.keys_total,
            "keys_skipped": self.keys_skipped,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failures": [failure.to_dict() for failure in self.failures],
            "batches_run": self.batches_run,
            "stopped_early": self.stopped_early,
            "initial_completion": (
                self.initial_status.completion_percent if self.initial_status else None
            ),
            "final_completion": (
                self.final_status.completion_percent if self.final_status else None
            ),
        }
