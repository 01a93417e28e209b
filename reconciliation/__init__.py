"""
Reconciliation Package.

Keeps the derived dataset complete and consistent with the
source facts.

Components:
- gap_finder: Completeness measurement and gap ranking
- deduplicator: Duplicate fact removal and summary rollup
- calculation: Pluggable calculation models
- recalculation: Idempotent per-(date, variant) rebuild
- checkpoint: Resumable progress of batch operations
- ingestion: Per-period fact re-fetch
- difficulty: Stored per-date network difficulty
"""

from .calculation import CalculationModel, MiningOutputModel
from .checkpoint import (
    Checkpoint,
    CheckpointManager,
    CheckpointStatus,
    CheckpointStore,
    FileCheckpointStore,
)
from .deduplicator import Deduplicator
from .difficulty import StoredDifficultySource
from .gap_finder import GapFinder
from .ingestion import FactIngestor, FactSource, FetchedFact
from .models import (
    DateCompletion,
    DateDetails,
    DeduplicationPreview,
    DeduplicationResult,
    DuplicateGroup,
    IngestionResult,
    RecalculationResult,
    ReconciliationStatus,
    RollupResult,
)
from .recalculation import RecalculationEngine

__all__ = [
    "CalculationModel",
    "MiningOutputModel",
    "Checkpoint",
    "CheckpointManager",
    "CheckpointStatus",
    "CheckpointStore",
    "FileCheckpointStore",
    "Deduplicator",
    "StoredDifficultySource",
    "GapFinder",
    "FactIngestor",
    "FactSource",
    "FetchedFact",
    "DateCompletion",
    "DateDetails",
    "DeduplicationPreview",
    "DeduplicationResult",
    "DuplicateGroup",
    "IngestionResult",
    "RecalculationResult",
    "ReconciliationStatus",
    "RollupResult",
    "RecalculationEngine",
]
