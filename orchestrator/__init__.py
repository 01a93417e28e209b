"""
Orchestrator Package - Batch Coordination Layer.

============================================================
PACKAGE OVERVIEW
============================================================
Drives reconciliation across many settlement dates and exposes
the command-line interface.

============================================================
CORE PRINCIPLES
============================================================
1. The orchestrator has NO calculation logic
2. One date failing never stops the run
3. Fatal errors (configuration, checkpoint, store) abort it
4. Every run is resumable from its checkpoint

============================================================
ARCHITECTURE
============================================================

    +-----------------------------------------------------+
    |                  BatchOrchestrator                  |
    |-----------------------------------------------------|
    |  GapFinder           |  rank incomplete dates       |
    |  Deduplicator        |  remove duplicates, rollup   |
    |  RecalculationEngine |  rebuild derived rows        |
    |  CheckpointManager   |  resumable progress          |
    |  CLI                 |  command-line interface      |
    +-----------------------------------------------------+

============================================================
QUICK START
============================================================
Command line usage::

    settlement-reconcile status
    settlement-reconcile check-date 2025-03-21
    settlement-reconcile fix-all 20
    settlement-reconcile fix-range 2025-03-01 2025-03-31

Programmatic usage::

    from orchestrator import BatchOrchestrator

    orchestrator = BatchOrchestrator(database, reference, config)
    result = orchestrator.fix_all(limit=20)
    print(result.to_dict())

============================================================
"""

from .core import BatchOrchestrator, is_fatal, setup_logging, split_batches
from .models import BatchRunResult, DateFixResult, KeyFailure


__all__ = [
    "BatchOrchestrator",
    "BatchRunResult",
    "DateFixResult",
    "KeyFailure",
    "is_fatal",
    "setup_logging",
    "split_batches",
]
