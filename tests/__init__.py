"""
Tests for the Settlement Reconciliation Engine.

This package contains tests for:
- Core configuration, clock and retry policy
- Repositories over an in-memory SQLite store
- Gap detection, deduplication and recalculation
- Checkpoint persistence and resume
- Batch orchestration and the CLI
"""
