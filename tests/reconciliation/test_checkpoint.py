"""
Tests for the Checkpoint Manager.

============================================================
PURPOSE
============================================================
1. Lifecycle and state transitions
2. Resume of non-terminal checkpoints
3. Processed/failed key tracking and progress
4. Atomic file persistence

============================================================
"""

import json
import os

import pytest

from core.exceptions import CheckpointError, StateTransitionError
from reconciliation.checkpoint import (
    Checkpoint,
    CheckpointManager,
    CheckpointStatus,
    FileCheckpointStore,
)


@pytest.fixture
def store(tmp_path):
    return FileCheckpointStore(tmp_path / "checkpoints")


@pytest.fixture
def manager(store, clock):
    return CheckpointManager("fix-all", store, clock)


def _stored(store, operation="fix-all"):
    with open(store.path_for(operation), "r", encoding="utf-8") as f:
        return json.load(f)


# ============================================================
# LIFECYCLE TESTS
# ============================================================

class TestLifecycle:
    """Tests for checkpoint lifecycle."""

    def test_init_creates_pending(self, manager, store):
        checkpoint = manager.init(start_key="2025-03-01", end_key="2025-03-31")

        assert checkpoint.status == CheckpointStatus.PENDING
        assert not manager.is_resumed
        document = _stored(store)
        assert document["status"] == "pending"
        assert document["start_key"] == "2025-03-01"
        assert document["processed_keys"] == []

    def test_start_and_complete(self, manager, store):
        manager.init()
        manager.start()
        manager.mark_processed("2025-03-01")

        checkpoint = manager.complete(success=True)

        assert checkpoint.status == CheckpointStatus.COMPLETED
        assert checkpoint.progress_percent == 100.0
        assert checkpoint.current_key is None
        assert _stored(store)["status"] == "completed"

    def test_complete_failure(self, manager):
        manager.init()
        manager.start()
        assert manager.complete(success=False).status == CheckpointStatus.FAILED

    def test_pending_can_fail(self, manager):
        manager.init()
        assert manager.complete(success=False).status == CheckpointStatus.FAILED

    def test_terminal_state_cannot_restart(self, manager):
        manager.init()
        manager.start()
        manager.complete(success=True)

        with pytest.raises(StateTransitionError):
            manager.update({"status": CheckpointStatus.RUNNING})

    def test_pending_cannot_complete(self, manager):
        manager.init()
        with pytest.raises(StateTransitionError):
            manager.update({"status": CheckpointStatus.COMPLETED})

    def test_start_is_noop_when_running(self, manager):
        manager.init()
        first = manager.start()
        assert manager.start().status == first.status == CheckpointStatus.RUNNING

    def test_use_before_init(self, manager):
        with pytest.raises(CheckpointError):
            manager.checkpoint

    def test_delete(self, manager, store):
        manager.init()
        assert manager.delete()
        assert not store.path_for("fix-all").exists()
        assert not manager.delete()


# ============================================================
# RESUME TESTS
# ============================================================

class TestResume:
    """Tests for resuming interrupted runs."""

    def test_running_checkpoint_is_resumed(self, store, clock):
        first = CheckpointManager("fix-all", store, clock)
        original = first.init()
        first.start()
        first.mark_processed("2025-03-01")
        first.mark_processed("2025-03-02")

        second = CheckpointManager("fix-all", store, clock)
        resumed = second.init()

        assert second.is_resumed
        assert resumed.id == original.id
        assert resumed.status == CheckpointStatus.RUNNING
        assert second.pending_keys(["2025-03-01", "2025-03-02", "2025-03-03"]) == ["2025-03-03"]

    def test_completed_checkpoint_starts_fresh(self, store, clock):
        first = CheckpointManager("fix-all", store, clock)
        original = first.init()
        first.start()
        first.mark_processed("2025-03-01")
        first.complete(success=True)

        second = CheckpointManager("fix-all", store, clock)
        fresh = second.init()

        assert not second.is_resumed
        assert fresh.id != original.id
        assert fresh.processed_keys == []

    def test_operations_are_independent(self, store, clock):
        CheckpointManager("fix-all", store, clock).init()
        other = CheckpointManager("fix-range_2025-03-01_2025-03-31", store, clock)
        other.init()
        assert not other.is_resumed

    def test_round_trip(self, manager):
        manager.init(start_key="2025-03-01")
        manager.start()
        manager.mark_failed("2025-03-02", "boom")
        checkpoint = manager.load()

        assert Checkpoint.from_dict(checkpoint.to_dict()) == checkpoint
        assert checkpoint.failed_keys == [{"key": "2025-03-02", "reason": "boom"}]
        assert checkpoint.created.tzinfo is not None


# ============================================================
# KEY TRACKING TESTS
# ============================================================

class TestKeyTracking:
    """Tests for processed/failed key tracking."""

    def test_processed_clears_failure(self, manager):
        manager.init()
        manager.start()
        manager.mark_failed("2025-03-01", "timeout")
        checkpoint = manager.mark_processed("2025-03-01")

        assert checkpoint.processed_keys == ["2025-03-01"]
        assert checkpoint.failed_keys == []

    def test_latest_failure_reason_wins(self, manager):
        manager.init()
        manager.mark_failed("2025-03-01", "first")
        checkpoint = manager.mark_failed("2025-03-01", "second")
        assert checkpoint.failed_keys == [{"key": "2025-03-01", "reason": "second"}]
        assert checkpoint.failed_key_names == ["2025-03-01"]

    def test_processed_not_duplicated(self, manager):
        manager.init()
        manager.mark_processed("2025-03-01")
        checkpoint = manager.mark_processed("2025-03-01")
        assert checkpoint.processed_keys == ["2025-03-01"]

    def test_failed_keys_stay_pending(self, manager):
        manager.init()
        manager.mark_failed("2025-03-01", "boom")
        assert manager.pending_keys(["2025-03-01"]) == ["2025-03-01"]

    def test_stats_and_progress(self, manager):
        manager.init()
        manager.update({"stats": {"total_keys": 4}})
        manager.mark_processed("2025-03-01", {"records_removed": 2, "rows_written": 10})
        manager.mark_failed("2025-03-02", "boom")
        checkpoint = manager.mark_processed("2025-03-03", {"records_removed": 1, "rows_written": 5})

        assert checkpoint.stats == {"total_keys": 4, "records_removed": 3, "rows_written": 15}
        assert checkpoint.progress_percent == 75.0
        assert checkpoint.current_key == "2025-03-03"

    def test_update_with_mutator(self, manager):
        manager.init(start_key="2025-03-01")
        checkpoint = manager.update(lambda current: {"end_key": current.start_key})
        assert checkpoint.end_key == "2025-03-01"

    def test_last_updated_advances(self, manager, clock):
        created = manager.init().last_updated
        clock.advance(seconds=30)
        assert manager.mark_processed("2025-03-01").last_updated > created


# ============================================================
# PERSISTENCE TESTS
# ============================================================

class TestFileCheckpointStore:
    """Tests for the file store."""

    def test_missing_file_loads_none(self, store):
        assert store.load("fix-all") is None

    def test_invalid_operation_name(self, store):
        with pytest.raises(CheckpointError):
            store.path_for("../escape")
        with pytest.raises(CheckpointError):
            store.path_for(".hidden")

    def test_corrupt_file(self, store, manager):
        store.directory.mkdir(parents=True)
        store.path_for("fix-all").write_text("{not json", encoding="utf-8")

        with pytest.raises(CheckpointError):
            manager.init()

    def test_malformed_document(self, store, manager):
        store.save("fix-all", {"id": "x"})
        with pytest.raises(CheckpointError):
            manager.load()

    def test_failed_write_keeps_previous_document(self, store, manager, monkeypatch):
        manager.init()
        manager.mark_processed("2025-03-01")
        before = _stored(store)

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", broken_replace)
        with pytest.raises(CheckpointError):
            manager.mark_processed("2025-03-02")
        monkeypatch.undo()

        assert _stored(store) == before
        assert [p.name for p in store.directory.iterdir()] == ["fix-all.json"]

    def test_autosave_stops_on_complete(self, store, clock):
        manager = CheckpointManager("fix-all", store, clock, autosave_seconds=60)
        manager.init()
        manager.start()
        manager.complete(success=True)
        manager.stop_autosave()
        assert _stored(store)["status"] == "completed"
