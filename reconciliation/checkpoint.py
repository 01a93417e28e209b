"""
Checkpoint Manager.

============================================================
RESPONSIBILITY
============================================================
Persists the progress of one long batch operation so that an
interrupted run resumes where it stopped.

============================================================
STATE MACHINE
============================================================
    pending -> running -> completed
       |          |
       +----------+----> failed

completed and failed are terminal. A terminal checkpoint is
never resumed; the next init() starts a fresh one.

============================================================
PERSISTENCE
============================================================
One JSON document per operation name. Writes go to a temp
file in the same directory, are flushed and fsynced, then
atomically replace the target, so a crash mid-write leaves
the previous document intact.

============================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union
import json
import logging
import os
import re
import tempfile
import threading
import uuid

from core.clock import ClockProtocol, SystemClock, from_iso8601, to_iso8601
from core.exceptions import CheckpointError, StateTransitionError


# ============================================================
# STATUS
# ============================================================

class CheckpointStatus(Enum):
    """Checkpoint lifecycle status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CheckpointStatus.COMPLETED, CheckpointStatus.FAILED)


VALID_TRANSITIONS: Dict[CheckpointStatus, Set[CheckpointStatus]] = {
    CheckpointStatus.PENDING: {
        CheckpointStatus.RUNNING,
        CheckpointStatus.FAILED,
    },
    CheckpointStatus.RUNNING: {
        CheckpointStatus.COMPLETED,
        CheckpointStatus.FAILED,
    },
    CheckpointStatus.COMPLETED: set(),  # Terminal
    CheckpointStatus.FAILED: set(),  # Terminal
}


# ============================================================
# CHECKPOINT RECORD
# ============================================================

@dataclass
class Checkpoint:
    """Resumable progress of one operation."""

    id: str
    operation: str
    status: CheckpointStatus
    created: datetime
    last_updated: datetime
    progress_percent: float = 0.0
    start_key: Optional[str] = None
    end_key: Optional[str] = None
    processed_keys: List[str] = field(default_factory=list)
    failed_keys: List[Dict[str, str]] = field(default_factory=list)
    current_key: Optional[str] = None
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def failed_key_names(self) -> List[str]:
        return [entry["key"] for entry in self.failed_keys]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "operation": self.operation,
            "status": self.status.value,
            "progress_percent": self.progress_percent,
            "start_key": self.start_key,
            "end_key": self.end_key,
            "processed_keys": list(self.processed_keys),
            "failed_keys": [dict(entry) for entry in self.failed_keys],
            "current_key": self.current_key,
            "stats": dict(self.stats),
            "created": to_iso8601(self.created),
            "last_updated": to_iso8601(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Checkpoint":
        """Deserialize from dictionary."""
        return cls(
            id=data["id"],
            operation=data["operation"],
            status=CheckpointStatus(data["status"]),
            progress_percent=float(data.get("progress_percent", 0)),
            start_key=data.get("start_key"),
            end_key=data.get("end_key"),
            processed_keys=list(data.get("processed_keys", [])),
            failed_keys=[
                {"key": str(entry["key"]), "reason": str(entry.get("reason", ""))}
                for entry in data.get("failed_keys", [])
            ],
            current_key=data.get("current_key"),
            stats=dict(data.get("stats", {})),
            created=from_iso8601(data["created"]),
            last_updated=from_iso8601(data["last_updated"]),
        )


# ============================================================
# STORAGE
# ============================================================

class CheckpointStore(ABC):
    """Keyed storage of serialized checkpoints."""

    @abstractmethod
    def load(self, operation: str) -> Optional[Dict[str, Any]]:
        """Stored document for an operation, or None."""

    @abstractmethod
    def save(self, operation: str, document: Dict[str, Any]) -> None:
        """Replace the stored document atomically."""

    @abstractmethod
    def delete(self, operation: str) -> bool:
        """Remove the stored document. Returns whether one existed."""


_OPERATION_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


class FileCheckpointStore(CheckpointStore):
    """One JSON file per operation under a directory."""

    def __init__(self, directory: Union[str, Path]):
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, operation: str) -> Path:
        if not _OPERATION_NAME.match(operation) or operation.startswith("."):
            raise CheckpointError(
                f"Invalid operation name: {operation!r}",
                operation=operation,
            )
        return self._directory / f"{operation}.json"

    def load(self, operation: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(operation)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CheckpointError(
                f"Cannot read checkpoint {path}: {e}",
                operation=operation,
                cause=e,
            ) from e

    def save(self, operation: str, document: Dict[str, Any]) -> None:
        path = self.path_for(operation)
        tmp_name = None
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=self._directory,
                prefix=f".{operation}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                json.dump(document, tmp, indent=2)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise CheckpointError(
                f"Cannot write checkpoint {path}: {e}",
                operation=operation,
                cause=e,
            ) from e

    def delete(self, operation: str) -> bool:
        path = self.path_for(operation)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CheckpointError(
                f"Cannot delete checkpoint {path}: {e}",
                operation=operation,
                cause=e,
            ) from e


# ============================================================
# CHECKPOINT MANAGER
# ============================================================

Mutator = Callable[[Checkpoint], Mapping[str, Any]]


class CheckpointManager:
    """
    Owns the checkpoint of one operation name.

    Single writer: one run per operation name at a time.
    Every update persists synchronously; the optional autosave
    timer is a safety net on top of that.

    Usage:
        manager = CheckpointManager("fix-range", FileCheckpointStore(path), clock)
        checkpoint = manager.init(start_key="2025-03-01", end_key="2025-03-31")
        for key in manager.pending_keys(keys):
            ...
            manager.mark_processed(key)
        manager.complete(success=True)
    """

    def __init__(
        self,
        operation: str,
        store: CheckpointStore,
        clock: Optional[ClockProtocol] = None,
        autosave_seconds: float = 0,
    ):
        self._operation = operation
        self._store = store
        self._clock = clock or SystemClock()
        self._autosave_seconds = autosave_seconds
        self._checkpoint: Optional[Checkpoint] = None
        self._resumed = False
        self._lock = threading.RLock()
        self._timer: Optional[threading.Timer] = None
        self._autosave_active = False
        self._logger = logging.getLogger(f"reconciliation.checkpoint.{operation}")

    @property
    def operation(self) -> str:
        return self._operation

    @property
    def is_resumed(self) -> bool:
        return self._resumed

    @property
    def checkpoint(self) -> Checkpoint:
        """
        Raises:
            CheckpointError: If init() has not been called
        """
        with self._lock:
            if self._checkpoint is None:
                raise CheckpointError(
                    f"Checkpoint for {self._operation} not initialized",
                    operation=self._operation,
                )
            return self._checkpoint

    # =========================================================
    # LIFECYCLE
    # =========================================================

    def load(self) -> Optional[Checkpoint]:
        """
        Read the stored checkpoint without adopting it.

        Raises:
            CheckpointError: If the stored document is unreadable
        """
        document = self._store.load(self._operation)
        if document is None:
            return None
        try:
            return Checkpoint.from_dict(document)
        except (KeyError, TypeError, ValueError) as e:
            raise CheckpointError(
                f"Malformed checkpoint for {self._operation}: {e}",
                operation=self._operation,
                cause=e,
            ) from e

    def init(self, start_key: Optional[str] = None, end_key: Optional[str] = None) -> Checkpoint:
        """
        Resume a non-terminal stored checkpoint, or start a fresh one.
        """
        existing = self.load()
        with self._lock:
            if (
                existing is not None
                and existing.operation == self._operation
                and not existing.status.is_terminal
            ):
                self._checkpoint = existing
                self._resumed = True
                self._logger.info(
                    f"Resuming checkpoint {existing.id}: status={existing.status.value} "
                    f"processed={len(existing.processed_keys)} failed={len(existing.failed_keys)}"
                )
            else:
                now = self._clock.now()
                self._checkpoint = Checkpoint(
                    id=uuid.uuid4().hex,
                    operation=self._operation,
                    status=CheckpointStatus.PENDING,
                    created=now,
                    last_updated=now,
                    start_key=start_key,
                    end_key=end_key,
                )
                self._resumed = False
                self.save()
                self._logger.info(f"Created checkpoint {self._checkpoint.id}")

        if self._autosave_seconds > 0:
            self.start_autosave()
        return self.checkpoint

    def save(self) -> None:
        """
        Persist the current checkpoint.

        Raises:
            CheckpointError: If the store cannot be written
        """
        with self._lock:
            self._store.save(self._operation, self.checkpoint.to_dict())

    def update(self, changes: Union[Mutator, Mapping[str, Any]]) -> Checkpoint:
        """
        Apply a partial update, stamp last_updated and persist.

        Args:
            changes: Field values, or a function of the current
                checkpoint returning field values

        Raises:
            StateTransitionError: If a status change is not allowed
        """
        with self._lock:
            current = self.checkpoint
            fields = dict(changes(current) if callable(changes) else changes)

            target = fields.get("status")
            if target is not None and target != current.status:
                if target not in VALID_TRANSITIONS[current.status]:
                    raise StateTransitionError(
                        f"Invalid checkpoint transition: {current.status.value} -> {target.value}",
                        from_state=current.status.value,
                        to_state=target.value,
                    )
                self._logger.info(f"Checkpoint {current.status.value} -> {target.value}")

            fields["last_updated"] = self._clock.now()
            self._checkpoint = replace(current, **fields)
            self.save()
            return self._checkpoint

    def start(self) -> Checkpoint:
        """Move a pending checkpoint to running. A resumed running one is left as is."""
        if self.checkpoint.status == CheckpointStatus.RUNNING:
            return self.checkpoint
        return self.update({"status": CheckpointStatus.RUNNING})

    def complete(self, success: bool) -> Checkpoint:
        """Set the terminal status, persist and stop autosave."""
        try:
            if success:
                return self.update({
                    "status": CheckpointStatus.COMPLETED,
                    "progress_percent": 100.0,
                    "current_key": None,
                })
            return self.update({"status": CheckpointStatus.FAILED})
        finally:
            self.stop_autosave()

    def delete(self) -> bool:
        self.stop_autosave()
        with self._lock:
            self._checkpoint = None
            self._resumed = False
        return self._store.delete(self._operation)

    # =========================================================
    # KEY TRACKING
    # =========================================================

    def pending_keys(self, all_keys: Iterable[str]) -> List[str]:
        """Keys not yet processed successfully, in the given order."""
        processed = set(self.checkpoint.processed_keys)
        return [key for key in all_keys if key not in processed]

    def mark_processed(self, key: str, stats_delta: Optional[Mapping[str, Any]] = None) -> Checkpoint:
        """Record a successful key. Clears an earlier failure of the same key."""
        def mutate(checkpoint: Checkpoint) -> Dict[str, Any]:
            processed = list(checkpoint.processed_keys)
            if key not in processed:
                processed.append(key)
            failed = [entry for entry in checkpoint.failed_keys if entry["key"] != key]
            stats = _merge_stats(checkpoint.stats, stats_delta or {})
            return {
                "processed_keys": processed,
                "failed_keys": failed,
                "current_key": key,
                "stats": stats,
                "progress_percent": _progress(stats, len(processed) + len(failed)),
            }

        return self.update(mutate)

    def mark_failed(self, key: str, reason: str) -> Checkpoint:
        """Record a failed key with its reason (latest reason wins)."""
        def mutate(checkpoint: Checkpoint) -> Dict[str, Any]:
            failed = [entry for entry in checkpoint.failed_keys if entry["key"] != key]
            failed.append({"key": key, "reason": reason})
            return {
                "failed_keys": failed,
                "current_key": key,
                "progress_percent": _progress(
                    checkpoint.stats, len(checkpoint.processed_keys) + len(failed)
                ),
            }

        return self.update(mutate)

    # =========================================================
    # AUTOSAVE
    # =========================================================

    def start_autosave(self) -> None:
        with self._lock:
            if self._autosave_active or self._autosave_seconds <= 0:
                return
            self._autosave_active = True
            self._schedule_autosave()

    def stop_autosave(self) -> None:
        with self._lock:
            self._autosave_active = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _schedule_autosave(self) -> None:
        self._timer = threading.Timer(self._autosave_seconds, self._autosave_tick)
        self._timer.daemon = True
        self._timer.start()

    def _autosave_tick(self) -> None:
        with self._lock:
            if not self._autosave_active or self._checkpoint is None:
                return
            try:
                self.save()
            except CheckpointError as e:
                self._logger.error(f"Checkpoint autosave failed: {e.to_log_format()}")
            self._schedule_autosave()


def _merge_stats(stats: Mapping[str, Any], delta: Mapping[str, Any]) -> Dict[str, Any]:
    """Add numeric deltas to existing stats; other values overwrite."""
    merged = dict(stats)
    for name, value in delta.items():
        current = merged.get(name)
        if isinstance(value, (int, float)) and isinstance(current, (int, float)):
            merged[name] = current + value
        else:
            merged[name] = value
    return merged


def _progress(stats: Mapping[str, Any], done: int) -> float:
    total = stats.get("total_keys")
    if not total:
        return 0.0
    return round(min(done / total * 100, 100.0), 2)


__all__ = [
    "CheckpointStatus",
    "VALID_TRANSITIONS",
    "Checkpoint",
    "CheckpointStore",
    "FileCheckpointStore",
    "CheckpointManager",
]
