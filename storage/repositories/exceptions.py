"""
Repository Layer Exceptions.

============================================================
PURPOSE
============================================================
Every SQLAlchemy error raised inside a repository is caught
and re-raised as one of these, carrying the repository name
and the operation that failed.

============================================================
PROPAGATION
============================================================
- ConnectionError: the store is unreachable. Fatal for a
  batch run once it escapes a date's transaction.
- QueryError / IntegrityError / DuplicateRecordError: the
  statement itself failed. Recorded as a per-date failure.
- TransactionError: commit or rollback failed.
- ValidationError: rejected before reaching the database.

============================================================
"""

from typing import Any, Dict, Optional


class RepositoryException(Exception):
    """
    Base exception for all repository operations.

    Business layers catch this for generic error handling.
    """

    fatal: bool = False

    def __init__(
        self,
        message: str,
        repository_name: str,
        operation: str,
        details: Optional[dict] = None
    ) -> None:
        self.message = message
        self.repository_name = repository_name
        self.operation = operation
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        return f"[{self.repository_name}] {self.operation}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "repository": self.repository_name,
            "operation": self.operation,
            "message": self.message,
            "details": self.details,
        }


class DuplicateRecordError(RepositoryException):
    """
    Unique constraint violated on insert.

    For derived rows this means two writers touched the same
    (date, variant) concurrently.
    """

    def __init__(
        self,
        repository_name: str,
        operation: str,
        constraint: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Duplicate record violates {constraint}: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"constraint": constraint}
        )
        self.constraint = constraint


class IntegrityError(RepositoryException):
    """Non-unique integrity constraint violated (NOT NULL, CHECK)."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        constraint_name: str,
        message: str
    ) -> None:
        super().__init__(
            message=f"Integrity constraint violated ({constraint_name}): {message}",
            repository_name=repository_name,
            operation=operation,
            details={"constraint": constraint_name}
        )
        self.constraint_name = constraint_name


class ConnectionError(RepositoryException):
    """Database unreachable: connection refused, timeout, pool exhausted."""

    fatal = True

    def __init__(
        self,
        repository_name: str,
        operation: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Database connection failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error}
        )


class QueryError(RepositoryException):
    """Statement execution failed."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Query failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error}
        )


class TransactionError(RepositoryException):
    """Commit or rollback failed."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        phase: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Transaction {phase} failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"phase": phase, "original_error": original_error}
        )
        self.phase = phase


class ValidationError(RepositoryException):
    """
    Row rejected before it reaches the database.

    Covers structural checks only (period range, required key
    fields). Business validation belongs to the engine.
    """

    def __init__(
        self,
        repository_name: str,
        operation: str,
        field: str,
        reason: str
    ) -> None:
        super().__init__(
            message=f"Validation failed for {field}: {reason}",
            repository_name=repository_name,
            operation=operation,
            details={"field": field, "reason": reason}
        )
        self.field = field
        self.reason = reason


__all__ = [
    "RepositoryException",
    "DuplicateRecordError",
    "IntegrityError",
    "ConnectionError",
    "QueryError",
    "TransactionError",
    "ValidationError",
]
