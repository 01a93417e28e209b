"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the reconciliation engine.

- Provides clear exception hierarchy
- Separates fatal errors from per-key failures
- Marks which errors are worth retrying
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
ReconciliationException (base)
├── ConfigurationError
│   └── InvalidDateError
├── TransientIOError
│   └── FactSourceError
├── DataIntegrityError
├── CalculationError
├── PartialFailure
├── CheckpointError
└── StateTransitionError

============================================================
PROPAGATION
============================================================
- ConfigurationError aborts the whole run (caller mistake)
- TransientIOError is retried at the external call site;
  exhaustion becomes a PartialFailure for that key
- DataIntegrityError is resolved by the Deduplicator
- CheckpointError is fatal (resume state is unreliable)

============================================================
"""

from enum import Enum
from typing import Any, Dict, Optional


class Severity(Enum):
    """How loudly a failure is logged."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorClassification(Enum):
    """What the caller should do with a failure."""

    RECOVERABLE = "recoverable"          # record against the key, continue
    TRANSIENT = "transient"              # repeat the call
    NON_RECOVERABLE = "non_recoverable"  # abort the run


# ============================================================
# BASE EXCEPTION
# ============================================================

class ReconciliationException(Exception):
    """
    Base exception for all reconciliation engine errors.

    Subclasses pick a default severity and classification;
    both can be overridden per instance. ``context`` holds the
    date/period/variant the failure belongs to.
    """

    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity or self.default_severity
        self.classification = classification or self.default_classification
        self.context = dict(context or {})
        self.cause = cause
        if cause is not None:
            self.context.setdefault("cause", f"{type(cause).__name__}: {cause}")

    @property
    def recoverable(self) -> bool:
        return self.classification != ErrorClassification.NON_RECOVERABLE

    @property
    def is_retryable(self) -> bool:
        return self.classification == ErrorClassification.TRANSIENT

    @property
    def is_fatal(self) -> bool:
        """True when the whole run must stop."""
        return not self.recoverable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
        }

    def to_log_format(self) -> str:
        """Single-line form used in log messages."""
        line = f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
        if self.context:
            line += " | " + ", ".join(f"{k}={v}" for k, v in self.context.items())
        return line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(ReconciliationException):
    """Caller mistake: unknown model variant, bad date, bad setting."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        super().__init__(message, context=context, **kwargs)


class InvalidDateError(ConfigurationError):
    """Date string is not a valid YYYY-MM-DD date."""

    def __init__(self, value: Any, reason: str = "expected YYYY-MM-DD"):
        super().__init__(
            message=f"Invalid date '{value}': {reason}",
            config_key="date",
            actual_value=value,
        )
        self.value = value


# ============================================================
# I/O ERRORS
# ============================================================

class TransientIOError(ReconciliationException):
    """Network or database connectivity problem, retryable."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.TRANSIENT


class FactSourceError(TransientIOError):
    """Upstream market-data source failed for one date/period."""

    def __init__(
        self,
        message: str,
        settlement_date: Optional[Any] = None,
        settlement_period: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if settlement_date is not None:
            context["settlement_date"] = str(settlement_date)
        if settlement_period is not None:
            context["settlement_period"] = settlement_period

        super().__init__(message, context=context, **kwargs)


# ============================================================
# DATA ERRORS
# ============================================================

class DataIntegrityError(ReconciliationException):
    """Duplicate or malformed fact. Resolved by deduplication."""

    default_severity = Severity.LOW
    default_classification = ErrorClassification.RECOVERABLE


class CalculationError(ReconciliationException):
    """A calculation model could not produce a value."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        model_variant: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if model_variant:
            context["model_variant"] = model_variant

        super().__init__(message, context=context, **kwargs)


class PartialFailure(ReconciliationException):
    """One key of a batch failed. Recorded and skipped."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(self, key: str, reason: str, **kwargs):
        context = kwargs.pop("context", {})
        context["key"] = key
        super().__init__(f"{key}: {reason}", context=context, **kwargs)
        self.key = key
        self.reason = reason


# ============================================================
# CHECKPOINT ERRORS
# ============================================================

class CheckpointError(ReconciliationException):
    """Checkpoint storage could not be read or written."""

    default_severity = Severity.CRITICAL
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if operation:
            context["operation"] = operation

        super().__init__(message, context=context, **kwargs)


class StateTransitionError(ReconciliationException):
    """Invalid checkpoint state transition."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if from_state:
            context["from_state"] = from_state
        if to_state:
            context["to_state"] = to_state

        super().__init__(message, context=context, **kwargs)


# ============================================================
# UTILITY FUNCTIONS
# ============================================================

def classify_exception(exc: Exception) -> ErrorClassification:
    """Classify an exception for error handling."""
    if isinstance(exc, ReconciliationException):
        return exc.classification

    if isinstance(exc, (ConnectionError, TimeoutError)):
        return ErrorClassification.TRANSIENT

    if isinstance(exc, (SystemExit, KeyboardInterrupt, MemoryError)):
        return ErrorClassification.NON_RECOVERABLE

    return ErrorClassification.RECOVERABLE


def describe_failure(exc: BaseException) -> str:
    """Human-readable one-line reason for checkpoint failure records."""
    if isinstance(exc, ReconciliationException):
        return f"{type(exc).__name__}: {exc.message}"
    return f"{type(exc).__name__}: {exc}"


__all__ = [
    "Severity",
    "ErrorClassification",
    "ReconciliationException",
    "ConfigurationError",
    "InvalidDateError",
    "TransientIOError",
    "FactSourceError",
    "DataIntegrityError",
    "CalculationError",
    "PartialFailure",
    "CheckpointError",
    "StateTransitionError",
    "classify_exception",
    "describe_failure",
]
