"""
Core Module - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the reconciliation engine.

CRITICAL CONSTRAINTS:
- No blind retries
- No infinite loops
- Bounded batch sizes

Values come from dataclass defaults, then environment
variables (a local .env file is loaded first), then CLI flags.

============================================================
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import List
import os

from dotenv import load_dotenv


# ============================================================
# DATABASE CONFIGURATION
# ============================================================

@dataclass
class DatabaseConfig:
    """Relational store connection settings."""

    url: str = "sqlite:///reconciliation.db"
    """SQLAlchemy database URL."""

    echo: bool = False
    """Log SQL statements."""

    pool_size: int = 5
    """Connections kept in pool (ignored for SQLite)."""

    max_overflow: int = 10
    """Connections beyond pool_size (ignored for SQLite)."""

    pool_recycle_seconds: int = 1800
    """Recycle connections after N seconds."""


# ============================================================
# RETRY CONFIGURATION
# ============================================================

@dataclass
class RetryConfig:
    """
    Retry configuration for external calls.

    SAFETY: Limited retries with exponential backoff.
    """

    max_attempts: int = 3
    """Total attempts including the first call."""

    initial_delay_seconds: float = 1.0
    """Delay before the second attempt."""

    max_delay_seconds: float = 30.0
    """Maximum delay between attempts."""

    backoff_multiplier: float = 2.0
    """Exponential backoff multiplier."""


# ============================================================
# BATCH CONFIGURATION
# ============================================================

@dataclass
class BatchConfig:
    """Batch orchestration settings."""

    batch_size: int = 5
    """Dates per batch."""

    batch_delay_seconds: float = 2.0
    """Pause between batches (upstream rate limits)."""

    insert_batch_size: int = 500
    """Derived rows per insert round trip."""

    failure_display_limit: int = 10
    """Failures listed in the final summary before truncation."""


# ============================================================
# CHECKPOINT CONFIGURATION
# ============================================================

@dataclass
class CheckpointConfig:
    """Checkpoint persistence settings."""

    directory: str = "./logs/checkpoints"
    """Directory holding one JSON file per operation name."""

    autosave_seconds: float = 5.0
    """Background persistence interval (0 disables the timer)."""


# ============================================================
# NETWORK CONSTANTS
# ============================================================

@dataclass
class NetworkConfig:
    """Constants shared by every calculation model variant."""

    difficulty: Decimal = Decimal("113757508810853")
    """Network difficulty used when no historical value is supplied."""

    block_reward: Decimal = Decimal("3.125")
    """Coins issued per block."""


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class ReconcilerConfig:
    """Complete engine configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    checkpoint: CheckpointConfig = field(default_factory=CheckpointConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> "ReconcilerConfig":
        """Load configuration from environment variables."""
        load_dotenv()
        return cls(
            database=DatabaseConfig(
                url=os.getenv("DATABASE_URL", DatabaseConfig.url),
                echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
            ),
            retry=RetryConfig(
                max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", "3")),
                initial_delay_seconds=float(os.getenv("RETRY_INITIAL_DELAY_SECONDS", "1.0")),
                max_delay_seconds=float(os.getenv("RETRY_MAX_DELAY_SECONDS", "30.0")),
            ),
            batch=BatchConfig(
                batch_size=int(os.getenv("BATCH_SIZE", "5")),
                batch_delay_seconds=float(os.getenv("BATCH_DELAY_SECONDS", "2.0")),
                insert_batch_size=int(os.getenv("INSERT_BATCH_SIZE", "500")),
            ),
            checkpoint=CheckpointConfig(
                directory=os.getenv("CHECKPOINT_DIR", CheckpointConfig.directory),
                autosave_seconds=float(os.getenv("CHECKPOINT_AUTOSAVE_SECONDS", "5")),
            ),
            network=NetworkConfig(
                difficulty=Decimal(os.getenv("NETWORK_DIFFICULTY", "113757508810853")),
                block_reward=Decimal(os.getenv("BLOCK_REWARD", "3.125")),
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )

    def with_overrides(self, **batch_overrides) -> "ReconcilerConfig":
        """Copy with batch settings replaced (None values ignored)."""
        values = {k: v for k, v in batch_overrides.items() if v is not None}
        if not values:
            return self
        return replace(self, batch=replace(self.batch, **values))

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.batch.batch_size < 1:
            errors.append("batch_size must be at least 1")

        if self.batch.batch_delay_seconds < 0:
            errors.append("batch_delay_seconds must not be negative")

        if self.batch.insert_batch_size < 1:
            errors.append("insert_batch_size must be at least 1")

        if self.retry.max_attempts < 1:
            errors.append("retry max_attempts must be at least 1")

        if self.retry.initial_delay_seconds < 0 or self.retry.max_delay_seconds < 0:
            errors.append("retry delays must not be negative")

        if self.checkpoint.autosave_seconds < 0:
            errors.append("checkpoint autosave_seconds must not be negative")

        if self.network.difficulty <= 0:
            errors.append("network difficulty must be positive")

        return errors


__all__ = [
    "DatabaseConfig",
    "RetryConfig",
    "BatchConfig",
    "CheckpointConfig",
    "NetworkConfig",
    "ReconcilerConfig",
]
