"""
Network Reference ORM Models.

============================================================
PURPOSE
============================================================
Historical network difficulty, one row per settlement date.
Loaded by an external job; the recalculation engine only reads
it. Dates without a row fall back to the configured default.

============================================================
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, Numeric, func
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base


class NetworkDifficulty(Base):
    """Network difficulty in effect on a settlement date."""

    __tablename__ = "network_difficulty"

    difficulty_date: Mapped[date] = mapped_column(Date, primary_key=True)

    difficulty: Mapped[Decimal] = mapped_column(
        Numeric(30, 4),
        nullable=False,
        comment="Mining difficulty reported for the date"
    )

    recorded_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<NetworkDifficulty(date={self.difficulty_date}, difficulty={self.difficulty})>"
