"""
Network Difficulty Repository.

Per-date difficulty lookups for the recalculation engine, and
the upsert used by whatever job loads the history.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storage.models.network import NetworkDifficulty
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import ValidationError
from storage.repositories.types import to_decimal


class DifficultyRepository(BaseRepository[NetworkDifficulty]):
    """Repository for historical network difficulty."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, NetworkDifficulty, "DifficultyRepository")

    def get(self, difficulty_date: date) -> Optional[Decimal]:
        """Difficulty stored for exactly this date, or None."""
        try:
            row = self._session.get(NetworkDifficulty, difficulty_date)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get", {"date": str(difficulty_date)})
            raise
        if row is None:
            return None
        return to_decimal(row.difficulty)

    def upsert(self, difficulty_date: date, difficulty: Decimal) -> None:
        """
        Raises:
            ValidationError: If difficulty is not a positive number
        """
        if not difficulty.is_finite() or difficulty <= 0:
            raise ValidationError(
                self._repository_name, "upsert", "difficulty", f"must be positive, got {difficulty}"
            )
        try:
            row = self._session.get(NetworkDifficulty, difficulty_date)
            if row is None:
                row = NetworkDifficulty(difficulty_date=difficulty_date)
                self._session.add(row)
            row.difficulty = difficulty
            self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "upsert", {"date": str(difficulty_date)})
            raise
