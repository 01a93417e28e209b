"""
Stored difficulty history.

Reads the network_difficulty table, one short session per
lookup. An unreachable store propagates as the repository
ConnectionError, like every other store read of a date.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from core.reference_data import DifficultySource
from storage.database import Database
from storage.repositories import DifficultyRepository


class StoredDifficultySource(DifficultySource):
    """DifficultySource backed by the reconciliation store."""

    def __init__(self, database: Database):
        self._database = database

    def difficulty_for(self, settlement_date: date) -> Optional[Decimal]:
        with self._database.session() as session:
            return DifficultyRepository(session).get(settlement_date)
