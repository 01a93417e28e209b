"""
Shared fixtures.

Every test gets its own in-memory SQLite database, a mock clock
and the default reference data (three model variants).
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional, Tuple

import pytest

from core.clock import MockClock
from core.config import DatabaseConfig
from core.reference_data import ReferenceData
from storage.database import Database
from storage.repositories import DerivedRepository, DerivedRow, FactIngestRow, FactRepository


FactRow = Tuple[int, str, Optional[Decimal]]


@pytest.fixture
def database():
    """Fresh in-memory database with all tables created."""
    db = Database(DatabaseConfig(url="sqlite+pysqlite:///:memory:"))
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def clock():
    return MockClock(datetime(2025, 3, 22, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def reference():
    return ReferenceData.build()


@pytest.fixture
def seed_facts(database):
    """
    Insert facts for a date.

    Each row is (period, entity_id, quantity); payment is
    quantity x 50 so summaries have something to sum.
    """
    def seed(day: date, facts: Iterable[FactRow]) -> int:
        rows = [
            FactIngestRow(
                settlement_date=day,
                settlement_period=period,
                entity_id=entity,
                quantity=quantity,
                unit_price=Decimal("50"),
                derived_payment=abs(quantity) * 50 if quantity is not None else None,
            )
            for period, entity, quantity in facts
        ]
        with database.transaction_scope() as session:
            return FactRepository(session).insert_facts(rows)

    return seed


@pytest.fixture
def seed_derived(database, clock):
    """Insert derived rows for (date, variant) with a fixed value."""
    def seed(day: date, variant: str, keys: Iterable[Tuple[int, str]]) -> int:
        rows = [
            DerivedRow(
                settlement_date=day,
                settlement_period=period,
                entity_id=entity,
                model_variant=variant,
                value=Decimal("0.001"),
                computed_at=clock.now(),
            )
            for period, entity in keys
        ]
        with database.transaction_scope() as session:
            return DerivedRepository(session).insert_rows(rows)

    return seed
