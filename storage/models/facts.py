"""
Source Fact ORM Model.

============================================================
PURPOSE
============================================================
Curtailment records as ingested from the market-data source:
one row per (settlement date, settlement period, wind farm).

============================================================
DATA LIFECYCLE ROLE
============================================================
- Stage: RAW
- Mutability: replaced per (date, period) on re-ingestion
- Source: Market-data fetch client
- Consumers: Gap finder, deduplicator, recalculation engine

The natural key (settlement_date, settlement_period, entity_id)
is deliberately NOT unique: re-ingestion can create duplicates,
which the deduplicator removes.

============================================================
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base


class SourceFact(Base):
    """
    One curtailment record.

    quantity is curtailed volume in MWh for one 30-minute period.
    The source reports curtailment with a negative sign; consumers
    work with magnitudes.
    """

    __tablename__ = "source_facts"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        comment="Ingestion order; lowest id of a duplicate group is canonical"
    )

    settlement_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="Settlement day"
    )

    settlement_period: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Half-hour interval 1..48"
    )

    entity_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Wind farm (BM unit) identifier"
    )

    lead_party_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Operator of the unit"
    )

    quantity: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(18, 6),
        nullable=True,
        comment="Curtailed volume (MWh), signed as reported"
    )

    unit_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(18, 6),
        nullable=True,
        comment="Offer price per MWh"
    )

    derived_payment: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(20, 6),
        nullable=True,
        comment="Payment for the curtailed volume"
    )

    so_flag: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="System operator flag"
    )

    cadl_flag: Mapped[Optional[bool]] = mapped_column(
        Boolean,
        nullable=True,
        comment="Continuous acceptance duration limit flag"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Ingestion timestamp"
    )

    __table_args__ = (
        Index(
            "ix_source_facts_natural_key",
            "settlement_date",
            "settlement_period",
            "entity_id",
        ),
        {"comment": "Curtailment records per settlement period and wind farm"},
    )

    def __repr__(self) -> str:
        return (
            f"<SourceFact(id={self.id}, date={self.settlement_date}, "
            f"period={self.settlement_period}, entity={self.entity_id})>"
        )
