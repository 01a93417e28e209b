"""
Declarative Base for the Reconciliation Store.

Base maps annotated Python types to column types once, so
models only spell out what differs (precision, keys, comments).
RefreshedAtMixin stamps tables that are rebuilt in place by the
recalculation engine.
"""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import JSON, DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """`Base.metadata.create_all()` builds the full schema."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
        Dict[str, Any]: JSON,
    }


class RefreshedAtMixin:
    """When a derived summary row was last rewritten (UTC)."""

    refreshed_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
