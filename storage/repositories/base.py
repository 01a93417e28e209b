"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Shared plumbing for the fact, derived and summary
repositories:
- Session injection
- SQLAlchemy error translation
- Statement execution helpers

============================================================
USAGE
============================================================
Repositories flush but never commit. The caller owns the
transaction (Database.transaction_scope()), so a date's
delete-then-insert either lands whole or not at all.

============================================================
"""

import logging
from abc import ABC
from contextlib import contextmanager
from typing import Any, Generic, Iterator, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.engine import Row
from sqlalchemy.exc import (
    IntegrityError as SQLAlchemyIntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session

from storage.models.base import Base
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
)


ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(ABC, Generic[ModelT]):
    """
    Common base for settlement repositories.

    Subclasses decode result rows into the frozen structs in
    storage.repositories.types before handing them out; ORM
    rows never leave the repository.
    """

    def __init__(self, session: Session, model: Type[ModelT], name: str) -> None:
        self._session = session
        self._model = model
        self._repository_name = name
        self._logger = logging.getLogger(f"repository.{name}")

    # =========================================================
    # ERROR TRANSLATION
    # =========================================================

    def _handle_db_error(
        self,
        error: SQLAlchemyError,
        operation: str,
        context: Optional[dict] = None
    ) -> None:
        """
        Re-raise a SQLAlchemy error as a repository exception.

        OperationalError means the store is unreachable and maps to
        the fatal ConnectionError. Unique violations map to
        DuplicateRecordError, other constraint failures to
        IntegrityError, anything else to QueryError.
        """
        table = self._model.__tablename__
        self._logger.error(
            f"Database error in {operation} on {table}: {error}",
            extra={"context": context or {}},
            exc_info=True
        )
        original = str(getattr(error, "orig", None) or error)

        if isinstance(error, OperationalError):
            raise ConnectionError(self._repository_name, operation, original) from error

        if isinstance(error, SQLAlchemyIntegrityError):
            lowered = original.lower()
            if "unique" in lowered or "duplicate" in lowered:
                raise DuplicateRecordError(self._repository_name, operation, table, original) from error
            raise IntegrityError(self._repository_name, operation, table, original) from error

        raise QueryError(self._repository_name, operation, original) from error

    @contextmanager
    def _guard(self, operation: str, **context: Any) -> Iterator[Session]:
        try:
            yield self._session
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation, context)

    # =========================================================
    # EXECUTION HELPERS
    # =========================================================

    def _add_all(self, entities: Sequence[ModelT], operation: str = "add_all") -> int:
        """Add entities and flush; returns how many were added."""
        if not entities:
            return 0
        with self._guard(operation, count=len(entities)) as session:
            session.add_all(entities)
            session.flush()
        self._logger.debug(f"Added {len(entities)} {self._model.__name__} rows")
        return len(entities)

    def _execute_rows(self, stmt: Any, operation: str) -> List[Row]:
        with self._guard(operation) as session:
            return list(session.execute(stmt).all())

    def _execute_value(self, stmt: Any, operation: str) -> Any:
        with self._guard(operation) as session:
            return session.execute(stmt).scalar()

    def _execute_write(self, stmt: Any, operation: str) -> int:
        """Run an insert/update/delete and flush. Returns affected rows."""
        with self._guard(operation) as session:
            result = session.execute(stmt)
            session.flush()
            return result.rowcount or 0

    def _count(self, *conditions: Any) -> int:
        stmt = select(func.count()).select_from(self._model)
        if conditions:
            stmt = stmt.where(*conditions)
        return int(self._execute_value(stmt, "count") or 0)
