"""
Database Connection Management.

============================================================
PURPOSE
============================================================
Owns the SQLAlchemy engine and session factory for the
reconciliation store.

- Explicit transaction management
- Hard failures on persistence errors
- Engine and sessions are instance state, never module globals

SQLite in-memory URLs share one connection (StaticPool) so
that every session of a test sees the same database.

============================================================
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from core.config import DatabaseConfig
from storage.models.base import Base
from storage.repositories.exceptions import ConnectionError, TransactionError


logger = logging.getLogger(__name__)


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _is_memory_sqlite(url: str) -> bool:
    return _is_sqlite(url) and (":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"))


def _engine_options(config: DatabaseConfig) -> Dict[str, Any]:
    if _is_memory_sqlite(config.url):
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    if _is_sqlite(config.url):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": config.pool_size,
        "max_overflow": config.max_overflow,
        "pool_recycle": config.pool_recycle_seconds,
        "pool_pre_ping": True,
    }


class Database:
    """
    Engine plus session factory.

    Usage:
        db = Database(DatabaseConfig(url="sqlite:///reconciliation.db"))
        db.create_all()
        with db.transaction_scope() as session:
            FactRepository(session).insert_facts(rows)
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self._config = config or DatabaseConfig()
        self._engine = self._create_engine()
        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    def _create_engine(self) -> Engine:
        logger.info(f"Creating database engine for: {self.display_url}")
        engine = create_engine(
            self._config.url,
            echo=self._config.echo,
            **_engine_options(self._config),
        )

        @event.listens_for(engine, "connect")
        def on_connect(dbapi_conn, connection_record):
            logger.debug("Database connection established")

        return engine

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def display_url(self) -> str:
        """URL without credentials."""
        return self._config.url.split("@")[-1]

    # =========================================================
    # SCHEMA
    # =========================================================

    def create_all(self) -> None:
        """
        Create all tables defined in ORM models.

        Raises:
            ConnectionError: If the database cannot be reached
        """
        import storage.models  # noqa: F401

        try:
            Base.metadata.create_all(bind=self._engine)
            logger.debug("Database tables created")
        except OperationalError as e:
            logger.error(f"Failed to create database tables: {e}")
            raise ConnectionError(
                repository_name="Database",
                operation="create_all",
                original_error=str(e),
            ) from e

    def verify_connection(self) -> bool:
        """
        Raises:
            ConnectionError: If the database cannot be reached
        """
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            return True
        except OperationalError as e:
            logger.error(f"Database connection failed: {e}")
            raise ConnectionError(
                repository_name="Database",
                operation="verify_connection",
                original_error=str(e),
            ) from e

    def dispose(self) -> None:
        self._engine.dispose()

    # =========================================================
    # SESSION MANAGEMENT
    # =========================================================

    def new_session(self) -> Session:
        """
        Get a new database session.

        IMPORTANT: Caller is responsible for committing/closing.
        Prefer session() or transaction_scope().
        """
        return self._session_factory()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Session with automatic rollback on error and cleanup.

        The caller commits explicitly.
        """
        session = self.new_session()
        try:
            yield session
        except Exception as e:
            logger.error(f"Error in database session, rolling back: {e}")
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def transaction_scope(self) -> Generator[Session, None, None]:
        """
        Explicit transaction boundary.

        Commits only if no exception occurs and rolls back on any
        exception. Engine errors raised by commit itself become
        TransactionError; everything else propagates unchanged.
        """
        session = self.new_session()
        try:
            yield session
            try:
                session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Database transaction failed, rolling back: {e}")
                session.rollback()
                raise TransactionError(
                    repository_name="Database",
                    operation="transaction",
                    phase="commit",
                    original_error=str(e),
                ) from e
            logger.debug("Database transaction committed")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


__all__ = ["Database"]
