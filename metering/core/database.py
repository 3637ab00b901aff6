"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Ledger table definitions (usage records, credit accounts, credit ledger)
- Translation of infrastructure failures into StorageUnavailableError

Usage and credit rows are only ever mutated by single-statement atomic
primitives (upsert-and-add, conditional UPDATE ... RETURNING) inside a
transaction. On SQLite every transaction is opened with BEGIN IMMEDIATE so
writers are serialized; on PostgreSQL the UPDATE row locks serialize them.
"""
from typing import Optional, Iterator
from contextlib import contextmanager
import logging
import os

from sqlalchemy import (
    create_engine,
    event,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    DateTime,
    Index,
    UniqueConstraint,
    CheckConstraint,
    text,
)
from sqlalchemy.exc import InterfaceError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func

from metering.core.config import settings
from metering.core.errors import StorageUnavailableError
from metering.core.metrics import storage_errors_total


logger = logging.getLogger(__name__)

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Failures that mean "the store could not be reached or could not finish";
# integrity violations are bugs and propagate unchanged.
TRANSIENT_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def _install_sqlite_locking(engine) -> None:
    """Make every SQLite transaction take the write lock up front."""

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        # pysqlite's own BEGIN handling would defer the lock
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if _engine is not None:
        _engine.dispose()

    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": settings.SQLITE_BUSY_TIMEOUT}
        if ":memory:" in url:
            # Single shared connection; suitable for single-threaded use only
            _engine = create_engine(url, poolclass=StaticPool, connect_args=connect_args)
        else:
            _engine = create_engine(url, connect_args=connect_args)
        _install_sqlite_locking(_engine)
    else:
        # Create engine with connection pooling
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
            pool_pre_ping=True,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    logger.info("Database engine initialized", extra={"dialect": _engine.dialect.name})
    return _engine


def dispose_engine() -> None:
    """Dispose of the current engine (tests and shutdown)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session(operation: str = "session") -> Iterator[Session]:
    """
    Context manager for a single all-or-nothing transaction.

    Commits on success and rolls back on any exception. Transient
    infrastructure failures are re-raised as StorageUnavailableError once
    the rollback is done.

    Usage:
        with get_db_session("authorize") as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except TRANSIENT_ERRORS as exc:
        session.rollback()
        storage_errors_total.inc({"operation": operation})
        logger.error(
            "[storage] transaction rolled back",
            extra={"operation": operation, "error": type(exc).__name__},
        )
        raise StorageUnavailableError(
            f"Ledger storage unavailable during {operation}",
            operation=operation,
            cause=exc,
        ) from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def use_session(session: Optional[Session] = None, operation: str = "session") -> Iterator[Session]:
    """Join the caller's transaction if one is given, else open a new one."""
    if session is not None:
        yield session
        return
    with get_db_session(operation) as own_session:
        yield own_session


def dialect_insert(session: Session, table: Table):
    """Dialect-specific INSERT supporting ON CONFLICT clauses."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Atomic upserts are not implemented for {dialect}")
    return insert(table)


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database connection check failed", extra={"error": str(e)})
        return False


# Subscriptions delivered by the billing collaborator (read-only to the engine)
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('tier', String(50), nullable=False),
    Column('billing_interval', String(20), nullable=False),
    Column('status', String(20), nullable=False, server_default='active'),
    Column('period_start', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_subscriptions_tier', 'tier'),
)

# Usage ledger: one live row per (user, feature, period_key)
usage_records = Table(
    'usage_records',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('feature', String(100), nullable=False),
    Column('period_key', Integer, nullable=False),
    Column('used', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', 'feature', 'period_key', name='uq_usage_records_user_feature_period'),
    CheckConstraint('used >= 0', name='ck_usage_records_used_non_negative'),
    # History lookups: (user_id, feature) ordered by period
    Index('idx_usage_records_user_feature', 'user_id', 'feature'),
)

# Credit accounts: balance is a cached sum of credit_ledger deltas
credit_accounts = Table(
    'credit_accounts',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('balance', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    CheckConstraint('balance >= 0', name='ck_credit_accounts_balance_non_negative'),
)

# Append-only credit ledger
credit_ledger = Table(
    'credit_ledger',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('delta', Integer, nullable=False),
    Column('reason', String(50), nullable=False),
    Column('related_feature', String(100), nullable=True),
    Column('balance_after', Integer, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    CheckConstraint('delta <> 0', name='ck_credit_ledger_delta_non_zero'),
    # Replay in insertion order per user
    Index('idx_credit_ledger_user_id', 'user_id', 'id'),
    Index('idx_credit_ledger_reason', 'reason'),
)
