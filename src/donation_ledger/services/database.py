"""
Database connection and session management for the donation ledger.

This module provides:
- Database engine creation and configuration
- Session factory for database operations
- session_scope() for ordinary transactions
- ledger_scope() for locked read-validate-write transactions
- Database initialization (create tables)
- SQLite pragmas (WAL mode, foreign key enforcement)

Ledger writes must not interleave: two batches validated against the same
stale remaining stock would jointly oversell it. On SQLite, ledger_scope()
opens its transaction with BEGIN IMMEDIATE, which takes the database write
lock before the stock check and holds it until commit. On other backends the
services lock the targeted donation rows with SELECT ... FOR UPDATE via
lock_for_update(). Waiting for either lock is bounded by Config.lock_timeout;
a timeout surfaces as ConcurrencyConflict.
"""

import logging
import sqlite3
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, Optional, TypeVar

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, close_all_sessions, sessionmaker
from sqlalchemy.pool import StaticPool

from ..models.base import Base
from ..utils.config import get_config
from .exceptions import ConcurrencyConflict, DatabaseError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Execution option marking a connection whose transaction must take the write lock
LEDGER_WRITE_OPTION = "ledger_write"

# PostgreSQL SQLSTATEs for serialization failure, deadlock and lock timeout
_CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}
_CONFLICT_MESSAGES = (
    "database is locked",
    "database table is locked",
    "deadlock",
    "could not serialize",
    "could not obtain lock",
    "lock not available",
    "lock timeout",
)

# Global engine and session factory
_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """
    Configure every new SQLite connection.

    Disables the driver's implicit BEGIN so _begin_sqlite_transaction decides
    between BEGIN and BEGIN IMMEDIATE, enables foreign keys and sets WAL mode
    so readers never block the ledger writer.
    """
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return

    dbapi_connection.isolation_level = None

    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


@event.listens_for(Engine, "begin")
def _begin_sqlite_transaction(conn):
    """Emit BEGIN for SQLite, taking the write lock up front for ledger writes."""
    if conn.dialect.name != "sqlite":
        return
    if conn.get_execution_options().get(LEDGER_WRITE_OPTION):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
    else:
        conn.exec_driver_sql("BEGIN")


def create_database_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
    lock_timeout: Optional[float] = None,
) -> Engine:
    """
    Create and configure the database engine.

    Args:
        database_url: Optional database URL. If None, uses config default.
        echo: If True, log all SQL statements
        lock_timeout: Seconds to wait for a write lock. If None, uses config.

    Returns:
        Configured SQLAlchemy Engine
    """
    config = get_config()
    if database_url is None:
        config.ensure_directories()
        database_url = config.database_url
    if lock_timeout is None:
        lock_timeout = config.lock_timeout

    logger.info(f"Creating database engine: {database_url}")

    if ":memory:" in database_url or "mode=memory" in database_url:
        # In-memory databases (testing) share a single connection
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": lock_timeout},
        )
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def init_database(engine: Optional[Engine] = None) -> None:
    """
    Initialize the database by creating all tables.

    Safe to call multiple times - existing tables won't be recreated.

    Args:
        engine: Optional engine to use. If None, uses global engine.
    """
    if engine is None:
        engine = get_engine()

    logger.info("Initializing database tables")

    # Import all models so they are registered with Base
    from .. import models  # noqa: F401

    Base.metadata.create_all(engine)

    logger.info("Database tables initialized successfully")


def get_engine(force_recreate: bool = False) -> Engine:
    """
    Get the global database engine.

    Args:
        force_recreate: If True, recreate the engine even if one exists

    Returns:
        Database engine
    """
    global _engine

    if _engine is None or force_recreate:
        _engine = create_database_engine()

    return _engine


def get_session_factory() -> sessionmaker:
    """Get the global session factory."""
    global _SessionFactory

    if _SessionFactory is None:
        engine = get_engine()
        _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)

    return _SessionFactory


def get_session() -> Session:
    """Create a new database session."""
    session_factory = get_session_factory()
    return session_factory()


@contextmanager
def session_scope():
    """
    Provide a transactional scope for database operations.

    - Creates a new session
    - Commits on success
    - Rolls back on exception
    - Always closes the session

    Yields:
        Database session

    Example:
        with session_scope() as session:
            location = Location(name="North Hall")
            session.add(location)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def ledger_scope():
    """
    Provide a locked transactional scope for ledger writes.

    Like session_scope(), but the transaction takes the write lock before the
    first statement (BEGIN IMMEDIATE on SQLite; a bounded lock_timeout on
    PostgreSQL for the row locks taken with lock_for_update()). Any exception
    rolls back every pending write of the call.

    Yields:
        Database session

    Raises:
        ConcurrencyConflict: If the lock could not be acquired in time or the
            database reported a serialization failure or deadlock
        DatabaseError: For other operational database failures
    """
    session = get_session()
    try:
        connection = session.connection(execution_options={LEDGER_WRITE_OPTION: True})
        if connection.dialect.name == "postgresql":
            timeout_ms = int(get_config().lock_timeout * 1000)
            session.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))
        yield session
        session.commit()
    except OperationalError as e:
        session.rollback()
        if is_lock_conflict(e):
            raise ConcurrencyConflict(original_error=e) from e
        raise DatabaseError(str(e), original_error=e) from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def is_lock_conflict(error: OperationalError) -> bool:
    """Return True if ``error`` is a lock timeout, deadlock or serialization failure."""
    sqlstate = getattr(error.orig, "pgcode", None) or getattr(error.orig, "sqlstate", None)
    if sqlstate in _CONFLICT_SQLSTATES:
        return True
    message = str(error.orig).lower()
    return any(marker in message for marker in _CONFLICT_MESSAGES)


def lock_for_update(session: Session, model, ids: Iterable[int]) -> Dict[int, object]:
    """
    Load rows by id and lock them until the transaction ends.

    Rows are locked in ascending id order so concurrent callers touching
    overlapping sets cannot deadlock. On SQLite the FOR UPDATE clause is
    omitted; ledger_scope() already holds the database write lock.

    Args:
        session: Session inside ledger_scope()
        model: Mapped class to load
        ids: Primary keys to lock

    Returns:
        Dict mapping id -> loaded instance (missing ids are absent)
    """
    wanted = sorted(set(ids))
    if not wanted:
        return {}
    rows = (
        session.query(model)
        .filter(model.id.in_(wanted))
        .order_by(model.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    return {row.id: row for row in rows}


def retry_on_conflict(operation: Callable[[], T], attempts: Optional[int] = None) -> T:
    """
    Run a ledger operation, re-running it from scratch on ConcurrencyConflict.

    Each attempt is a complete call: validation runs again against fresh
    stock, so a retry can still fail with InsufficientStock.

    Args:
        operation: Zero-argument callable performing one whole ledger call
        attempts: Maximum attempts. If None, uses Config.conflict_retries.

    Returns:
        Whatever ``operation`` returns

    Raises:
        ConcurrencyConflict: If every attempt conflicted
    """
    if attempts is None:
        attempts = get_config().conflict_retries
    attempts = max(1, attempts)

    attempt = 1
    while True:
        try:
            return operation()
        except ConcurrencyConflict:
            if attempt >= attempts:
                raise
            logger.warning(f"Ledger write conflicted (attempt {attempt}/{attempts}); retrying")
            attempt += 1


def database_exists() -> bool:
    """Check if the SQLite database file exists."""
    return get_config().database_exists()


def verify_database() -> bool:
    """
    Verify that the database is accessible and has the ledger tables.

    Returns:
        True if database is valid, False otherwise
    """
    try:
        engine = get_engine()
        tables = inspect(engine).get_table_names()
        expected_tables = ["donations", "consumption_records", "recipient_assignments"]
        return all(table in tables for table in expected_tables)
    except Exception as e:
        logger.error(f"Database verification failed: {e}")
        return False


def reset_database(confirm: bool = False) -> None:
    """
    Drop all tables and recreate the database.

    WARNING: This will delete all data!

    Args:
        confirm: Must be True to actually reset. Safety check.

    Raises:
        ValueError: If confirm is not True
    """
    if not confirm:
        raise ValueError("Must pass confirm=True to reset database. This will delete all data!")

    logger.warning("RESETTING DATABASE - ALL DATA WILL BE LOST")

    engine = get_engine()

    from .. import models  # noqa: F401

    Base.metadata.drop_all(engine)
    logger.info("All tables dropped")

    Base.metadata.create_all(engine)
    logger.info("Tables recreated")


def close_connections() -> None:
    """Close all sessions and dispose of the global engine."""
    global _engine, _SessionFactory

    if _SessionFactory is not None:
        close_all_sessions()
        _SessionFactory = None

    if _engine is not None:
        _engine.dispose()
        _engine = None

    logger.info("Database connections closed")


def initialize_app_database() -> None:
    """
    Initialize the application database.

    Creates the database file and tables if they don't exist.
    """
    config = get_config()

    if config.database_exists():
        logger.info(f"Using existing database at: {config.database_url}")
    else:
        logger.info(f"Creating new database at: {config.database_url}")

    engine = get_engine()
    init_database(engine)

    if verify_database():
        logger.info("Database initialized and verified successfully")
    else:
        logger.warning("Database verification failed - tables may not exist")
