"""
Module: billing_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  Single point of database connection
    configuration for the whole system.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/, selectors/ or domain/ (create_tables imports the
    model packages lazily so their tables are registered).

Invariants enforced:
    - PostgreSQL: READ COMMITTED with explicit row locks (``FOR UPDATE``) on
      the document counter row.
    - SQLite: every transaction starts with ``BEGIN IMMEDIATE``.  SQLite has
      no row locks, so the database write lock taken at BEGIN is the
      substitute for ``FOR UPDATE``: writers are serialized for the whole
      transaction and a counter read is never stale.  The pysqlite driver's
      own transaction handling is disabled so that SAVEPOINT works.
    - Transient store conflicts (SQLite "database is locked", PostgreSQL
      40001/40P01) are retried by ``run_in_transaction`` and never surfaced.

Failure modes:
    - RuntimeError if get_engine/get_session_factory are called
      before init_engine_from_url().
    - OperationalError once ``max_attempts`` transient failures are exhausted.
"""

import atexit
import time
from contextlib import contextmanager
from typing import Callable, Generator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from billing_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

T = TypeVar("T")

# Module-level engine and session factory
_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

# PostgreSQL SQLSTATEs that mean "run the transaction again"
_RETRYABLE_PGCODES = frozenset({"40001", "40P01"})


def _install_sqlite_transaction_mode(engine: Engine) -> None:
    """Take the database write lock at BEGIN (SQLite stand-in for FOR UPDATE)."""

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """
    Create an engine configured for the billing kernel's locking model.

    Does not touch module-level state; tests use this directly.

    Args:
        database_url: PostgreSQL or SQLite URL.
        echo: If True, log all SQL statements.
        pool_size: PostgreSQL pool size.
        max_overflow: PostgreSQL connections beyond pool_size.
        pool_pre_ping: Test PostgreSQL connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.
        sqlite_busy_timeout: Seconds a SQLite writer waits for the write lock.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"timeout": sqlite_busy_timeout, "check_same_thread": False},
        )
        _install_sqlite_transaction_mode(engine)
        return engine

    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory with the kernel's conventions (no expiry on commit)."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_engine_from_url(database_url: str, echo: bool = False, **kwargs) -> Engine:
    """
    Initialize the module-level engine and session factory.

    Postconditions: subsequent get_engine/get_session_factory calls use this engine.
        A second call replaces the first.
    """
    global _engine, _SessionFactory

    _engine = build_engine(database_url, echo=echo, **kwargs)
    _SessionFactory = build_session_factory(_engine)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    """
    Get the current engine instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory (one session per unit of work / thread).

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope(
    session_factory: Callable[[], Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit the session is committed and closed.
        On exception it is rolled back and closed, and the exception is
        re-raised.

    Usage:
        with session_scope() as session:
            lifecycle = DocumentLifecycleService(session, tenant)
            lifecycle.emit_document(document_id)
    """
    session = (session_factory or get_session_factory())()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def is_transient_error(exc: BaseException) -> bool:
    """True when the store asks for the whole transaction to be retried."""
    if not isinstance(exc, DBAPIError):
        return False
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode in _RETRYABLE_PGCODES:
        return True
    if isinstance(exc, OperationalError):
        message = str(exc.orig).lower()
        return "database is locked" in message or "deadlock" in message
    return False


def run_in_transaction(
    work: Callable[[Session], T],
    session_factory: Callable[[], Session] | None = None,
    max_attempts: int = 3,
    backoff_seconds: float = 0.05,
) -> T:
    """
    Run ``work(session)`` in its own transaction, retrying on store conflicts.

    The whole unit of work is re-executed on retry, so ``work`` must not have
    side effects outside the session.  Non-transient errors propagate on the
    first attempt.
    """
    attempt = 1
    while True:
        try:
            with session_scope(session_factory) as session:
                return work(session)
        except DBAPIError as exc:
            if not is_transient_error(exc) or attempt >= max_attempts:
                raise
            logger.warning(
                "transaction_retry",
                extra={"attempt": attempt, "max_attempts": max_attempts},
            )
            time.sleep(backoff_seconds * attempt)
            attempt += 1


def create_tables(engine: Engine | None = None) -> None:
    """
    Create every table registered on Base.metadata.

    Kernel models are imported here.  Outer packages (billing_recurring)
    must import their model modules before calling.
    """
    from billing_kernel.db.base import Base
    import billing_kernel.models  # noqa: F401

    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from billing_kernel.db.base import Base
    import billing_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine or get_engine())


def _atexit_dispose():
    """Dispose the engine on process exit to release pooled connections."""
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)
