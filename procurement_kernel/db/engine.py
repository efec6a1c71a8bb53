"""
Module: procurement_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    transactional scope, and translation of store failures into retryable
    TransactionError subclasses.  Single point of database connection
    configuration for the system.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/ or outer layers (except create_tables, which loads
    the module ORM registry so Base.metadata sees every table).

Invariants enforced:
    - PostgreSQL is the production backend: READ COMMITTED isolation plus
      explicit row locks (SELECT ... FOR UPDATE) on every mutated aggregate.
    - SQLite is accepted for local runs and tests; a single shared in-memory
      connection (StaticPool) keeps every session on the same database.
    - Store failures surface as TransactionError, never as domain errors.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory is called
      before init_engine_from_url().
    - StoreUnavailableError / SerializationConflictError out of session_scope()
      and translate_store_errors().
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from procurement_kernel.exceptions import (
    SerializationConflictError,
    StoreUnavailableError,
    TransactionError,
)
from procurement_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

# SQLSTATE classes that mean "another transaction got in the way"
_CONFLICT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Initialize the SQLAlchemy engine from a database URL.

    Postconditions: Module-level _engine and _SessionFactory are initialized.
        A second call overwrites the first.

    Args:
        database_url: postgresql:// URL in production, sqlite:// for tests.
        echo: If True, log all SQL statements.
        pool_size: Number of connections to keep in the pool (PostgreSQL).
        max_overflow: Max connections beyond pool_size (PostgreSQL).
        pool_pre_ping: Test connections before use (PostgreSQL).
        pool_timeout: Seconds to wait for a pooled connection (PostgreSQL).
        pool_recycle: Seconds after which a connection is recycled (PostgreSQL).
    """
    global _engine, _SessionFactory

    if database_url.startswith("sqlite"):
        _engine = create_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        _engine = create_engine(
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

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
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


def get_session() -> Session:
    """Get a new session instance."""
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory for creating sessions.

    Useful for multi-threaded scenarios where each thread needs its own session.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def classify_store_error(operation: str, exc: DBAPIError) -> TransactionError:
    """
    Map a driver-level failure to the retryable TransactionError taxonomy.

    Serialization failures, deadlocks and lock timeouts become
    SerializationConflictError; everything else (connection refused, dropped
    connection, disk full) becomes StoreUnavailableError.
    """
    sqlstate = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    message = str(exc.orig) if exc.orig is not None else str(exc)
    if sqlstate in _CONFLICT_SQLSTATES or "deadlock" in message.lower():
        return SerializationConflictError(operation, message)
    if isinstance(exc, OperationalError) and "locked" in message.lower():
        return SerializationConflictError(operation, message)
    return StoreUnavailableError(operation, message)


@contextmanager
def translate_store_errors(operation: str) -> Generator[None, None, None]:
    """
    Re-raise SQLAlchemy operational/driver errors as TransactionError.

    IntegrityError is a DBAPIError too but signals a broken invariant, not a
    transient failure, so it propagates unchanged.
    """
    from sqlalchemy.exc import IntegrityError

    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as exc:
        error = classify_store_error(operation, exc)
        logger.warning(
            "store_error_translated",
            extra={"operation": operation, "error_code": error.code},
        )
        raise error from exc


@contextmanager
def session_scope(operation: str = "session_scope") -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed.  Store failures are
        re-raised as TransactionError; domain errors propagate unchanged.

    Usage:
        with session_scope() as session:
            session.add(entity)
    """
    session = get_session()
    logger.debug("transaction_started", extra={"operation": operation})
    try:
        with translate_store_errors(operation):
            yield session
            session.commit()
        logger.debug("transaction_committed", extra={"operation": operation})
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", extra={"operation": operation}, exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """
    Create all tables defined by the kernel and module ORM models.

    Preconditions: Engine must be initialized via init_engine_from_url().
    """
    from procurement_kernel.db.base import Base
    from procurement_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from procurement_kernel.db.base import Base
    from procurement_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Reset the engine and session factory. Useful for test cleanup."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose() -> None:
    """Dispose the engine on process exit to release all pooled connections."""
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)
