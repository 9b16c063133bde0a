"""
Module: costing_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management
    and transactional scope utilities.  Single point of database connection
    configuration for the system.
Architecture position: Kernel > DB.  May import from db/base.py and
    db/guards.py.  MUST NOT import from services/ or outer layers; the
    job table is registered by importing costing_batch.models.

Invariants enforced:
    - PostgreSQL in production (READ COMMITTED plus SELECT ... FOR UPDATE on
      the period row for the trigger's check-and-write).  SQLite is accepted
      for tests; row locks are then no-ops.
    - session_scope() gives atomic commit-or-rollback semantics; the pipeline
      relies on this for all-or-nothing allocation.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory is called
      before init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from costing_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
) -> Engine:
    """
    Initialize the SQLAlchemy engine from a database URL.

    Postconditions: Module-level engine and session factory are initialized
        and ORM write guards are registered.

    Args:
        database_url: PostgreSQL URL, or a sqlite URL for tests.
        echo: If True, log all SQL statements.
        pool_size: Connections kept in the pool (PostgreSQL only).
        max_overflow: Extra connections beyond pool_size (PostgreSQL only).
        pool_pre_ping: Test connections before use.
    """
    global _engine, _SessionFactory

    if database_url.startswith("sqlite"):
        _engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )
        dialect = "sqlite"
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            isolation_level="READ COMMITTED",
        )
        dialect = _engine.dialect.name

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    from costing_kernel.db.guards import register_write_guards

    register_write_guards()

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": dialect, "echo": echo},
    )
    return _engine


def _not_initialized() -> RuntimeError:
    return RuntimeError("Engine not initialized. Call init_engine_from_url() first.")


def get_engine() -> Engine:
    """The process-wide engine.  Raises RuntimeError before initialization."""
    if _engine is None:
        raise _not_initialized()
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    The process-wide session factory.

    Worker threads each open their own session from it; sessions are never
    shared between the request path and a running job.
    """
    if _SessionFactory is None:
        raise _not_initialized()
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Commit-or-rollback unit of work.

    Postconditions: On normal exit the session is committed and closed.
        On exception it is rolled back, closed and the exception re-raised.

    The pipeline runs each of its transactions (mark in progress, allocate
    and write back, record failure) inside its own scope.
    """
    session = session_factory() if session_factory is not None else get_session()
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


def create_tables() -> None:
    """
    Create every table registered on Base.metadata.

    Kernel models are imported here; outer layers (the job table in
    costing_batch.models) register themselves when their package is imported.
    """
    import costing_kernel.models  # noqa: F401
    from costing_kernel.db.base import Base

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from costing_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Reset the engine and session factory (test cleanup)."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)

