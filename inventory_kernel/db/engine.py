"""
Module: inventory_kernel.db.engine
Responsibility: Owns the process-wide engine and session factory, and the
    session_scope() unit of work every facade operation runs in.
Architecture position: Kernel > DB.  Imports models only inside
    create_tables()/drop_tables() so that table registration stays lazy.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; stock consistency comes from the
      SELECT ... FOR UPDATE taken on stock_locks rows, not from isolation.
    - SQLite (tests, local tooling) opens every transaction with
      BEGIN IMMEDIATE, so writers queue on the database lock and row locks
      are unnecessary.
    - Sessions are created with expire_on_commit=False so DTOs built from
      ORM rows survive the commit in session_scope().

Failure modes:
    - RuntimeError from get_session_factory()/create_tables() before
      init_engine_from_url().
    - OperationalError surfaces unchanged from session_scope(); the facade
      decides whether it is a retryable conflict.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _sqlite_engine(database_url: str, echo: bool, busy_timeout: int) -> Engine:
    engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": busy_timeout},
    )

    # pysqlite defers BEGIN and mangles SAVEPOINT unless it is told to
    # keep out of transaction handling.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the engine and session factory for ``database_url``.

    Pool settings apply to PostgreSQL; for SQLite ``pool_timeout`` is the
    busy timeout a writer waits for the database lock.  Calling it again
    replaces the previous engine without disposing it.
    """
    global _engine, _SessionFactory

    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        _engine = _sqlite_engine(database_url, echo, pool_timeout)
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            isolation_level="READ COMMITTED",
        )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": backend,
            "pool_size": pool_size if backend != "sqlite" else None,
            "echo": echo,
        },
    )
    return _engine


def _require_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Session factory for callers that open one session per thread or job."""
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    One unit of work: commit on normal exit, roll back and re-raise on error.

    Usage:
        with session_scope(factory) as session:
            MovementService(session, ...).receive(...)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(install_triggers: bool = True) -> None:
    """
    Create every kernel table that does not exist yet.

    On PostgreSQL the append-only triggers from db/triggers.py are
    installed as well, unless ``install_triggers`` is False.
    """
    from inventory_kernel.db.base import Base
    import inventory_kernel.models  # noqa: F401  registers all tables

    engine = _require_engine()
    Base.metadata.create_all(engine)
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})

    if install_triggers and engine.dialect.name == "postgresql":
        from inventory_kernel.db.triggers import install_immutability_triggers

        install_immutability_triggers(engine)


def drop_tables() -> None:
    """Drop every kernel table. Tests and local tooling only."""
    from inventory_kernel.db.base import Base
    import inventory_kernel.models  # noqa: F401

    Base.metadata.drop_all(_require_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None
