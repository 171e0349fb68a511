"""
Process-wide database engine and transactional session scope.

One engine per process, created by :func:`init_engine_from_url`.  Two
backends are supported:

* PostgreSQL at READ COMMITTED, with a server-side ``statement_timeout``
  so no statement waits forever on a locked stock row.
* SQLite (tests and single-screen installs).  pysqlite's own BEGIN is
  replaced with ``BEGIN IMMEDIATE`` so concurrent writers queue on the
  database lock for up to the statement timeout, and SAVEPOINTs nest.

:func:`pool_state` feeds the retry policy: no engine at all is
DISCONNECTED (retrying is pointless); an engine whose database refuses
connections is CONNECTING.
"""

import atexit
from contextlib import contextmanager
from enum import Enum
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from concession_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_READY = "Database engine is not initialized; call init_engine_from_url() first."


class PoolState(str, Enum):
    CONNECTED = "connected"
    CONNECTING = "connecting"
    DISCONNECTED = "disconnected"


def _sqlite_options(timeout_seconds: int) -> dict[str, Any]:
    return {"connect_args": {"check_same_thread": False, "timeout": timeout_seconds}}


def _postgres_options(
    timeout_seconds: int, pool_size: int, max_overflow: int, pool_timeout: int, pool_recycle: int,
) -> dict[str, Any]:
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": pool_timeout,
        "pool_recycle": pool_recycle,
        "isolation_level": "READ COMMITTED",
        "connect_args": {"options": f"-c statement_timeout={timeout_seconds * 1000}"},
    }


def _use_immediate_transactions(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, _record):
        # SQLAlchemy emits BEGIN itself below.
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(connection):
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    statement_timeout_seconds: int = 30,
) -> Engine:
    """
    Build the process engine, replacing (and disposing) any previous one.

    ``statement_timeout_seconds`` is the PostgreSQL statement deadline, or
    the SQLite busy wait.  Pool sizing only applies to PostgreSQL.
    """
    global _engine, _SessionFactory

    reset_engine()
    is_sqlite = database_url.startswith("sqlite")
    options = (
        _sqlite_options(statement_timeout_seconds)
        if is_sqlite
        else _postgres_options(statement_timeout_seconds, pool_size, max_overflow, pool_timeout, pool_recycle)
    )
    engine = create_engine(database_url, echo=echo, pool_pre_ping=pool_pre_ping, **options)
    if is_sqlite:
        _use_immediate_transactions(engine)

    _engine = engine
    _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": engine.dialect.name,
            "pool_size": None if is_sqlite else pool_size,
            "statement_timeout_seconds": statement_timeout_seconds,
        },
    )
    return engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_READY)
    return _engine


def get_session() -> Session:
    return get_session_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """Factory for callers that open their own sessions, one per worker thread."""
    if _SessionFactory is None:
        raise RuntimeError(_NOT_READY)
    return _SessionFactory


def pool_state() -> PoolState:
    engine = _engine
    if engine is None:
        return PoolState.DISCONNECTED
    try:
        with engine.connect() as connection:
            connection.exec_driver_sql("SELECT 1")
    except OperationalError:
        logger.warning("pool_not_ready", exc_info=True)
        return PoolState.CONNECTING
    return PoolState.CONNECTED


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Generator[Session, None, None]:
    """
    One unit of work: commit when the block exits cleanly, roll back and
    re-raise when it does not.  The session is closed either way.
    """
    session = factory() if factory is not None else get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _registered_metadata():
    from concession_kernel.db.base import Base
    from concession_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    return Base.metadata


def create_tables() -> None:
    metadata = _registered_metadata()
    metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(metadata.tables)})


def drop_tables() -> None:
    _registered_metadata().drop_all(get_engine())
    logger.warning("tables_dropped")


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    engine, _engine, _SessionFactory = _engine, None, None
    if engine is not None:
        engine.dispose()


atexit.register(reset_engine)
