"""
Engine and session management for the ledger database.

One process-wide engine, created by ``init_engine_from_url``. Two backends:

* PostgreSQL (production). READ COMMITTED plus explicit row locks: the
  posting path takes ``FOR UPDATE`` on the retainer or recurring row it
  changes and ``FOR SHARE`` on the fiscal period it posts into.
* SQLite (tests, local runs). Row locks do not exist, so every transaction
  starts with ``BEGIN IMMEDIATE`` and holds the database write lock until
  commit. Concurrent posters queue on ``busy_timeout`` instead of racing.
  Read transactions take the lock too, so callers sharing a file between
  threads must not keep a session open across another thread's write.

Services never commit through this module; they receive a Session and the
caller (module service, script or ``session_scope``) owns the transaction.
"""

import atexit
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from ledger_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _serialize_sqlite_writers(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # pysqlite's implicit BEGIN is deferred; turn it off and issue our own.
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _engine_options(dialect: str, pool_size: int, max_overflow: int, pool_timeout: int, busy_timeout: int) -> dict[str, Any]:
    options: dict[str, Any] = {
        "poolclass": QueuePool,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": pool_timeout,
    }
    if dialect == "sqlite":
        options["connect_args"] = {"timeout": busy_timeout, "check_same_thread": False}
    else:
        options.update(pool_pre_ping=True, pool_recycle=1800, isolation_level="READ COMMITTED")
    return options


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    busy_timeout: int = 30,
) -> Engine:
    """
    Create the process-wide engine and session factory.

    ``database_url`` is a PostgreSQL URL or a file-based SQLite URL
    (``sqlite:///ledger.db``); in-memory SQLite cannot be shared between the
    threads the scheduler and the race tests use. ``busy_timeout`` is the
    number of seconds a SQLite writer waits for the lock and is ignored on
    PostgreSQL. Calling again replaces the previous engine without
    disposing it.
    """
    global _engine, _SessionFactory

    dialect = make_url(database_url).get_backend_name()
    _engine = create_engine(
        database_url,
        echo=echo,
        **_engine_options(dialect, pool_size, max_overflow, pool_timeout, busy_timeout),
    )
    if dialect == "sqlite":
        _serialize_sqlite_writers(_engine)

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": dialect, "pool_size": pool_size, "max_overflow": max_overflow},
    )
    return _engine


def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    return _require_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """Factory for callers that need one session per unit of work (scheduler ticks, worker threads)."""
    return _require_factory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Commit on normal exit, roll back and re-raise on error, always close.

    Usage::

        with session_scope() as session:
            JournalService(session, clock).post(draft)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create the kernel, module and recurring tables that do not exist yet."""
    from ledger_kernel.db.base import Base
    from ledger_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop every ledger table. Test and local-reset use only."""
    from ledger_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
