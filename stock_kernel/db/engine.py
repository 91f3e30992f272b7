"""
Engine and session lifecycle for the stock kernel.

One module-level engine serves the process.  PostgreSQL (psycopg2) runs at
READ COMMITTED; the sequence allocator and the SOH cache rely on row locks
and single-statement updates rather than a stronger isolation level.

SQLite is accepted for tests and single-till installs.  Its connections are
shared across threads and every transaction starts with BEGIN IMMEDIATE, so
concurrent writers queue on the database lock for up to the busy timeout
instead of failing when a reader upgrades to a writer.

``session_scope()`` commits or rolls back as a unit: an identifier request
or movement append that fails leaves no partial rows.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from stock_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """
    Create the process engine and session factory, replacing any previous one.

    The pool arguments apply to PostgreSQL only; ``sqlite_busy_timeout`` is
    how long a SQLite writer waits for the database lock.
    """
    global _engine, _SessionFactory

    sqlite = database_url.startswith("sqlite")
    if sqlite:
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": sqlite_busy_timeout},
        )
        event.listen(engine, "connect", _sqlite_on_connect)
        event.listen(engine, "begin", _sqlite_on_begin)
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    _engine = engine
    _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": engine.dialect.name,
            "pool_size": None if sqlite else pool_size,
            "echo": echo,
        },
    )
    return engine


def _sqlite_on_connect(dbapi_connection, connection_record):
    # SQLAlchemy emits BEGIN itself (see _sqlite_on_begin) so SAVEPOINT works
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def _sqlite_on_begin(conn):
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    """Raises RuntimeError before init_engine_from_url()."""
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    return _require_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """The factory itself, for callers that open a session per thread or per tick."""
    return _require_factory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Commit on normal exit, roll back and re-raise on error, always close.

    Usage:
        with session_scope() as session:
            StockLedger(session).record_movement(spec)
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


def _metadata():
    from stock_kernel.db.base import Base
    import stock_kernel.models  # noqa: F401  (registers every table on Base.metadata)

    return Base.metadata


def create_tables() -> None:
    """Create missing tables; existing tables are left untouched."""
    metadata = _metadata()
    metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(metadata.sorted_tables)})


def drop_tables() -> None:
    """Drop every stock table. Tests only."""
    _metadata().drop_all(get_engine())


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


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"
