"""
Process startup for the stock ledger.

Applies the runtime settings the kernel cannot read itself: the log level
and the database URL.  Optionally creates the schema and always installs the
immutability listeners, so that every session handed out afterwards
enforces the append-only tables.

Usage:
    factory = start_stock_ledger()
    scheduler = ReconciliationScheduler.from_settings(factory, get_active_config())
"""

from __future__ import annotations

import os

from sqlalchemy.orm import Session, sessionmaker

from stock_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from stock_kernel.db.immutability import register_immutability_listeners
from stock_kernel.logging_config import configure_logging, get_logger

from stock_config import StockSettings, get_active_config

logger = get_logger("services.bootstrap")

DATABASE_URL_ENV_VAR = "DATABASE_URL"


def resolve_database_url(settings: StockSettings, database_url: str | None = None) -> str:
    """
    Explicit argument, then ``settings.database_url``, then ``DATABASE_URL``.

    Raises:
        ValueError: No URL configured anywhere.
    """
    url = database_url or settings.database_url or os.environ.get(DATABASE_URL_ENV_VAR)
    if not url:
        raise ValueError(
            f"No database URL: pass one, set database_url in the config file, "
            f"or set {DATABASE_URL_ENV_VAR}"
        )
    return url


def start_stock_ledger(
    settings: StockSettings | None = None,
    *,
    database_url: str | None = None,
    create_schema: bool = False,
    echo: bool = False,
) -> sessionmaker[Session]:
    """
    Configure logging, open the engine and return the session factory.

    ``create_schema`` creates missing tables; existing ones are left as
    they are.
    """
    settings = settings or get_active_config()
    configure_logging(level=settings.log_level)

    url = resolve_database_url(settings, database_url)
    engine = init_engine_from_url(url, echo=echo)
    if create_schema:
        create_tables()
    register_immutability_listeners()

    logger.info(
        "stock_ledger_started",
        extra={
            "dialect": engine.dialect.name,
            "config_id": settings.config_id,
            "config_version": settings.version,
            "schema_created": create_schema,
            "negative_stock_policy": settings.ledger.negative_stock_policy,
        },
    )
    return get_session_factory()
