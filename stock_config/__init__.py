"""
stock_config -- single public entrypoint for stock ledger configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains settings.
    The kernel never imports this package; the facade and scheduler in
    ``stock_services`` read settings here and pass plain values down.

Failure modes:
    - ``FileNotFoundError`` -- the requested or environment-named file does
      not exist.
    - ``ValueError`` -- unknown keys or out-of-range values.

Audit relevance:
    Every call logs ``stock_config_trace`` with the config id, version and
    checksum, tying recorded movements to the settings in force.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from stock_config.loader import load_settings
from stock_config.schema import (
    IdentifierSettings,
    LedgerSettings,
    ReconciliationSettings,
    SequenceSettings,
    StockSettings,
)

_logger = logging.getLogger("stock_kernel.config")

CONFIG_ENV_VAR = "STOCK_LEDGER_CONFIG"

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> StockSettings:
    """
    The ONLY public configuration entrypoint.

    Resolution order: explicit ``config_path``, then the file named by the
    ``STOCK_LEDGER_CONFIG`` environment variable, then ``sets/default.yaml``.
    """
    if config_path is not None:
        path = Path(config_path)
    elif os.environ.get(CONFIG_ENV_VAR):
        path = Path(os.environ[CONFIG_ENV_VAR])
    else:
        path = _DEFAULT_CONFIG_PATH

    settings = load_settings(path)

    _logger.info(
        "stock_config_trace",
        extra={
            "trace_type": "STOCK_CONFIG_TRACE",
            "config_id": settings.config_id,
            "config_version": settings.version,
            "checksum": settings.checksum,
            "config_path": str(path),
            "negative_stock_policy": settings.ledger.negative_stock_policy,
        },
    )
    return settings


__all__ = [
    "CONFIG_ENV_VAR",
    "IdentifierSettings",
    "LedgerSettings",
    "ReconciliationSettings",
    "SequenceSettings",
    "StockSettings",
    "get_active_config",
]
