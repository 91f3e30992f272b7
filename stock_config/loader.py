"""
Configuration loader (``stock_config.loader``).

Loads a YAML settings file and parses it into the frozen dataclasses of
``stock_config.schema``.  Runtime callers use
``stock_config.get_active_config()``; this module is its internal tooling.

Failure modes:
    * Missing file  -> ``FileNotFoundError`` propagates.
    * Malformed YAML  -> ``yaml.YAMLError`` propagates.
    * Unknown keys or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import (
    NEGATIVE_STOCK_POLICIES,
    IdentifierSettings,
    LedgerSettings,
    ReconciliationSettings,
    SequenceSettings,
    StockSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of the parsed YAML."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _section(cls, data: dict[str, Any] | None, name: str):
    data = data or {}
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in '{name}': {sorted(unknown)}")
    return cls(**data)


def parse_settings(data: dict[str, Any]) -> StockSettings:
    """
    Parse a settings mapping into StockSettings.

    Raises:
        ValueError: On unknown keys or invalid values.
    """
    sections = {"sequence", "identifiers", "ledger", "reconciliation"}
    top_level = {"config_id", "version", "database_url", "log_level"}
    unknown = set(data) - sections - top_level
    if unknown:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

    sequence = _section(SequenceSettings, data.get("sequence"), "sequence")
    identifiers = _section(IdentifierSettings, data.get("identifiers"), "identifiers")
    ledger = _section(LedgerSettings, data.get("ledger"), "ledger")
    reconciliation = _section(
        ReconciliationSettings, data.get("reconciliation"), "reconciliation",
    )

    if not 1 <= sequence.batch_capacity <= 9999:
        raise ValueError("sequence.batch_capacity must be between 1 and 9999")
    if not 1 <= sequence.unit_capacity <= 99999:
        raise ValueError("sequence.unit_capacity must be between 1 and 99999")
    if not 1 <= sequence.short_serial_capacity <= 99999:
        raise ValueError("sequence.short_serial_capacity must be between 1 and 99999")
    if identifiers.max_bulk_serials < 1:
        raise ValueError("identifiers.max_bulk_serials must be positive")
    if ledger.negative_stock_policy not in NEGATIVE_STOCK_POLICIES:
        raise ValueError(
            f"ledger.negative_stock_policy must be one of {NEGATIVE_STOCK_POLICIES}, "
            f"got {ledger.negative_stock_policy!r}"
        )
    if reconciliation.interval_seconds <= 0:
        raise ValueError("reconciliation.interval_seconds must be positive")

    return StockSettings(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        database_url=data.get("database_url"),
        log_level=str(data.get("log_level", "INFO")).upper(),
        sequence=sequence,
        identifiers=identifiers,
        ledger=ledger,
        reconciliation=reconciliation,
        checksum=compute_checksum(data),
    )


def load_settings(path: Path) -> StockSettings:
    return parse_settings(load_yaml_file(path))
