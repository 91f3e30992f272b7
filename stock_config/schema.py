"""
Stock ledger settings schema.

Frozen dataclasses parsed from YAML by ``stock_config.loader``.  Defaults
here match ``sets/default.yaml`` so a partial file only needs to name what
it overrides.
"""

from __future__ import annotations

from dataclasses import dataclass, field

NEGATIVE_STOCK_POLICIES = ("warn", "block")


@dataclass(frozen=True)
class SequenceSettings:
    """Partition capacities, bounded by each identifier's digit width."""

    batch_capacity: int = 9999
    unit_capacity: int = 99999
    short_serial_capacity: int = 99999


@dataclass(frozen=True)
class IdentifierSettings:
    # Trailing Luhn digit on batch numbers (17 digits; 16 when off)
    batch_check_digit: bool = True
    # Trailing Luhn digit on short serials (EAN-13 style, 14 digits; 13 when off)
    short_serial_check_digit: bool = True
    max_bulk_serials: int = 10000
    default_actor: str = "SYSTEM"


@dataclass(frozen=True)
class LedgerSettings:
    # warn: record and log negative SOH; block: raise InsufficientStockError
    negative_stock_policy: str = "warn"
    unit_of_measure: str = "g"


@dataclass(frozen=True)
class ReconciliationSettings:
    interval_seconds: float = 300.0
    # Pairs with movements recorded in this window count as recent activity
    lookback_hours: int = 24


@dataclass(frozen=True)
class StockSettings:
    """Complete runtime configuration."""

    config_id: str = "default"
    version: int = 1
    database_url: str | None = None
    log_level: str = "INFO"
    sequence: SequenceSettings = field(default_factory=SequenceSettings)
    identifiers: IdentifierSettings = field(default_factory=IdentifierSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    reconciliation: ReconciliationSettings = field(default_factory=ReconciliationSettings)
    checksum: str = ""
