"""
Pure domain layer.

Check digits, identifier shapes, enumerations and DTOs with NO dependencies
on the ORM, the database, the clock or any other I/O.
"""

from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.dtos import (
    BatchInfo,
    DriftDetected,
    DriftReport,
    MovementRecord,
    MovementSpec,
    SerialInfo,
    SerialPair,
    StockLevel,
    VoidResult,
)
from stock_kernel.domain.values import (
    SITE_TOTAL,
    UNBATCHED,
    BatchStatus,
    BatchType,
    IdentifierKind,
    MovementDirection,
    SerialStatus,
    TransactionType,
    batch_key,
    direction_for,
)

__all__ = [
    "BatchInfo",
    "BatchStatus",
    "BatchType",
    "Clock",
    "DeterministicClock",
    "DriftDetected",
    "DriftReport",
    "IdentifierKind",
    "MovementDirection",
    "MovementRecord",
    "MovementSpec",
    "SerialInfo",
    "SerialPair",
    "SerialStatus",
    "StockLevel",
    "SystemClock",
    "TransactionType",
    "SITE_TOTAL",
    "UNBATCHED",
    "VoidResult",
    "batch_key",
    "direction_for",
]
