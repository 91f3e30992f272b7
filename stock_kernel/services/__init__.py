"""Services for the stock kernel (imperative shell)."""

from stock_kernel.services.batch_service import BatchService
from stock_kernel.services.identifier_service import IdentifierService
from stock_kernel.services.movement_ledger import AppendResult, MovementLedger
from stock_kernel.services.sequence_service import (
    LEDGER_SEQUENCE_MAX,
    InMemorySequenceAllocator,
    SequenceAllocator,
    SequenceService,
)
from stock_kernel.services.serial_service import SerialService
from stock_kernel.services.stock_cache_service import StockCacheService

__all__ = [
    "AppendResult",
    "BatchService",
    "IdentifierService",
    "InMemorySequenceAllocator",
    "LEDGER_SEQUENCE_MAX",
    "MovementLedger",
    "SequenceAllocator",
    "SequenceService",
    "SerialService",
    "StockCacheService",
]
