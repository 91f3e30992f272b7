"""
Values -- enumerations and status lifecycles for the stock domain.

Responsibility:
    Movement direction, transaction types and their stock direction, batch
    types, and the batch and serial status state machines.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Every stock-affecting transaction type maps to exactly one direction,
      except STOCKTAKE_VARIANCE whose sign is decided by the count.
    - ACCOUNT_PAYMENT and QUOTE never produce movements.
    - Status transitions follow the tables below; anything else is rejected
      by the services that own the entity.
    - Movements without a batch are cached under UNBATCHED, never under the
      site-total key.
"""

from decimal import Decimal
from enum import Enum, IntEnum


class MovementDirection(str, Enum):
    """Direction of a stock movement.  IN adds to SOH, OUT withdraws."""

    IN = "IN"
    OUT = "OUT"

    @property
    def sign(self) -> int:
        return 1 if self is MovementDirection.IN else -1

    def inverted(self) -> "MovementDirection":
        return MovementDirection.OUT if self is MovementDirection.IN else MovementDirection.IN

    def signed(self, quantity: Decimal) -> Decimal:
        """Quantity with the sign this direction contributes to SOH."""
        return quantity if self is MovementDirection.IN else -quantity


class TransactionType(str, Enum):
    """Business transaction that produced a movement."""

    # Retail (POS)
    SALE = "SALE"
    REFUND = "REFUND"
    ACCOUNT_PAYMENT = "ACCOUNT_PAYMENT"
    LAYBY = "LAYBY"
    QUOTE = "QUOTE"

    # Purchasing / receiving
    GRV = "GRV"
    RTS = "RTS"

    # Wholesale
    WHOLESALE_SALE = "WHOLESALE_SALE"
    WHOLESALE_REFUND = "WHOLESALE_REFUND"

    # Production
    PRODUCTION_INPUT = "PRODUCTION_INPUT"
    PRODUCTION_OUTPUT = "PRODUCTION_OUTPUT"

    # Transfers
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"

    # Adjustments
    ADJUSTMENT_IN = "ADJUSTMENT_IN"
    ADJUSTMENT_OUT = "ADJUSTMENT_OUT"
    STOCKTAKE_VARIANCE = "STOCKTAKE_VARIANCE"

    @property
    def is_stock_affecting(self) -> bool:
        return self not in _NON_STOCK_TYPES


_NON_STOCK_TYPES = frozenset({TransactionType.ACCOUNT_PAYMENT, TransactionType.QUOTE})

_IN_TYPES = frozenset({
    TransactionType.GRV,
    TransactionType.REFUND,
    TransactionType.WHOLESALE_REFUND,
    TransactionType.PRODUCTION_OUTPUT,
    TransactionType.TRANSFER_IN,
    TransactionType.ADJUSTMENT_IN,
})

_OUT_TYPES = frozenset({
    TransactionType.SALE,
    TransactionType.RTS,
    TransactionType.WHOLESALE_SALE,
    TransactionType.PRODUCTION_INPUT,
    TransactionType.TRANSFER_OUT,
    TransactionType.ADJUSTMENT_OUT,
    TransactionType.LAYBY,
})


def direction_for(transaction_type: TransactionType) -> MovementDirection | None:
    """
    Stock direction implied by a transaction type.

    Returns None for STOCKTAKE_VARIANCE (sign depends on the count) and for
    the non-stock types.
    """
    if transaction_type in _IN_TYPES:
        return MovementDirection.IN
    if transaction_type in _OUT_TYPES:
        return MovementDirection.OUT
    return None


# Stock-on-hand cache keys beside real batch numbers: the site total and the
# stock recorded without a batch.  Neither is accepted as a batch number.
SITE_TOTAL = ""
UNBATCHED = "-"


def batch_key(batch_number: str | None) -> str:
    """Cache key for a movement's batch; movements without one share UNBATCHED."""
    return UNBATCHED if batch_number is None else batch_number


class BatchType(IntEnum):
    """Batch category, the second field of a batch number (1-9)."""

    CULTIVATION = 1
    PRODUCTION = 2
    TRANSFER = 3
    STOCK_TAKE = 4
    ADJUSTMENT = 5
    RETURN_TO_SUPPLIER = 6
    DESTRUCTION = 7
    CUSTOMER_RETURN = 8
    QUARANTINE = 9


class BatchStatus(str, Enum):
    """
    Batch lifecycle.

    ACTIVE -> COMPLETED -> ARCHIVED
    ACTIVE | COMPLETED -> RECALLED -> ARCHIVED
    """

    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"
    RECALLED = "RECALLED"


BATCH_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.ACTIVE: frozenset({BatchStatus.COMPLETED, BatchStatus.RECALLED}),
    BatchStatus.COMPLETED: frozenset({BatchStatus.ARCHIVED, BatchStatus.RECALLED}),
    BatchStatus.RECALLED: frozenset({BatchStatus.ARCHIVED}),
    BatchStatus.ARCHIVED: frozenset(),
}


class SerialStatus(str, Enum):
    """
    Serialized unit lifecycle.

    AVAILABLE -> SOLD | DESTROYED
    SOLD -> RETURNED
    RETURNED -> AVAILABLE | DESTROYED
    DESTROYED is terminal.
    """

    AVAILABLE = "AVAILABLE"
    SOLD = "SOLD"
    RETURNED = "RETURNED"
    DESTROYED = "DESTROYED"


SERIAL_TRANSITIONS: dict[SerialStatus, frozenset[SerialStatus]] = {
    SerialStatus.AVAILABLE: frozenset({SerialStatus.SOLD, SerialStatus.DESTROYED}),
    SerialStatus.SOLD: frozenset({SerialStatus.RETURNED}),
    SerialStatus.RETURNED: frozenset({SerialStatus.AVAILABLE, SerialStatus.DESTROYED}),
    SerialStatus.DESTROYED: frozenset(),
}


class IdentifierKind(str, Enum):
    """Kind of identifier recorded in the issue log."""

    BATCH = "BATCH"
    FULL_SERIAL = "FULL_SERIAL"
    SHORT_SERIAL = "SHORT_SERIAL"
