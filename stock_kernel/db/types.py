"""
Module: stock_kernel.db.types
Responsibility: Annotated type aliases and utility functions for stock-grade
    column types.  Centralizes quantity precision so that every model and
    service uses identical type definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for quantities.  Quantities are Decimal with four decimal
      places; round_quantity() is the only sanctioned rounding function for
      stock quantities and aggregate results.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Any

from sqlalchemy import BigInteger, Numeric, String

# Stock quantity (grams, units, millilitres)
Quantity = Annotated[Decimal, Numeric(18, 4)]

# Monotonic sequence number for ledger ordering
Sequence = Annotated[int, BigInteger]

# SHA-256 hash as hex string (64 characters)
PayloadHash = Annotated[str, String(64)]

# Fixed-width numeric identifiers (batch 16/17, short serial 13/14, full serial 28)
IdentifierString = Annotated[str, String(32)]

# Sequence partition key, e.g. "batch:01:02:20250115"
PartitionKeyString = Annotated[str, String(120)]

ShortCode = Annotated[str, String(50)]

LongText = Annotated[str, String(1000)]


QUANTITY_DECIMAL_PLACES = 4
_QUANTUM = Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES)
ZERO = Decimal("0")


def round_quantity(value: Any) -> Decimal:
    """
    Normalize a quantity to the canonical four decimal places.

    Accepts Decimal, int, str and the float or int values some backends return
    for SUM() aggregates.  ``None`` (an empty aggregate) becomes zero.

    Raises:
        decimal.InvalidOperation: If value is not numeric.
    """
    if value is None:
        return ZERO.quantize(_QUANTUM)
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(_QUANTUM, rounding=ROUND_HALF_UP)
