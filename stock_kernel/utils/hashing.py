"""
Payload hashing for idempotent appends.

The movement ledger stores a hash beside every idempotency key so a retried
append can be told apart from a conflicting reuse of the key.  Two payloads
that describe the same movement must hash alike whatever their dict order,
Decimal scale or timezone spelling.
"""

import hashlib
import json
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _canonical_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        # 5, 5.0 and 5.0000 are the same quantity
        return str(value.normalize())
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat()
    if isinstance(value, (date, UUID)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Cannot hash a {type(value).__name__} in a movement payload")


def canonicalize_json(data: Any) -> str:
    """Sorted keys, no whitespace, normalized values."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_canonical_value)


def hash_payload(payload: dict) -> str:
    """Hex sha256 (64 characters) of the canonical JSON form of ``payload``."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()
