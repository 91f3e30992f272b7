"""Database layer - engine, base classes, types, and immutability."""

from stock_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from stock_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from stock_kernel.db.types import PayloadHash, Quantity, Sequence, round_quantity

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "Quantity",
    "Sequence",
    "PayloadHash",
    "round_quantity",
]
