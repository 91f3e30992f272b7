"""
Module: stock_kernel.models.sequence_counter
Responsibility: Allocator state, one row per sequence partition.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - partition_key is unique; rows are created lazily on first request.
    - last_issued only ever increases, by exactly one per allocation, through
      a single atomic UPDATE (services/sequence_service.py).
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class SequenceCounter(Base):
    """Counter for one partition, e.g. ``batch:01:02:20250115``."""

    __tablename__ = "sequence_counters"

    partition_key: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)

    last_issued: Mapped[int] = mapped_column(nullable=False, default=0)

    # Digit-width capacity recorded on first use
    max_value: Mapped[int] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.partition_key} last={self.last_issued}/{self.max_value}>"
