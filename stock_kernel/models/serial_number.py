"""
Module: stock_kernel.models.serial_number
Responsibility: ORM persistence for serialized units.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Exactly one row per physical unit: full and short serial numbers are
      each unique.
    - Status moves only along SERIAL_TRANSITIONS (enforced by SerialService).
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase


class SerialNumber(TrackedBase):
    """One physical serialized unit."""

    __tablename__ = "serial_numbers"

    __table_args__ = (
        Index("idx_serial_batch", "batch_number"),
        Index("idx_serial_status", "status"),
    )

    full_serial_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    short_serial_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    batch_number: Mapped[str] = mapped_column(String(32), nullable=False)

    product_id: Mapped[int] = mapped_column(Integer, nullable=False)

    site_id: Mapped[int] = mapped_column(Integer, nullable=False)

    strain_id: Mapped[int] = mapped_column(Integer, nullable=False)

    product_type: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    weight_grams: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)

    status: Mapped[str] = mapped_column(String(12), nullable=False, default="AVAILABLE")

    status_changed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    sold_at: Mapped[datetime | None] = mapped_column(nullable=True)

    customer_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    destruction_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<SerialNumber {self.full_serial_number} status={self.status}>"
