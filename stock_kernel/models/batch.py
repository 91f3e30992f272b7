"""
Module: stock_kernel.models.batch
Responsibility: ORM persistence for traceability batches.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - batch_number is unique and never reused.
    - A batch never splits: every processing step and movement of the batch
      references the same batch_number.
    - source_batch_number is a lookup-only parent reference (no foreign key,
      no ownership); lineage is walked by BatchService.lineage().
"""

from datetime import date, datetime

from sqlalchemy import Date, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase


class Batch(TrackedBase):
    """Traceability unit persisting across processing steps."""

    __tablename__ = "batches"

    __table_args__ = (
        Index("idx_batch_source", "source_batch_number"),
        Index("idx_batch_site_date", "site_id", "created_date"),
    )

    batch_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    site_id: Mapped[int] = mapped_column(Integer, nullable=False)

    batch_type: Mapped[int] = mapped_column(Integer, nullable=False)

    created_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Parent batch this one was produced from (backward traceability)
    source_batch_number: Mapped[str | None] = mapped_column(String(32), nullable=True)

    status: Mapped[str] = mapped_column(String(12), nullable=False, default="ACTIVE")

    status_changed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    product_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def __repr__(self) -> str:
        return f"<Batch {self.batch_number} status={self.status}>"
