"""
Module: stock_kernel.models.drift_report
Responsibility: Persisted DriftDetected events from reconciliation.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only (db/immutability.py).  A drift report is an audit artifact
      of a cache repair.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class DriftReportRecord(Base):
    """Cache/ledger divergence found and repaired by reconciliation."""

    __tablename__ = "drift_reports"

    __table_args__ = (
        Index("idx_drift_product_site", "product_id", "site_id"),
        Index("idx_drift_detected_at", "detected_at"),
    )

    product_id: Mapped[int] = mapped_column(Integer, nullable=False)

    site_id: Mapped[int] = mapped_column(Integer, nullable=False)

    batch_number: Mapped[str] = mapped_column(String(50), nullable=False)

    cached_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    ledger_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    # cached - ledger
    delta: Mapped[Decimal] = mapped_column(nullable=False)

    detected_at: Mapped[datetime] = mapped_column(nullable=False)

    repaired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return (
            f"<DriftReportRecord product={self.product_id} site={self.site_id} "
            f"delta={self.delta}>"
        )
