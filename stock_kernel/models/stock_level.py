"""
Module: stock_kernel.models.stock_level
Responsibility: ORM persistence for the stock-on-hand projection cache.
Architecture position: Kernel > Models.  May import from db/ and domain/values.py.

Invariants enforced:
    - One row per (product_id, site_id, batch_number).  batch_number is ''
      for the site-total row and UNBATCHED for movements without a batch.
    - Derived data only: every row is reproducible from the movements table
      and may be dropped and rebuilt at any time.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base
from stock_kernel.domain.values import SITE_TOTAL, UNBATCHED

__all__ = ["SITE_TOTAL", "UNBATCHED", "StockLevelCache"]


class StockLevelCache(Base):
    """Cached signed sum of movements for one product/site/batch."""

    __tablename__ = "stock_levels"

    __table_args__ = (
        UniqueConstraint(
            "product_id", "site_id", "batch_number", name="uq_stock_level_key",
        ),
    )

    product_id: Mapped[int] = mapped_column(Integer, nullable=False)

    site_id: Mapped[int] = mapped_column(Integer, nullable=False)

    batch_number: Mapped[str] = mapped_column(String(50), nullable=False, default=SITE_TOTAL)

    quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    movement_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_movement_recorded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    last_movement_seq: Mapped[int | None] = mapped_column(nullable=True)

    # Time of the last update to this row
    as_of: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<StockLevelCache product={self.product_id} site={self.site_id} "
            f"batch={self.batch_number!r} qty={self.quantity}>"
        )
