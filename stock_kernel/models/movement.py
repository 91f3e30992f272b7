"""
Module: stock_kernel.models.movement
Responsibility: ORM persistence for the append-only stock movement ledger.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only: after INSERT the only permitted UPDATE is the one-way void
      transition (voided False -> True with void_reason, voided_at and
      voided_by_movement_id).  DELETE is always rejected (db/immutability.py).
    - seq is unique and allocated from the ledger-wide sequence partition;
      (recorded_at, seq) is the replay ordering key.
    - idempotency_key is unique: a retried append finds the original row.
    - At most one compensation per original (unique voids_movement_id).

Failure modes:
    - ImmutabilityViolationError on any other UPDATE or on DELETE.
    - IntegrityError on duplicate idempotency_key or seq.

Audit relevance:
    Movements are retained for seven years.  Voided originals stay in the
    table next to their compensation, linked both ways.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase, UUIDString


class Movement(TrackedBase):
    """
    One stock-affecting event.

    Contract:
        quantity is always >= 0; the sign comes from direction.  A mistaken
        movement is corrected by a compensating movement with the inverted
        direction, never by editing this row.
    """

    __tablename__ = "movements"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_movement_idempotency"),
        UniqueConstraint("seq", name="uq_movement_seq"),
        UniqueConstraint("voids_movement_id", name="uq_movement_voids"),
        Index("idx_movement_product_site_time", "product_id", "site_id", "recorded_at", "seq"),
        Index("idx_movement_batch", "batch_number"),
        Index("idx_movement_serial", "serial_number"),
        Index("idx_movement_transaction", "transaction_type", "transaction_ref"),
        Index("idx_movement_recorded_at", "recorded_at"),
    )

    # Ledger-wide ordering tiebreak
    seq: Mapped[int] = mapped_column(nullable=False)

    product_id: Mapped[int] = mapped_column(Integer, nullable=False)

    site_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Free-form: production batch numbers and supplier lot codes both appear.
    # NULL for stock recorded without a batch.
    batch_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    serial_number: Mapped[str | None] = mapped_column(String(32), nullable=True)

    direction: Mapped[str] = mapped_column(String(3), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    unit_of_measure: Mapped[str] = mapped_column(String(10), nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)

    transaction_ref: Mapped[str] = mapped_column(String(100), nullable=False)

    # Business time, caller supplied
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    # Ledger time, assigned at append from the injected clock
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    actor: Mapped[str] = mapped_column(String(100), nullable=False)

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Void state machine
    voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    void_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    voided_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Set on the compensation: the movement it voids
    voids_movement_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("movements.id"),
        nullable=True,
    )

    # Set on the original: the compensation that voided it
    voided_by_movement_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Movement seq={self.seq} {self.direction} {self.quantity} "
            f"product={self.product_id} site={self.site_id} batch={self.batch_number}>"
        )

    @property
    def signed_quantity(self) -> Decimal:
        return self.quantity if self.direction == "IN" else -self.quantity

    @property
    def is_compensation(self) -> bool:
        return self.voids_movement_id is not None
