"""
DTOs -- immutable data structures crossing the service boundary.

Responsibility:
    MovementSpec (what a caller asks the ledger to record), MovementRecord
    (what the ledger stored), VoidResult, StockLevel, SerialPair, the
    BatchInfo / SerialInfo traceability views and the
    DriftReport / DriftDetected pair published by reconciliation.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  from_model() converters exist for the
    service layer and are never called from domain logic.

Invariants enforced:
    - MovementSpec quantity is a non-negative Decimal.
    - MovementSpec direction agrees with its transaction type; it may only be
      omitted when the type implies one.
    - Non-stock transaction types never become a MovementSpec.
    - batch_number is None for unbatched stock; the cache keys '' and
      UNBATCHED are never accepted as batch numbers.

Failure modes:
    - InvalidArgumentError from MovementSpec.__post_init__.

Data flow:
    MovementSpec -> MovementLedger.append -> Movement (ORM) -> MovementRecord
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any
from uuid import UUID

from stock_kernel.domain.values import (
    SITE_TOTAL,
    UNBATCHED,
    MovementDirection,
    TransactionType,
    direction_for,
)
from stock_kernel.exceptions import InvalidArgumentError

if TYPE_CHECKING:
    from stock_kernel.models.batch import Batch as BatchModel
    from stock_kernel.models.movement import Movement as MovementModel
    from stock_kernel.models.serial_number import SerialNumber as SerialModel
    from stock_kernel.models.stock_level import StockLevelCache as StockLevelModel


def _positive_int(argument: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidArgumentError(argument, value, "must be a positive integer")


@dataclass(frozen=True)
class MovementSpec:
    """
    Request to record one stock movement.

    Contract:
        Supplied by the transaction-capture layer.  ``direction`` may be left
        as None for every transaction type except STOCKTAKE_VARIANCE, in
        which case it is derived from the type.  ``idempotency_key`` makes a
        retried append safe; when omitted each call is a new movement.
    """

    product_id: int
    site_id: int
    quantity: Decimal
    transaction_type: TransactionType
    transaction_ref: str
    batch_number: str | None = None
    direction: MovementDirection | None = None
    serial_number: str | None = None
    unit_of_measure: str | None = None
    occurred_at: datetime | None = None
    idempotency_key: str | None = None
    actor: str | None = None
    reason: str | None = None

    def __post_init__(self) -> None:
        _positive_int("product_id", self.product_id)
        _positive_int("site_id", self.site_id)

        try:
            quantity = (
                self.quantity if isinstance(self.quantity, Decimal)
                else Decimal(str(self.quantity))
            )
        except (InvalidOperation, ValueError) as exc:
            raise InvalidArgumentError("quantity", self.quantity, "must be numeric") from exc
        if not quantity.is_finite() or quantity < 0:
            raise InvalidArgumentError("quantity", self.quantity, "must be >= 0")
        object.__setattr__(self, "quantity", quantity)

        try:
            transaction_type = TransactionType(self.transaction_type)
        except ValueError as exc:
            raise InvalidArgumentError(
                "transaction_type", self.transaction_type, "unknown transaction type",
            ) from exc
        if not transaction_type.is_stock_affecting:
            raise InvalidArgumentError(
                "transaction_type", transaction_type.value, "does not affect stock",
            )
        object.__setattr__(self, "transaction_type", transaction_type)

        implied = direction_for(transaction_type)
        if self.direction is None:
            if implied is None:
                raise InvalidArgumentError(
                    "direction", None, f"required for {transaction_type.value}",
                )
            object.__setattr__(self, "direction", implied)
        else:
            direction = MovementDirection(self.direction)
            if implied is not None and direction is not implied:
                raise InvalidArgumentError(
                    "direction",
                    direction.value,
                    f"{transaction_type.value} is always {implied.value}",
                )
            object.__setattr__(self, "direction", direction)

        if self.batch_number is not None and (
            not isinstance(self.batch_number, str)
            or not self.batch_number.strip()
            or self.batch_number in (SITE_TOTAL, UNBATCHED)
        ):
            raise InvalidArgumentError(
                "batch_number", self.batch_number, "must be a batch number or None",
            )
        if not self.transaction_ref:
            raise InvalidArgumentError("transaction_ref", self.transaction_ref, "is required")

    @property
    def signed_quantity(self) -> Decimal:
        return self.direction.signed(self.quantity)

    def payload(self, unit_of_measure: str) -> dict[str, Any]:
        """Fields covered by the idempotency payload hash."""
        return {
            "product_id": self.product_id,
            "site_id": self.site_id,
            "batch_number": self.batch_number,
            "serial_number": self.serial_number,
            "direction": self.direction.value,
            "quantity": self.quantity,
            "unit_of_measure": self.unit_of_measure or unit_of_measure,
            "transaction_type": self.transaction_type.value,
            "transaction_ref": self.transaction_ref,
            "occurred_at": self.occurred_at,
        }


@dataclass(frozen=True)
class MovementRecord:
    """A movement as stored in the ledger."""

    id: UUID
    seq: int
    product_id: int
    site_id: int
    batch_number: str | None
    serial_number: str | None
    direction: MovementDirection
    quantity: Decimal
    unit_of_measure: str
    transaction_type: TransactionType
    transaction_ref: str
    occurred_at: datetime
    recorded_at: datetime
    idempotency_key: str
    payload_hash: str
    actor: str
    reason: str | None = None
    voided: bool = False
    void_reason: str | None = None
    voided_at: datetime | None = None
    voids_movement_id: UUID | None = None
    voided_by_movement_id: UUID | None = None

    @property
    def signed_quantity(self) -> Decimal:
        return self.direction.signed(self.quantity)

    @property
    def is_compensation(self) -> bool:
        return self.voids_movement_id is not None

    @classmethod
    def from_model(cls, model: MovementModel) -> MovementRecord:
        return cls(
            id=model.id,
            seq=model.seq,
            product_id=model.product_id,
            site_id=model.site_id,
            batch_number=model.batch_number,
            serial_number=model.serial_number,
            direction=MovementDirection(model.direction),
            quantity=model.quantity,
            unit_of_measure=model.unit_of_measure,
            transaction_type=TransactionType(model.transaction_type),
            transaction_ref=model.transaction_ref,
            occurred_at=model.occurred_at,
            recorded_at=model.recorded_at,
            idempotency_key=model.idempotency_key,
            payload_hash=model.payload_hash,
            actor=model.actor,
            reason=model.reason,
            voided=model.voided,
            void_reason=model.void_reason,
            voided_at=model.voided_at,
            voids_movement_id=model.voids_movement_id,
            voided_by_movement_id=model.voided_by_movement_id,
        )


@dataclass(frozen=True)
class VoidResult:
    """Original movement (now voided) and the compensation that voided it."""

    original: MovementRecord
    compensation: MovementRecord


@dataclass(frozen=True)
class StockLevel:
    """One row of the SOH projection.  ``batch_number`` is '' for site totals."""

    product_id: int
    site_id: int
    batch_number: str
    quantity: Decimal
    movement_count: int
    last_movement_recorded_at: datetime | None
    last_movement_seq: int | None
    as_of: datetime | None

    @classmethod
    def from_model(cls, model: StockLevelModel) -> StockLevel:
        return cls(
            product_id=model.product_id,
            site_id=model.site_id,
            batch_number=model.batch_number,
            quantity=model.quantity,
            movement_count=model.movement_count,
            last_movement_recorded_at=model.last_movement_recorded_at,
            last_movement_seq=model.last_movement_seq,
            as_of=model.as_of,
        )


@dataclass(frozen=True)
class SerialPair:
    """Full and short serial numbers issued together for one physical unit."""

    full_serial_number: str
    short_serial_number: str
    batch_number: str
    unit_sequence: int


@dataclass(frozen=True)
class BatchInfo:
    """Registered batch."""

    batch_number: str
    site_id: int
    batch_type: int
    created_date: date
    status: str
    source_batch_number: str | None = None
    product_id: int | None = None
    notes: str | None = None
    status_changed_at: datetime | None = None

    @classmethod
    def from_model(cls, model: BatchModel) -> BatchInfo:
        return cls(
            batch_number=model.batch_number,
            site_id=model.site_id,
            batch_type=model.batch_type,
            created_date=model.created_date,
            status=model.status,
            source_batch_number=model.source_batch_number,
            product_id=model.product_id,
            notes=model.notes,
            status_changed_at=model.status_changed_at,
        )


@dataclass(frozen=True)
class SerialInfo:
    """Registered serialized unit."""

    full_serial_number: str
    short_serial_number: str
    batch_number: str
    product_id: int
    site_id: int
    strain_id: int
    product_type: int
    unit_sequence: int
    weight_grams: Decimal
    status: str
    status_changed_at: datetime | None = None
    sold_at: datetime | None = None
    customer_ref: str | None = None
    destruction_reason: str | None = None

    @classmethod
    def from_model(cls, model: SerialModel) -> SerialInfo:
        return cls(
            full_serial_number=model.full_serial_number,
            short_serial_number=model.short_serial_number,
            batch_number=model.batch_number,
            product_id=model.product_id,
            site_id=model.site_id,
            strain_id=model.strain_id,
            product_type=model.product_type,
            unit_sequence=model.unit_sequence,
            weight_grams=model.weight_grams,
            status=model.status,
            status_changed_at=model.status_changed_at,
            sold_at=model.sold_at,
            customer_ref=model.customer_ref,
            destruction_reason=model.destruction_reason,
        )


@dataclass(frozen=True)
class DriftReport:
    """
    Divergence between a cache row and the ledger.

    ``delta`` is ``cached_quantity - ledger_quantity``: a cache that reads
    10 units high reports +10.
    """

    product_id: int
    site_id: int
    batch_number: str
    cached_quantity: Decimal
    ledger_quantity: Decimal
    delta: Decimal
    detected_at: datetime
    repaired: bool = True
    report_id: UUID | None = None


@dataclass(frozen=True)
class DriftDetected:
    """Event published to reconciliation listeners for every drift found."""

    report: DriftReport
    code: str = field(default="DRIFT_DETECTED")

    @property
    def delta(self) -> Decimal:
        return self.report.delta

    @property
    def product_id(self) -> int:
        return self.report.product_id

    @property
    def site_id(self) -> int:
        return self.report.site_id

    @property
    def detected_at(self) -> datetime:
        return self.report.detected_at
