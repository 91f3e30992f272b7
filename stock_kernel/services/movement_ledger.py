"""
MovementLedger -- append-only writer for stock movements.

Responsibility:
    Turns a validated MovementSpec into one immutable Movement row and
    corrects mistakes by soft-void: the original is flagged, a compensating
    movement with the inverted direction is appended, and the two are linked
    both ways.

Architecture position:
    Kernel > Services -- imperative shell.  Reads go through
    selectors/movement_selector.py; the SOH cache is maintained by
    StockCacheService, which the facade calls after a successful append.

Invariants enforced:
    - Append-only.  Rows are never updated except for the one-way void
      transition and never deleted (db/immutability.py backs this up at
      flush time).
    - Idempotency: a repeated idempotency_key with the same payload hash
      returns the stored movement; a different payload is rejected.
    - Ordering: every movement takes the next value of the ledger-wide
      sequence partition; (recorded_at, seq) is the total order.
    - One compensation per original (unique voids_movement_id).  A
      compensation is itself never voided.

Failure modes:
    - IdempotencyConflictError: key reused with a different payload.
    - MovementNotFoundError: void of an unknown id.
    - MovementAlreadyVoidedError: second void of the same movement,
      including the loser of a concurrent void race.
    - InvalidArgumentError: missing void reason, or void of a compensation.

Audit relevance:
    ``movement_appended`` and ``movement_voided`` are logged with the actor
    and the ids needed to rebuild the trail.  The compensation carries the
    void reason and actor; the original keeps its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import MovementRecord, MovementSpec, VoidResult
from stock_kernel.domain.identifiers import PartitionKey
from stock_kernel.domain.values import MovementDirection
from stock_kernel.exceptions import (
    IdempotencyConflictError,
    InvalidArgumentError,
    MovementAlreadyVoidedError,
    MovementNotFoundError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.movement import Movement
from stock_kernel.selectors.movement_selector import MovementSelector
from stock_kernel.services.base import BaseService
from stock_kernel.services.sequence_service import (
    LEDGER_SEQUENCE_MAX,
    SequenceAllocator,
    SequenceService,
)
from stock_kernel.utils.hashing import hash_payload

logger = get_logger("services.ledger")

VOID_KEY_PREFIX = "void:"


@dataclass(frozen=True)
class AppendResult:
    """Stored movement plus whether this call created it."""

    record: MovementRecord
    created: bool


class MovementLedger(BaseService[Movement]):
    """
    Writes movements and voids.

    Contract:
        ``append`` returns the stored MovementRecord.  ``void`` returns the
        voided original and its compensation.  Both flush; neither commits.

    Non-goals:
        - Does NOT update the SOH cache.
        - Does NOT apply the negative stock policy (the facade does).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        allocator: SequenceAllocator | None = None,
        *,
        unit_of_measure: str = "g",
        default_actor: str = "SYSTEM",
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._allocator = allocator or SequenceService(session)
        self._unit_of_measure = unit_of_measure
        self._default_actor = default_actor
        self._selector = MovementSelector(session)

    # ------------------------------------------------------------------
    # Append
    # ------------------------------------------------------------------

    def append(self, spec: MovementSpec) -> MovementRecord:
        return self.append_with_result(spec).record

    def append_with_result(self, spec: MovementSpec) -> AppendResult:
        """
        Record one movement, or return the one already stored under the
        same idempotency key.

        Raises:
            IdempotencyConflictError: Key reused with a different payload.
        """
        idempotency_key = spec.idempotency_key or str(uuid4())
        payload_hash = hash_payload(spec.payload(self._unit_of_measure))

        existing = self._find_by_key(idempotency_key, payload_hash)
        if existing is not None:
            return AppendResult(existing, created=False)

        actor = self._actor(spec.actor)
        recorded_at = self._clock.now()
        movement = Movement(
            seq=self._allocator.next_value(PartitionKey.MOVEMENT_LEDGER, LEDGER_SEQUENCE_MAX),
            product_id=spec.product_id,
            site_id=spec.site_id,
            batch_number=spec.batch_number,
            serial_number=spec.serial_number,
            direction=spec.direction.value,
            quantity=spec.quantity,
            unit_of_measure=spec.unit_of_measure or self._unit_of_measure,
            transaction_type=spec.transaction_type.value,
            transaction_ref=spec.transaction_ref,
            occurred_at=spec.occurred_at or recorded_at,
            recorded_at=recorded_at,
            idempotency_key=idempotency_key,
            payload_hash=payload_hash,
            actor=actor,
            reason=spec.reason,
            voided=False,
            created_by=actor,
        )

        try:
            with self.session.begin_nested():
                self.session.add(movement)
                self.session.flush()
        except IntegrityError:
            # Concurrent append under the same key won the insert
            existing = self._find_by_key(idempotency_key, payload_hash)
            if existing is None:
                raise
            return AppendResult(existing, created=False)

        record = MovementRecord.from_model(movement)
        logger.info(
            "movement_appended",
            extra={
                "movement_id": str(record.id),
                "seq": record.seq,
                "product_id": record.product_id,
                "site_id": record.site_id,
                "batch_number": record.batch_number,
                "direction": record.direction.value,
                "quantity": record.quantity,
                "transaction_type": record.transaction_type.value,
                "transaction_ref": record.transaction_ref,
                "actor": record.actor,
            },
        )
        return AppendResult(record, created=True)

    def _find_by_key(self, idempotency_key: str, payload_hash: str) -> MovementRecord | None:
        movement = self.session.execute(
            select(Movement).where(Movement.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        if movement is None:
            return None

        if movement.payload_hash != payload_hash:
            logger.warning(
                "idempotency_conflict",
                extra={
                    "idempotency_key": idempotency_key,
                    "movement_id": str(movement.id),
                },
            )
            raise IdempotencyConflictError(idempotency_key, movement.payload_hash, payload_hash)

        logger.info(
            "movement_append_replayed",
            extra={"idempotency_key": idempotency_key, "movement_id": str(movement.id)},
        )
        return MovementRecord.from_model(movement)

    # ------------------------------------------------------------------
    # Void
    # ------------------------------------------------------------------

    def void(self, movement_id: UUID, reason: str, actor: str | None = None) -> VoidResult:
        """
        Soft-void a movement by appending its compensation.

        The original keeps every field it was recorded with; only the void
        fields are written.  ``voided_at`` equals the compensation's
        ``recorded_at``, so an as-of query sees either the original or the
        pair, never half of it.

        Raises:
            InvalidArgumentError: Empty reason, or the target is itself a
                compensation.
            MovementNotFoundError: Unknown movement.
            MovementAlreadyVoidedError: Already voided.
        """
        if not reason or not reason.strip():
            raise InvalidArgumentError("reason", reason, "a void requires a reason")

        original = self.session.execute(
            select(Movement)
            .where(Movement.id == movement_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if original is None:
            raise MovementNotFoundError(str(movement_id))
        if original.voids_movement_id is not None:
            raise InvalidArgumentError(
                "movement_id", str(movement_id), "a compensating movement cannot be voided",
            )
        if original.voided:
            raise MovementAlreadyVoidedError(
                str(movement_id),
                str(original.voided_by_movement_id) if original.voided_by_movement_id else None,
            )

        actor = self._actor(actor)
        recorded_at = self._clock.now()
        compensation = Movement(
            seq=self._allocator.next_value(PartitionKey.MOVEMENT_LEDGER, LEDGER_SEQUENCE_MAX),
            product_id=original.product_id,
            site_id=original.site_id,
            batch_number=original.batch_number,
            serial_number=original.serial_number,
            direction=MovementDirection(original.direction).inverted().value,
            quantity=original.quantity,
            unit_of_measure=original.unit_of_measure,
            transaction_type=original.transaction_type,
            transaction_ref=original.transaction_ref,
            occurred_at=recorded_at,
            recorded_at=recorded_at,
            idempotency_key=f"{VOID_KEY_PREFIX}{original.id}",
            payload_hash=original.payload_hash,
            actor=actor,
            reason=reason,
            voided=False,
            voids_movement_id=original.id,
            created_by=actor,
        )

        try:
            with self.session.begin_nested():
                self.session.add(compensation)
                self.session.flush()
        except IntegrityError as exc:
            # Another transaction voided it between our read and insert
            logger.warning(
                "movement_void_race_lost",
                extra={"movement_id": str(movement_id)},
            )
            raise MovementAlreadyVoidedError(str(movement_id), None) from exc

        original.voided = True
        original.void_reason = reason
        original.voided_at = recorded_at
        original.voided_by_movement_id = compensation.id
        self.session.flush()

        result = VoidResult(
            original=MovementRecord.from_model(original),
            compensation=MovementRecord.from_model(compensation),
        )
        logger.info(
            "movement_voided",
            extra={
                "movement_id": str(original.id),
                "compensation_id": str(compensation.id),
                "compensation_seq": compensation.seq,
                "product_id": original.product_id,
                "site_id": original.site_id,
                "batch_number": original.batch_number,
                "quantity": original.quantity,
                "reason": reason,
                "actor": actor,
            },
        )
        return result

    def void_transaction(
        self,
        transaction_type: str,
        transaction_ref: str,
        reason: str,
        actor: str | None = None,
    ) -> list[VoidResult]:
        """Void every live movement of one source transaction, in ledger order."""
        movement_ids = self._selector.live_for_transaction(transaction_type, transaction_ref)
        return [self.void(movement_id, reason, actor) for movement_id in movement_ids]

    def _actor(self, actor: str | None) -> str:
        return actor or LogContext.get("actor_id") or self._default_actor
