"""
stock_services.stock_ledger -- StockLedger, the external interface.

Responsibility:
    One object wiring the identifier generator, the movement ledger, the
    SOH cache, reconciliation and the batch/serial registries over a single
    session.  Applies the settings the kernel does not know about
    (capacities, check-digit switches, negative stock policy).

Architecture position:
    Services -- orchestration over kernel services.  The only place that
    reads StockSettings and passes plain values into the kernel.

Invariants enforced:
    - record_movement appends and applies the cache in the same
      transaction; an idempotent replay is returned without being applied
      a second time.
    - void_movement applies the compensation to the cache in the same
      transaction as the void.
    - Negative stock policy ``block`` rejects an OUT movement that would
      take the batch below zero, checked against the ledger before append.

Failure modes:
    - Every kernel exception propagates unchanged.
    - InsufficientStockError under the ``block`` policy.

Usage:
    with session_scope() as session:
        ledger = StockLedger(session)
        batch = ledger.generate_batch_number(site_id=1, batch_type=2)
        ledger.record_movement(MovementSpec(
            product_id=10, site_id=1, quantity=Decimal("500"),
            transaction_type=TransactionType.PRODUCTION_OUTPUT,
            transaction_ref="PROD-7", batch_number=batch,
        ))
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from stock_kernel.db.types import round_quantity
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    BatchInfo,
    DriftReport,
    MovementRecord,
    MovementSpec,
    SerialInfo,
    SerialPair,
    VoidResult,
)
from stock_kernel.domain.identifiers import validate_check_digit
from stock_kernel.domain.values import (
    SITE_TOTAL,
    BatchStatus,
    MovementDirection,
    SerialStatus,
    batch_key,
)
from stock_kernel.exceptions import InsufficientStockError
from stock_kernel.logging_config import get_logger
from stock_kernel.selectors.movement_selector import MovementSelector
from stock_kernel.services.batch_service import BatchService
from stock_kernel.services.identifier_service import IdentifierService
from stock_kernel.services.movement_ledger import MovementLedger
from stock_kernel.services.sequence_service import SequenceAllocator, SequenceService
from stock_kernel.services.serial_service import SerialService
from stock_kernel.services.stock_cache_service import StockCacheService

from stock_config import StockSettings, get_active_config
from stock_services.reconciliation_service import DriftListener, ReconciliationService

logger = get_logger("services.stock_ledger")


class StockLedger:
    """
    Facade over identifier generation, the movement ledger and SOH.

    Contract:
        All methods flush within the caller's session; none commits.
        ``settings`` defaults to ``get_active_config()``.
    """

    def __init__(
        self,
        session: Session,
        settings: StockSettings | None = None,
        clock: Clock | None = None,
        allocator: SequenceAllocator | None = None,
    ):
        self._session = session
        self._settings = settings or get_active_config()
        self._clock = clock or SystemClock()
        allocator = allocator or SequenceService(session)

        ident = self._settings.identifiers
        capacity = self._settings.sequence
        actor = ident.default_actor

        self._identifiers = IdentifierService(
            session,
            self._clock,
            allocator,
            batch_capacity=capacity.batch_capacity,
            unit_capacity=capacity.unit_capacity,
            short_serial_capacity=capacity.short_serial_capacity,
            batch_check_digit=ident.batch_check_digit,
            short_serial_check_digit=ident.short_serial_check_digit,
            max_bulk_serials=ident.max_bulk_serials,
            default_actor=actor,
        )
        self._ledger = MovementLedger(
            session,
            self._clock,
            allocator,
            unit_of_measure=self._settings.ledger.unit_of_measure,
            default_actor=actor,
        )
        self._selector = MovementSelector(session)
        self._cache = StockCacheService(session, self._clock)
        self._reconciliation = ReconciliationService(session, self._clock, self._cache)
        self._batches = BatchService(session, self._clock, actor)
        self._serials = SerialService(session, self._clock, actor)

    @property
    def settings(self) -> StockSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    def generate_batch_number(
        self,
        site_id: int,
        batch_type: int,
        *,
        batch_date: date | None = None,
        requested_by: str | None = None,
        reason: str | None = None,
    ) -> str:
        return self._identifiers.generate_batch_number(
            site_id, batch_type,
            batch_date=batch_date, requested_by=requested_by, reason=reason,
        )

    def generate_full_serial_number(
        self,
        site_id: int,
        strain_id: int,
        product_type: int,
        batch_number: str,
        unit_sequence: int | None = None,
        weight_grams: Decimal | int | str = 0,
        *,
        serial_date: date | None = None,
        requested_by: str | None = None,
        reason: str | None = None,
    ) -> str:
        return self._identifiers.generate_full_serial_number(
            site_id, strain_id, product_type, batch_number, unit_sequence, weight_grams,
            serial_date=serial_date, requested_by=requested_by, reason=reason,
        )

    def generate_short_serial_number(
        self,
        site_id: int,
        *,
        serial_date: date | None = None,
        requested_by: str | None = None,
        reason: str | None = None,
    ) -> str:
        return self._identifiers.generate_short_serial_number(
            site_id, serial_date=serial_date, requested_by=requested_by, reason=reason,
        )

    def generate_serial_pair(self, *args, **kwargs) -> SerialPair:
        return self._identifiers.generate_serial_pair(*args, **kwargs)

    def generate_bulk_serials(self, *args, **kwargs) -> list[SerialPair]:
        return self._identifiers.generate_bulk_serials(*args, **kwargs)

    @staticmethod
    def validate_check_digit(identifier: str) -> bool:
        return validate_check_digit(identifier)

    # ------------------------------------------------------------------
    # Movements
    # ------------------------------------------------------------------

    def record_movement(self, spec: MovementSpec) -> MovementRecord:
        """
        Append a movement and fold it into the SOH cache.

        Raises:
            InsufficientStockError: Policy ``block`` and the withdrawal
                exceeds the batch's stock on hand.
            IdempotencyConflictError: Key reused with a different payload.
        """
        if self._settings.ledger.negative_stock_policy == "block":
            self._check_available(spec)

        result = self._ledger.append_with_result(spec)
        if result.created:
            self._cache.incremental_apply(result.record)
        return result.record

    def _check_available(self, spec: MovementSpec) -> None:
        if spec.direction is not MovementDirection.OUT:
            return
        if spec.idempotency_key and self._selector.find_by_idempotency_key(spec.idempotency_key):
            # Replay; the append returns the stored row
            return

        available = self._cache.full_recompute(
            spec.product_id, spec.site_id, batch_number=batch_key(spec.batch_number),
        )
        if available - spec.quantity < 0:
            logger.warning(
                "negative_stock_blocked",
                extra={
                    "product_id": spec.product_id,
                    "site_id": spec.site_id,
                    "batch_number": spec.batch_number,
                    "available": available,
                    "requested": spec.quantity,
                },
            )
            raise InsufficientStockError(
                spec.product_id,
                spec.site_id,
                spec.batch_number,
                str(available),
                str(spec.quantity),
            )

    def void_movement(self, movement_id: UUID, reason: str, actor: str | None = None) -> VoidResult:
        result = self._ledger.void(movement_id, reason, actor)
        self._cache.apply_void(result)
        return result

    def void_transaction(
        self,
        transaction_type: str,
        transaction_ref: str,
        reason: str,
        actor: str | None = None,
    ) -> list[VoidResult]:
        results = self._ledger.void_transaction(transaction_type, transaction_ref, reason, actor)
        for result in results:
            self._cache.apply_void(result)
        return results

    def query_movements(
        self,
        product_id: int,
        site_id: int | None = None,
        batch_number: str | None = None,
        as_of: datetime | None = None,
    ) -> list[MovementRecord]:
        return self._selector.query(product_id, site_id, batch_number, as_of)

    def batch_movements(self, batch_number: str) -> list[MovementRecord]:
        return self._selector.by_batch(batch_number)

    def serial_movements(self, serial_number: str) -> list[MovementRecord]:
        return self._selector.by_serial(serial_number)

    # ------------------------------------------------------------------
    # Stock on hand
    # ------------------------------------------------------------------

    def get_stock_on_hand(
        self,
        product_id: int,
        site_id: int,
        batch_number: str | None = None,
        as_of: datetime | None = None,
    ) -> Decimal:
        """
        Stock on hand, from the cache for the present and the ledger for
        any ``as_of``.

        A key the cache has never seen falls back to the ledger.  Pass
        UNBATCHED for the stock recorded without a batch.
        """
        if as_of is None:
            level = self._cache.get_cached(product_id, site_id, batch_number or SITE_TOTAL)
            if level is not None:
                return round_quantity(level.quantity)
        return self._cache.full_recompute(product_id, site_id, as_of, batch_number)

    def reconcile(
        self,
        product_id: int | None = None,
        site_id: int | None = None,
        since: datetime | None = None,
        notify: bool = True,
    ) -> list[DriftReport]:
        """
        Repair cache drift inside the caller's transaction.

        With ``notify`` the drift listeners run before this returns, so
        before the caller commits; a rolled-back caller has still notified
        them.  Pass ``notify=False`` and call ``publish_drift(reports)``
        after the commit to hear only about committed repairs.
        """
        return self._reconciliation.reconcile(product_id, site_id, since, notify=notify)

    def publish_drift(self, reports: list[DriftReport]) -> None:
        self._reconciliation.publish(reports)

    def add_drift_listener(self, listener: DriftListener) -> None:
        self._reconciliation.add_listener(listener)

    def rebuild_cache(self, product_id: int | None = None, site_id: int | None = None) -> int:
        return self._cache.rebuild(product_id, site_id)

    # ------------------------------------------------------------------
    # Traceability
    # ------------------------------------------------------------------

    def register_batch(
        self,
        batch_number: str,
        *,
        source_batch_number: str | None = None,
        product_id: int | None = None,
        notes: str | None = None,
        actor: str | None = None,
    ) -> BatchInfo:
        return self._batches.register(
            batch_number,
            source_batch_number=source_batch_number,
            product_id=product_id,
            notes=notes,
            actor=actor,
        )

    def get_batch(self, batch_number: str) -> BatchInfo:
        return self._batches.get(batch_number)

    def batch_lineage(self, batch_number: str) -> list[BatchInfo]:
        return self._batches.lineage(batch_number)

    def batch_descendants(self, batch_number: str) -> list[BatchInfo]:
        return self._batches.descendants(batch_number)

    def change_batch_status(self, batch_number: str, new_status: BatchStatus | str) -> BatchInfo:
        return self._batches.change_status(batch_number, new_status)

    def register_serial(
        self,
        full_serial_number: str,
        short_serial_number: str,
        batch_number: str,
        product_id: int,
        *,
        actor: str | None = None,
    ) -> SerialInfo:
        return self._serials.register(
            full_serial_number, short_serial_number, batch_number, product_id, actor=actor,
        )

    def get_serial(self, serial_number: str) -> SerialInfo:
        return self._serials.get(serial_number)

    def change_serial_status(
        self,
        serial_number: str,
        new_status: SerialStatus | str,
        *,
        customer_ref: str | None = None,
        reason: str | None = None,
    ) -> SerialInfo:
        return self._serials.change_status(
            serial_number, new_status, customer_ref=customer_ref, reason=reason,
        )
