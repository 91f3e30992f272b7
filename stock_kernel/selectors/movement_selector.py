"""
Module: stock_kernel.selectors.movement_selector
Responsibility: Read-only movement queries: as-of ledger queries, the
    authoritative stock-on-hand aggregate, traceability history and the
    per-key totals used to rebuild and reconcile the SOH cache.
Architecture position: Kernel > Selectors.  May import from models/, domain/
    DTOs and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - As-of visibility: a movement is visible at ``as_of`` when
      ``recorded_at <= as_of`` and it had not been voided by then
      (``voided_at`` is NULL or later than ``as_of``).  Compensations are
      visible from their own ``recorded_at``.
    - SOH is the signed sum (IN +q, OUT -q) of visible movements that are
      not compensations.  A visible compensation always pairs with an
      original that is no longer visible, so both drop out together and a
      void restores the balance from before the original.
    - Ordering key is (recorded_at, seq).

Failure modes:
    - MovementNotFoundError from get().

Audit relevance:
    stock_on_hand() is the ground truth that reconciliation compares the
    cache against.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.orm import Session

from stock_kernel.db.types import round_quantity
from stock_kernel.domain.dtos import MovementRecord
from stock_kernel.domain.values import SITE_TOTAL, UNBATCHED, batch_key
from stock_kernel.exceptions import MovementNotFoundError
from stock_kernel.models.movement import Movement
from stock_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class LedgerTotal:
    """Raw signed total of every movement recorded for one cache key."""

    product_id: int
    site_id: int
    batch_number: str
    quantity: Decimal
    movement_count: int
    last_movement_recorded_at: datetime | None
    last_movement_seq: int | None


def _signed_quantity():
    return case(
        (Movement.direction == "IN", Movement.quantity),
        else_=-Movement.quantity,
    )


class MovementSelector(BaseSelector[Movement]):
    """Read-only access to the movement ledger."""

    def __init__(self, session: Session):
        super().__init__(session)

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------

    @staticmethod
    def _visible_at(as_of: datetime | None):
        """Filter for movements visible at ``as_of`` (None means now)."""
        if as_of is None:
            return Movement.voided.is_(False)
        return and_(
            Movement.recorded_at <= as_of,
            or_(
                Movement.voided.is_(False),
                Movement.voided_at.is_(None),
                Movement.voided_at > as_of,
            ),
        )

    @staticmethod
    def _scope(product_id: int, site_id: int | None, batch_number: str | None):
        # None or SITE_TOTAL spans every batch; UNBATCHED selects rows without one
        clauses = [Movement.product_id == product_id]
        if site_id is not None:
            clauses.append(Movement.site_id == site_id)
        if batch_number == UNBATCHED:
            clauses.append(Movement.batch_number.is_(None))
        elif batch_number:
            clauses.append(Movement.batch_number == batch_number)
        return clauses

    # ------------------------------------------------------------------
    # Ledger queries
    # ------------------------------------------------------------------

    def query(
        self,
        product_id: int,
        site_id: int | None = None,
        batch_number: str | None = None,
        as_of: datetime | None = None,
    ) -> list[MovementRecord]:
        """
        Movements visible at ``as_of``, ordered by (recorded_at, seq).

        Voided originals are excluded once their void is recorded;
        compensations are included.
        """
        stmt = (
            select(Movement)
            .where(*self._scope(product_id, site_id, batch_number))
            .where(self._visible_at(as_of))
            .order_by(Movement.recorded_at, Movement.seq)
        )
        return [MovementRecord.from_model(m) for m in self.session.scalars(stmt)]

    def stock_on_hand(
        self,
        product_id: int,
        site_id: int,
        batch_number: str | None = None,
        as_of: datetime | None = None,
    ) -> Decimal:
        """
        Authoritative SOH: signed sum of visible, non-compensation movements.

        ``batch_number`` of None or '' aggregates across all batches at the
        site; UNBATCHED sums the movements recorded without a batch.
        """
        stmt = (
            select(func.sum(_signed_quantity()))
            .where(*self._scope(product_id, site_id, batch_number))
            .where(self._visible_at(as_of))
            .where(Movement.voids_movement_id.is_(None))
        )
        return round_quantity(self.session.execute(stmt).scalar())

    def get(self, movement_id: UUID) -> MovementRecord:
        movement = self.session.get(Movement, movement_id, populate_existing=True)
        if movement is None:
            raise MovementNotFoundError(str(movement_id))
        return MovementRecord.from_model(movement)

    def find_by_idempotency_key(self, idempotency_key: str) -> MovementRecord | None:
        movement = self.session.execute(
            select(Movement).where(Movement.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        return MovementRecord.from_model(movement) if movement is not None else None

    # ------------------------------------------------------------------
    # Traceability history (every row, voided or not)
    # ------------------------------------------------------------------

    def _history(self, *clauses) -> list[MovementRecord]:
        stmt = (
            select(Movement)
            .where(*clauses)
            .order_by(Movement.recorded_at, Movement.seq)
        )
        return [MovementRecord.from_model(m) for m in self.session.scalars(stmt)]

    def by_batch(self, batch_number: str) -> list[MovementRecord]:
        return self._history(Movement.batch_number == batch_number)

    def by_serial(self, serial_number: str) -> list[MovementRecord]:
        return self._history(Movement.serial_number == serial_number)

    def by_transaction(self, transaction_type: str, transaction_ref: str) -> list[MovementRecord]:
        return self._history(
            Movement.transaction_type == str(getattr(transaction_type, "value", transaction_type)),
            Movement.transaction_ref == transaction_ref,
        )

    def history(
        self,
        product_id: int,
        start: datetime,
        end: datetime,
        site_id: int | None = None,
    ) -> list[MovementRecord]:
        """Movements recorded in ``[start, end]``, including voided ones."""
        clauses = [
            Movement.product_id == product_id,
            Movement.recorded_at >= start,
            Movement.recorded_at <= end,
        ]
        if site_id is not None:
            clauses.append(Movement.site_id == site_id)
        return self._history(*clauses)

    def live_for_transaction(self, transaction_type: str, transaction_ref: str) -> list[UUID]:
        """Ids of not-yet-voided, non-compensation movements of a transaction."""
        stmt = (
            select(Movement.id)
            .where(
                Movement.transaction_type == str(getattr(transaction_type, "value", transaction_type)),
                Movement.transaction_ref == transaction_ref,
                Movement.voided.is_(False),
                Movement.voids_movement_id.is_(None),
            )
            .order_by(Movement.recorded_at, Movement.seq)
        )
        return list(self.session.scalars(stmt))

    # ------------------------------------------------------------------
    # Cache support
    # ------------------------------------------------------------------

    def ledger_totals(
        self,
        product_id: int | None = None,
        site_id: int | None = None,
        per_batch: bool = True,
    ) -> list[LedgerTotal]:
        """
        Signed totals of ALL recorded movements per cache key.

        Voided originals and their compensations are both counted; they
        cancel, so the quantity matches stock_on_hand() at the present
        time while movement_count matches what incremental application of
        every movement would have produced.
        """
        batch_col = Movement.batch_number if per_batch else None
        columns = [Movement.product_id, Movement.site_id]
        if batch_col is not None:
            columns.append(batch_col)

        stmt = select(
            *columns,
            func.sum(_signed_quantity()),
            func.count(Movement.id),
            func.max(Movement.recorded_at),
            func.max(Movement.seq),
        )
        if product_id is not None:
            stmt = stmt.where(Movement.product_id == product_id)
        if site_id is not None:
            stmt = stmt.where(Movement.site_id == site_id)
        stmt = stmt.group_by(*columns).order_by(*columns)

        totals = []
        for row in self.session.execute(stmt):
            if per_batch:
                p, s, b, qty, count, last_at, last_seq = row
                b = batch_key(b)
            else:
                p, s, qty, count, last_at, last_seq = row
                b = SITE_TOTAL
            totals.append(LedgerTotal(
                product_id=p,
                site_id=s,
                batch_number=b,
                quantity=round_quantity(qty),
                movement_count=count,
                last_movement_recorded_at=last_at,
                last_movement_seq=last_seq,
            ))
        return totals

    def keys_with_activity(
        self,
        since: datetime | None = None,
        product_id: int | None = None,
        site_id: int | None = None,
    ) -> set[tuple[int, int, str]]:
        """
        Cache keys touched by movements recorded after ``since``.

        Each movement contributes its batch key and its site-total key.
        """
        stmt = select(Movement.product_id, Movement.site_id, Movement.batch_number).distinct()
        if since is not None:
            stmt = stmt.where(Movement.recorded_at > since)
        if product_id is not None:
            stmt = stmt.where(Movement.product_id == product_id)
        if site_id is not None:
            stmt = stmt.where(Movement.site_id == site_id)

        keys: set[tuple[int, int, str]] = set()
        for p, s, b in self.session.execute(stmt):
            keys.add((p, s, batch_key(b)))
            keys.add((p, s, SITE_TOTAL))
        return keys
