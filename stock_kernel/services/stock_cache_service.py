"""
StockCacheService -- the stock-on-hand projection.

Responsibility:
    Maintains stock_levels, a derived cache of signed movement totals per
    (product, site, batch) plus one site-total row per (product, site).
    Answers point-in-time questions from the ledger and current-time
    questions from the cache.

Architecture position:
    Kernel > Services -- imperative shell.  The ledger is authoritative;
    this module never decides what stock is, it only remembers a sum.

Invariants enforced:
    - Each applied movement changes its batch row and its site-total row by
      exactly its signed quantity, in one UPDATE per row, so concurrent
      applications to the same key serialize on the row and none is lost.
    - Movements without a batch share the UNBATCHED row, which is separate
      from the site-total row.
    - Application order does not matter: addition commutes and the
      last_movement_* columns keep the maximum, not the latest write.
    - A void is applied as its compensation.  The original's +q and the
      compensation's -q leave the cache where it was before the original.
    - rebuild() reproduces the same rows from the movements table alone.

Failure modes:
    - None of its own.  A negative resulting quantity is logged
      (``negative_stock_warning``), not rejected; the facade decides policy.

Audit relevance:
    Cache rows carry no audit value; drift between them and the ledger is
    found and repaired by ReconciliationService.
"""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import case, delete, literal, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.db.base import UTCDateTime
from stock_kernel.db.types import round_quantity
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import MovementRecord, StockLevel, VoidResult
from stock_kernel.domain.values import batch_key
from stock_kernel.logging_config import get_logger
from stock_kernel.models.stock_level import SITE_TOTAL, StockLevelCache
from stock_kernel.selectors.movement_selector import MovementSelector
from stock_kernel.services.base import BaseService

logger = get_logger("services.stock_cache")


class StockCacheService(BaseService[StockLevelCache]):
    """
    SOH projection over the movement ledger.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT cache historical (as-of) balances; those always come from
          the ledger.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._selector = MovementSelector(session)

    # ------------------------------------------------------------------
    # Ledger-derived
    # ------------------------------------------------------------------

    def full_recompute(
        self,
        product_id: int,
        site_id: int,
        as_of: datetime | None = None,
        batch_number: str | None = None,
    ) -> Decimal:
        """Authoritative SOH at ``as_of`` (None means now), straight from the ledger."""
        return self._selector.stock_on_hand(product_id, site_id, batch_number, as_of)

    # ------------------------------------------------------------------
    # Incremental maintenance
    # ------------------------------------------------------------------

    def incremental_apply(self, record: MovementRecord) -> Decimal:
        """
        Fold one appended movement into the cache.

        Returns:
            The site-total quantity after the update.
        """
        delta = record.signed_quantity
        self._apply(record.product_id, record.site_id, batch_key(record.batch_number), delta, record)
        site_total = self._apply(record.product_id, record.site_id, SITE_TOTAL, delta, record)

        if site_total < 0:
            logger.warning(
                "negative_stock_warning",
                extra={
                    "product_id": record.product_id,
                    "site_id": record.site_id,
                    "batch_number": record.batch_number,
                    "quantity": site_total,
                    "movement_id": str(record.id),
                },
            )
        else:
            logger.debug(
                "stock_cache_applied",
                extra={
                    "product_id": record.product_id,
                    "site_id": record.site_id,
                    "batch_number": record.batch_number,
                    "delta": delta,
                    "quantity": site_total,
                },
            )
        return site_total

    def apply_void(self, result: VoidResult) -> Decimal:
        return self.incremental_apply(result.compensation)

    def _apply(
        self,
        product_id: int,
        site_id: int,
        batch_number: str,
        delta: Decimal,
        record: MovementRecord,
    ) -> Decimal:
        self._ensure_row(product_id, site_id, batch_number)

        newer = or_(
            StockLevelCache.last_movement_seq.is_(None),
            StockLevelCache.last_movement_seq < record.seq,
        )
        stmt = (
            update(StockLevelCache)
            .where(
                StockLevelCache.product_id == product_id,
                StockLevelCache.site_id == site_id,
                StockLevelCache.batch_number == batch_number,
            )
            .values(
                quantity=StockLevelCache.quantity + delta,
                movement_count=StockLevelCache.movement_count + 1,
                last_movement_seq=case(
                    (newer, record.seq), else_=StockLevelCache.last_movement_seq,
                ),
                last_movement_recorded_at=case(
                    (newer, literal(record.recorded_at, UTCDateTime())),
                    else_=StockLevelCache.last_movement_recorded_at,
                ),
                as_of=self._clock.now(),
            )
            .returning(StockLevelCache.quantity)
            .execution_options(synchronize_session=False)
        )
        return round_quantity(self.session.execute(stmt).scalar_one())

    def _ensure_row(self, product_id: int, site_id: int, batch_number: str) -> None:
        values = {
            "id": uuid4(),
            "product_id": product_id,
            "site_id": site_id,
            "batch_number": batch_number,
            "quantity": Decimal("0"),
            "movement_count": 0,
        }
        dialect = self.session.get_bind().dialect.name

        if dialect in ("postgresql", "sqlite"):
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            self.session.execute(
                insert(StockLevelCache)
                .values(**values)
                .on_conflict_do_nothing(
                    index_elements=["product_id", "site_id", "batch_number"],
                )
            )
            return

        if self._row(product_id, site_id, batch_number) is not None:
            return
        savepoint = self.session.begin_nested()
        try:
            self.session.add(StockLevelCache(**values))
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()

    # ------------------------------------------------------------------
    # Cache reads and writes
    # ------------------------------------------------------------------

    def _row(self, product_id: int, site_id: int, batch_number: str) -> StockLevelCache | None:
        return self.session.execute(
            select(StockLevelCache)
            .where(
                StockLevelCache.product_id == product_id,
                StockLevelCache.site_id == site_id,
                StockLevelCache.batch_number == batch_number,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_cached(
        self,
        product_id: int,
        site_id: int,
        batch_number: str = SITE_TOTAL,
    ) -> StockLevel | None:
        row = self._row(product_id, site_id, batch_number or SITE_TOTAL)
        return StockLevel.from_model(row) if row is not None else None

    def get_cached_quantity(
        self,
        product_id: int,
        site_id: int,
        batch_number: str = SITE_TOTAL,
    ) -> Decimal:
        """Cached SOH, or zero when no movement has touched the key."""
        level = self.get_cached(product_id, site_id, batch_number)
        return round_quantity(level.quantity if level is not None else None)

    def list_cached(
        self,
        product_id: int | None = None,
        site_id: int | None = None,
    ) -> list[StockLevel]:
        stmt = select(StockLevelCache).execution_options(populate_existing=True)
        if product_id is not None:
            stmt = stmt.where(StockLevelCache.product_id == product_id)
        if site_id is not None:
            stmt = stmt.where(StockLevelCache.site_id == site_id)
        stmt = stmt.order_by(
            StockLevelCache.product_id, StockLevelCache.site_id, StockLevelCache.batch_number,
        )
        return [StockLevel.from_model(row) for row in self.session.scalars(stmt)]

    def set_cached(
        self,
        product_id: int,
        site_id: int,
        batch_number: str,
        quantity: Decimal,
    ) -> StockLevel:
        """
        Overwrite one cache row's quantity.

        Used by reconciliation to repair drift; normal maintenance goes
        through incremental_apply().
        """
        batch_number = batch_number or SITE_TOTAL
        row = self._row(product_id, site_id, batch_number)
        if row is None:
            row = StockLevelCache(
                product_id=product_id,
                site_id=site_id,
                batch_number=batch_number,
                movement_count=0,
            )
            self.session.add(row)
        row.quantity = round_quantity(quantity)
        row.as_of = self._clock.now()
        self.session.flush()
        return StockLevel.from_model(row)

    def drop(self, product_id: int | None = None, site_id: int | None = None) -> int:
        """Delete cache rows.  The ledger is untouched."""
        stmt = delete(StockLevelCache).execution_options(synchronize_session=False)
        if product_id is not None:
            stmt = stmt.where(StockLevelCache.product_id == product_id)
        if site_id is not None:
            stmt = stmt.where(StockLevelCache.site_id == site_id)
        deleted = self.session.execute(stmt).rowcount
        self.session.expire_all()
        return deleted

    def rebuild(self, product_id: int | None = None, site_id: int | None = None) -> int:
        """
        Drop and recreate cache rows from the movements table.

        Returns:
            Number of rows written.
        """
        self.drop(product_id, site_id)

        now = self._clock.now()
        totals = (
            self._selector.ledger_totals(product_id, site_id, per_batch=True)
            + self._selector.ledger_totals(product_id, site_id, per_batch=False)
        )
        for total in totals:
            self.session.add(StockLevelCache(
                product_id=total.product_id,
                site_id=total.site_id,
                batch_number=total.batch_number,
                quantity=total.quantity,
                movement_count=total.movement_count,
                last_movement_recorded_at=total.last_movement_recorded_at,
                last_movement_seq=total.last_movement_seq,
                as_of=now,
            ))
        self.session.flush()

        logger.info(
            "stock_cache_rebuilt",
            extra={"product_id": product_id, "site_id": site_id, "rows": len(totals)},
        )
        return len(totals)
