"""
stock_services.reconciliation_service -- cache audit against ledger truth.

Responsibility:
    Compares every stock_levels row (and every key with ledger activity)
    with the authoritative recompute from the movements table.  A mismatch
    is repaired in place, persisted as a DriftReportRecord, logged and
    published to listeners as a DriftDetected event.

Architecture position:
    Services -- orchestration over kernel services.  Run periodically by
    ReconciliationScheduler and on demand through the StockLedger facade.

Invariants enforced:
    - The ledger is never modified; only cache rows are rewritten.
    - delta = cached - ledger, both rounded to four decimal places before
      comparison.
    - A key with movements but no cache row is compared as cached = 0.
    - Listeners are notified only after the repair and the report are
      flushed.  ``reconcile(notify=False)`` defers notification so a caller
      that owns the transaction can ``publish()`` the reports once its
      commit succeeds; ReconciliationScheduler does this.

Failure modes:
    - Database errors propagate; the caller's transaction rolls back and no
      partial repair survives.
    - A listener that raises is logged and skipped; the remaining listeners
      still run.

Audit relevance:
    Every drift yields one ``drift_detected`` WARNING and one persisted
    report.  ``reconciliation_completed`` summarizes each run.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from sqlalchemy.orm import Session

from stock_kernel.db.types import round_quantity
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import DriftDetected, DriftReport
from stock_kernel.logging_config import get_logger
from stock_kernel.models.drift_report import DriftReportRecord
from stock_kernel.models.stock_level import SITE_TOTAL
from stock_kernel.selectors.movement_selector import MovementSelector
from stock_kernel.services.stock_cache_service import StockCacheService

logger = get_logger("services.reconciliation")

DriftListener = Callable[[DriftDetected], None]


class ReconciliationService:
    """
    Finds and repairs SOH cache drift.

    Non-goals:
        - Does NOT call session.commit() -- caller controls boundaries.
        - Does NOT decide whether a drift is a bug or tampering; it reports.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        cache: StockCacheService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._cache = cache or StockCacheService(session, self._clock)
        self._selector = MovementSelector(session)
        self._listeners: list[DriftListener] = []

    def add_listener(self, listener: DriftListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: DriftListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def reconcile(
        self,
        product_id: int | None = None,
        site_id: int | None = None,
        since: datetime | None = None,
        notify: bool = True,
    ) -> list[DriftReport]:
        """
        Compare cache rows with the ledger and repair every difference.

        Args:
            product_id: Limit to one product.
            site_id: Limit to one site.
            since: Limit to keys with movements recorded after this time.
                None checks every cache row.
            notify: Publish a DriftDetected per report before returning.
                With False nothing is published until ``publish(reports)``.

        Returns:
            One DriftReport per repaired key, in key order.
        """
        cached = {
            (level.product_id, level.site_id, level.batch_number): level.quantity
            for level in self._cache.list_cached(product_id, site_id)
        }
        active = self._selector.keys_with_activity(since, product_id, site_id)
        if since is None:
            keys = set(cached) | active
        else:
            keys = active

        reports = []
        for key in sorted(keys):
            report = self._check(key, cached.get(key))
            if report is not None:
                reports.append(report)

        logger.info(
            "reconciliation_completed",
            extra={
                "product_id": product_id,
                "site_id": site_id,
                "since": since,
                "keys_checked": len(keys),
                "drift_count": len(reports),
            },
        )
        if notify:
            self.publish(reports)
        return reports

    def publish(self, reports: list[DriftReport]) -> None:
        """Notify every listener of each report, in order."""
        for report in reports:
            self._publish(DriftDetected(report))

    def _check(self, key: tuple[int, int, str], cached_quantity) -> DriftReport | None:
        product_id, site_id, batch_number = key
        cached = round_quantity(cached_quantity)
        ledger = round_quantity(
            self._cache.full_recompute(product_id, site_id, batch_number=batch_number or None)
        )
        if cached == ledger:
            return None

        detected_at = self._clock.now()
        delta = cached - ledger
        self._cache.set_cached(product_id, site_id, batch_number, ledger)

        record = DriftReportRecord(
            product_id=product_id,
            site_id=site_id,
            batch_number=batch_number,
            cached_quantity=cached,
            ledger_quantity=ledger,
            delta=delta,
            detected_at=detected_at,
            repaired=True,
        )
        self._session.add(record)
        self._session.flush()

        report = DriftReport(
            product_id=product_id,
            site_id=site_id,
            batch_number=batch_number,
            cached_quantity=cached,
            ledger_quantity=ledger,
            delta=delta,
            detected_at=detected_at,
            repaired=True,
            report_id=record.id,
        )
        logger.warning(
            "drift_detected",
            extra={
                "code": "DRIFT_DETECTED",
                "product_id": product_id,
                "site_id": site_id,
                "batch_number": batch_number if batch_number != SITE_TOTAL else None,
                "cached_quantity": cached,
                "ledger_quantity": ledger,
                "delta": delta,
                "report_id": str(record.id),
            },
        )
        return report

    def _publish(self, event: DriftDetected) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "drift_listener_failed",
                    extra={"report_id": str(event.report.report_id)},
                )
