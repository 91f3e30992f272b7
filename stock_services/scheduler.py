"""
ReconciliationScheduler -- in-process polling loop for cache reconciliation.

Contract:
    Every ``interval_seconds`` opens a session, reconciles keys with
    movements recorded within the last ``lookback_hours`` and commits the
    repairs.  ``tick(full=True)`` checks every cache row instead.

Architecture: stock_services.  Uses ReconciliationService for the work and
    an injected session factory for transaction boundaries.

Invariants enforced:
    - All timestamps come from the injected Clock.
    - Graceful shutdown: stop() sets the stop event; the loop finishes the
      tick in progress and exits.
    - A failing tick is rolled back and logged; the loop keeps running.
    - Listeners hear about a drift only after its repair is committed.  A
      tick whose commit fails notifies no one.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from datetime import timedelta

from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.logging_config import get_logger

from stock_services.reconciliation_service import DriftListener, ReconciliationService

logger = get_logger("services.scheduler")


class ReconciliationScheduler:
    """
    Background reconciliation on a fixed interval.

    Non-goals:
        - NOT a distributed scheduler (no leader election).  Running two
          instances is safe but wasteful: both repair to the same value.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        interval_seconds: float = 300.0,
        lookback_hours: int = 24,
        listeners: Iterable[DriftListener] = (),
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._interval = interval_seconds
        self._lookback = timedelta(hours=lookback_hours)
        self._listeners = list(listeners)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @classmethod
    def from_settings(cls, session_factory, settings, clock: Clock | None = None, listeners=()):
        return cls(
            session_factory,
            clock=clock,
            interval_seconds=settings.reconciliation.interval_seconds,
            lookback_hours=settings.reconciliation.lookback_hours,
            listeners=listeners,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self, full: bool = False) -> int:
        """Run one reconciliation pass (public for testing).

        Returns the number of drifts repaired.
        """
        since = None if full else self._clock.now() - self._lookback
        session = self._session_factory()
        try:
            service = ReconciliationService(session, self._clock)
            for listener in self._listeners:
                service.add_listener(listener)
            reports = service.reconcile(since=since, notify=False)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("reconciliation_tick_failed")
            return 0
        finally:
            session.close()
        service.publish(reports)
        return len(reports)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="reconciliation-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the loop to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._interval)
