"""
End-to-end tests through StockLedger, the external interface.

Identifiers are issued, movements recorded against them, SOH read back from
the cache and the ledger, and drift repaired, all in one session.
"""

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from stock_kernel.domain.dtos import MovementSpec
from stock_kernel.domain.values import UNBATCHED, BatchStatus, BatchType, SerialStatus, TransactionType
from stock_kernel.exceptions import InsufficientStockError
from stock_kernel.models.stock_level import SITE_TOTAL
from stock_config import IdentifierSettings, LedgerSettings, StockSettings
from stock_services.stock_ledger import StockLedger

FLOWER = 101
PREROLL = 202


def _movement(transaction_type, quantity, batch_number, product_id=FLOWER, **kwargs):
    return MovementSpec(
        product_id=product_id,
        site_id=1,
        quantity=Decimal(quantity),
        transaction_type=transaction_type,
        transaction_ref=kwargs.pop("transaction_ref", "REF-1"),
        batch_number=batch_number,
        **kwargs,
    )


@pytest.fixture
def blocking_ledger(session, deterministic_clock):
    settings = StockSettings(ledger=LedgerSettings(negative_stock_policy="block"))
    return StockLedger(session, settings, deterministic_clock)


class TestProductionFlow:

    def test_cultivation_to_preroll(self, stock_ledger):
        cult = stock_ledger.generate_batch_number(1, BatchType.CULTIVATION)
        prod = stock_ledger.generate_batch_number(1, BatchType.PRODUCTION)
        stock_ledger.register_batch(cult, product_id=FLOWER)
        stock_ledger.register_batch(prod, source_batch_number=cult, product_id=PREROLL)

        stock_ledger.record_movement(_movement(TransactionType.GRV, "1000", cult))
        stock_ledger.record_movement(_movement(TransactionType.PRODUCTION_INPUT, "1000", cult))
        stock_ledger.record_movement(
            _movement(TransactionType.PRODUCTION_OUTPUT, "95", prod, product_id=PREROLL)
        )

        assert stock_ledger.get_stock_on_hand(FLOWER, 1, cult) == Decimal("0")
        assert stock_ledger.get_stock_on_hand(PREROLL, 1, prod) == Decimal("95")
        assert [b.batch_number for b in stock_ledger.batch_lineage(prod)] == [prod, cult]
        assert [b.batch_number for b in stock_ledger.batch_descendants(cult)] == [prod]
        assert len(stock_ledger.batch_movements(cult)) == 2

    def test_serialized_units(self, stock_ledger):
        batch = stock_ledger.generate_batch_number(1, BatchType.PRODUCTION)
        pairs = stock_ledger.generate_bulk_serials(2, 1, 101, 2, batch, Decimal("0.5"), PREROLL)

        first = pairs[0]
        assert stock_ledger.validate_check_digit(first.full_serial_number)
        assert stock_ledger.get_serial(first.short_serial_number).status == "AVAILABLE"

        stock_ledger.record_movement(_movement(
            TransactionType.PRODUCTION_OUTPUT, "1", batch,
            product_id=PREROLL, serial_number=first.full_serial_number,
        ))
        stock_ledger.record_movement(_movement(
            TransactionType.SALE, "1", batch,
            product_id=PREROLL, serial_number=first.full_serial_number,
        ))
        sold = stock_ledger.change_serial_status(
            first.full_serial_number, SerialStatus.SOLD, customer_ref="C-1",
        )

        assert sold.customer_ref == "C-1"
        assert len(stock_ledger.serial_movements(first.full_serial_number)) == 2
        assert stock_ledger.get_stock_on_hand(PREROLL, 1, batch) == Decimal("0")

    def test_batch_recall(self, stock_ledger):
        batch = stock_ledger.generate_batch_number(1, BatchType.PRODUCTION)
        stock_ledger.register_batch(batch)
        assert stock_ledger.change_batch_status(batch, BatchStatus.RECALLED).status == "RECALLED"
        assert stock_ledger.get_batch(batch).status == "RECALLED"


class TestRecordMovement:

    def test_replay_not_applied_twice(self, stock_ledger):
        spec = _movement(TransactionType.GRV, "10", "CULT-001", idempotency_key="grv-1")
        first = stock_ledger.record_movement(spec)
        second = stock_ledger.record_movement(spec)

        assert first.id == second.id
        assert stock_ledger.get_stock_on_hand(FLOWER, 1) == Decimal("10")
        assert stock_ledger.reconcile() == []

    def test_warn_policy_records_negative(self, stock_ledger, captured_logs):
        stock_ledger.record_movement(_movement(TransactionType.SALE, "3", "CULT-001"))
        assert stock_ledger.get_stock_on_hand(FLOWER, 1) == Decimal("-3")
        assert any(r["message"] == "negative_stock_warning" for r in captured_logs())

    def test_block_policy_rejects_oversell(self, blocking_ledger, captured_logs):
        blocking_ledger.record_movement(_movement(TransactionType.GRV, "5", "CULT-001"))

        with pytest.raises(InsufficientStockError) as exc_info:
            blocking_ledger.record_movement(_movement(TransactionType.SALE, "6", "CULT-001"))

        assert exc_info.value.available == "5.0000"
        assert exc_info.value.requested == "6"
        assert blocking_ledger.get_stock_on_hand(FLOWER, 1) == Decimal("5")
        assert any(r["message"] == "negative_stock_blocked" for r in captured_logs())

    def test_block_policy_is_per_batch(self, blocking_ledger):
        blocking_ledger.record_movement(_movement(TransactionType.GRV, "5", "CULT-001"))
        with pytest.raises(InsufficientStockError):
            blocking_ledger.record_movement(_movement(TransactionType.SALE, "1", "CULT-002"))

    def test_block_policy_batchless_sale_ignores_batches(self, blocking_ledger):
        blocking_ledger.record_movement(_movement(TransactionType.GRV, "5", "CULT-001"))
        blocking_ledger.record_movement(_movement(TransactionType.GRV, "2", None))

        with pytest.raises(InsufficientStockError) as exc_info:
            blocking_ledger.record_movement(_movement(TransactionType.SALE, "3", None))

        assert exc_info.value.batch_number is None
        assert exc_info.value.available == "2.0000"
        blocking_ledger.record_movement(_movement(TransactionType.SALE, "2", None))
        assert blocking_ledger.get_stock_on_hand(FLOWER, 1, UNBATCHED) == Decimal("0")

    def test_block_policy_allows_exact_depletion_and_inbound(self, blocking_ledger):
        blocking_ledger.record_movement(_movement(TransactionType.GRV, "5", "CULT-001"))
        blocking_ledger.record_movement(_movement(TransactionType.SALE, "5", "CULT-001"))
        blocking_ledger.record_movement(_movement(TransactionType.REFUND, "1", "CULT-001"))
        assert blocking_ledger.get_stock_on_hand(FLOWER, 1, "CULT-001") == Decimal("1")

    def test_block_policy_replay_of_withdrawal(self, blocking_ledger):
        blocking_ledger.record_movement(_movement(TransactionType.GRV, "5", "CULT-001"))
        sale = _movement(TransactionType.SALE, "5", "CULT-001", idempotency_key="sale-1")
        first = blocking_ledger.record_movement(sale)
        assert blocking_ledger.record_movement(sale).id == first.id


class TestVoidAndAsOf:

    def test_void_restores_pre_movement_balance(self, stock_ledger, deterministic_clock):
        stock_ledger.record_movement(_movement(TransactionType.GRV, "100", "CULT-001"))
        deterministic_clock.advance(60)
        sale = stock_ledger.record_movement(_movement(TransactionType.SALE, "30", "CULT-001"))
        before_void = deterministic_clock.now()
        deterministic_clock.advance(60)

        result = stock_ledger.void_movement(sale.id, "till error", actor="manager")
        after_void = deterministic_clock.now() + timedelta(seconds=1)

        assert result.compensation.actor == "manager"
        assert stock_ledger.get_stock_on_hand(FLOWER, 1) == Decimal("100")
        assert stock_ledger.get_stock_on_hand(FLOWER, 1, as_of=before_void) == Decimal("70")
        assert stock_ledger.get_stock_on_hand(FLOWER, 1, as_of=after_void) == Decimal("100")
        assert stock_ledger.reconcile() == []

    def test_void_transaction(self, stock_ledger):
        stock_ledger.record_movement(_movement(TransactionType.GRV, "50", "CULT-001"))
        for _ in range(2):
            stock_ledger.record_movement(
                _movement(TransactionType.SALE, "10", "CULT-001", transaction_ref="INV-5")
            )

        results = stock_ledger.void_transaction(TransactionType.SALE, "INV-5", "refunded")

        assert len(results) == 2
        assert stock_ledger.get_stock_on_hand(FLOWER, 1) == Decimal("50")

    def test_query_movements(self, stock_ledger, deterministic_clock):
        grv = stock_ledger.record_movement(_movement(TransactionType.GRV, "50", "CULT-001"))
        t0 = deterministic_clock.now()
        deterministic_clock.advance(10)
        stock_ledger.void_movement(grv.id, "duplicate delivery note")

        assert [m.id for m in stock_ledger.query_movements(FLOWER, 1, as_of=t0)] == [grv.id]
        current = stock_ledger.query_movements(FLOWER, 1)
        assert len(current) == 1 and current[0].is_compensation


class TestStockOnHandSources:

    def test_rebuilt_cache_and_unknown_key(self, stock_ledger):
        stock_ledger.record_movement(_movement(TransactionType.GRV, "8", "CULT-001"))
        stock_ledger.rebuild_cache()
        assert stock_ledger.get_stock_on_hand(FLOWER, 1, "CULT-001") == Decimal("8")
        assert stock_ledger.get_stock_on_hand(FLOWER, 1, SITE_TOTAL) == Decimal("8")
        assert stock_ledger.get_stock_on_hand(999, 1) == Decimal("0")

    def test_batchless_stock(self, stock_ledger, deterministic_clock):
        stock_ledger.record_movement(_movement(TransactionType.GRV, "8", "CULT-001"))
        loose = stock_ledger.record_movement(_movement(TransactionType.GRV, "3", None))
        t0 = deterministic_clock.now()
        deterministic_clock.advance(60)
        stock_ledger.record_movement(_movement(TransactionType.SALE, "1", None))

        assert loose.batch_number is None
        assert stock_ledger.get_stock_on_hand(FLOWER, 1, UNBATCHED) == Decimal("2")
        assert stock_ledger.get_stock_on_hand(FLOWER, 1, UNBATCHED, as_of=t0) == Decimal("3")
        assert stock_ledger.get_stock_on_hand(FLOWER, 1, "CULT-001") == Decimal("8")
        assert stock_ledger.get_stock_on_hand(FLOWER, 1) == Decimal("10")
        assert stock_ledger.reconcile() == []

    def test_drift_listener(self, stock_ledger, session):
        from stock_kernel.services.stock_cache_service import StockCacheService

        stock_ledger.record_movement(_movement(TransactionType.GRV, "100", "CULT-001"))
        StockCacheService(session).set_cached(FLOWER, 1, "CULT-001", Decimal("110"))

        events = []
        stock_ledger.add_drift_listener(events.append)
        reports = stock_ledger.reconcile(FLOWER, 1)

        assert len(reports) == 1
        assert events[0].delta == Decimal("10")
        assert stock_ledger.get_stock_on_hand(FLOWER, 1, "CULT-001") == Decimal("100")

    def test_drift_published_after_caller_commit(self, stock_ledger, session):
        from stock_kernel.services.stock_cache_service import StockCacheService

        stock_ledger.record_movement(_movement(TransactionType.GRV, "100", "CULT-001"))
        StockCacheService(session).set_cached(FLOWER, 1, "CULT-001", Decimal("110"))
        events = []
        stock_ledger.add_drift_listener(events.append)

        reports = stock_ledger.reconcile(notify=False)
        assert events == []

        stock_ledger.publish_drift(reports)
        assert [e.report for e in events] == reports


class TestSettingsWiring:

    def test_check_digits_switched_off(self, session, deterministic_clock):
        settings = replace(
            StockSettings(),
            identifiers=IdentifierSettings(batch_check_digit=False, short_serial_check_digit=False),
        )
        ledger = StockLedger(session, settings, deterministic_clock)

        assert len(ledger.generate_batch_number(1, 2)) == 16
        assert len(ledger.generate_short_serial_number(1)) == 13

    def test_default_settings_loaded(self, session, deterministic_clock, monkeypatch):
        monkeypatch.delenv("STOCK_LEDGER_CONFIG", raising=False)
        ledger = StockLedger(session, clock=deterministic_clock)
        assert ledger.settings.config_id == "default"
        assert len(ledger.generate_batch_number(1, 2)) == 17
        assert len(ledger.generate_short_serial_number(1)) == 14
