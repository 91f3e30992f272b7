"""
Tests for SerialService: registration of serial pairs and the unit lifecycle.
"""

from datetime import date
from decimal import Decimal

import pytest

from stock_kernel.domain.identifiers import (
    format_full_serial_number,
    format_short_serial_number,
)
from stock_kernel.domain.values import SerialStatus
from stock_kernel.exceptions import (
    CheckDigitMismatchError,
    DuplicateIdentifierError,
    InvalidArgumentError,
    InvalidStatusTransitionError,
    SerialNotFoundError,
)

DAY = date(2025, 1, 15)
BATCH = "0102202501150001"
FULL = format_full_serial_number(1, 305, 4, DAY, 1, 1, 100)
SHORT = format_short_serial_number(1, DAY, 1)


@pytest.fixture
def unit(serial_service):
    return serial_service.register(FULL, SHORT, BATCH, product_id=10)


class TestRegister:

    def test_fields_read_from_serial(self, unit):
        assert unit.full_serial_number == FULL
        assert unit.short_serial_number == SHORT
        assert unit.site_id == 1
        assert unit.strain_id == 305
        assert unit.product_type == 4
        assert unit.unit_sequence == 1
        assert unit.weight_grams == Decimal("1.00")
        assert unit.status == SerialStatus.AVAILABLE.value

    def test_batch_must_match_serial(self, serial_service):
        with pytest.raises(InvalidArgumentError) as exc_info:
            serial_service.register(FULL, SHORT, "0102202501150002", product_id=10)
        assert exc_info.value.argument == "batch_number"

    def test_bad_check_rejected(self, serial_service):
        wrong = FULL[:-1] + str((int(FULL[-1]) + 1) % 10)
        with pytest.raises(CheckDigitMismatchError):
            serial_service.register(wrong, SHORT, BATCH, product_id=10)

    def test_duplicate(self, serial_service, unit):
        with pytest.raises(DuplicateIdentifierError) as exc_info:
            serial_service.register(FULL, format_short_serial_number(1, DAY, 2), BATCH, product_id=10)
        assert exc_info.value.kind == "SERIAL"

    def test_lookup_by_either_number(self, serial_service, unit):
        assert serial_service.get(FULL) == serial_service.get(SHORT)

    def test_unknown(self, serial_service):
        with pytest.raises(SerialNotFoundError):
            serial_service.get("0125011599999")

    def test_by_batch(self, serial_service, unit):
        second = format_full_serial_number(1, 305, 4, DAY, 1, 2, 100)
        serial_service.register(second, format_short_serial_number(1, DAY, 2), BATCH, product_id=10)
        assert [s.unit_sequence for s in serial_service.by_batch(BATCH)] == [1, 2]


class TestLifecycle:

    def test_sale_records_customer(self, serial_service, unit, deterministic_clock):
        sold = serial_service.change_status(SHORT, SerialStatus.SOLD, customer_ref="CUST-9")
        assert sold.status == "SOLD"
        assert sold.sold_at == deterministic_clock.now()
        assert sold.customer_ref == "CUST-9"

    def test_return_then_resell(self, serial_service, unit):
        serial_service.change_status(FULL, SerialStatus.SOLD)
        serial_service.change_status(FULL, SerialStatus.RETURNED)
        assert serial_service.change_status(FULL, "AVAILABLE").status == "AVAILABLE"

    def test_destroy_requires_reason(self, serial_service, unit):
        with pytest.raises(InvalidArgumentError):
            serial_service.change_status(FULL, SerialStatus.DESTROYED)
        destroyed = serial_service.change_status(FULL, SerialStatus.DESTROYED, reason="mould")
        assert destroyed.destruction_reason == "mould"

    def test_destroyed_is_terminal(self, serial_service, unit):
        serial_service.change_status(FULL, SerialStatus.DESTROYED, reason="mould")
        with pytest.raises(InvalidStatusTransitionError):
            serial_service.change_status(FULL, SerialStatus.AVAILABLE)

    def test_cannot_return_unsold(self, serial_service, unit):
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            serial_service.change_status(FULL, SerialStatus.RETURNED)
        assert exc_info.value.entity_id == FULL

    def test_status_change_logged(self, serial_service, unit, captured_logs):
        serial_service.change_status(FULL, SerialStatus.SOLD)
        (log,) = [r for r in captured_logs() if r["message"] == "serial_status_changed"]
        assert log["from_status"] == "AVAILABLE"
        assert log["to_status"] == "SOLD"
