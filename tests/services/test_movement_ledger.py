"""
Tests for MovementLedger: append, idempotent replay, soft-void and the
as-of view of voided movements.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from stock_kernel.domain.values import MovementDirection, TransactionType
from stock_kernel.exceptions import (
    IdempotencyConflictError,
    InvalidArgumentError,
    MovementAlreadyVoidedError,
    MovementNotFoundError,
)
from stock_kernel.logging_config import LogContext
from stock_kernel.models.movement import Movement
from stock_kernel.selectors.movement_selector import MovementSelector
from stock_kernel.services.movement_ledger import VOID_KEY_PREFIX


@pytest.fixture
def selector(session):
    return MovementSelector(session)


class TestAppend:

    def test_append_returns_stored_record(self, movement_ledger, make_spec, deterministic_clock):
        record = movement_ledger.append(make_spec(TransactionType.GRV, "100"))

        assert record.direction is MovementDirection.IN
        assert record.quantity == Decimal("100")
        assert record.unit_of_measure == "g"
        assert record.recorded_at == deterministic_clock.now()
        assert record.occurred_at == record.recorded_at
        assert record.actor == "SYSTEM"
        assert not record.voided
        assert len(record.payload_hash) == 64

    def test_seq_strictly_increasing(self, movement_ledger, make_spec):
        seqs = [
            movement_ledger.append(make_spec(transaction_ref=f"REF-{i}")).seq
            for i in range(4)
        ]
        assert seqs == sorted(seqs)
        assert len(set(seqs)) == 4

    def test_each_call_without_key_is_new(self, movement_ledger, make_spec, session):
        movement_ledger.append(make_spec())
        movement_ledger.append(make_spec())
        assert session.scalar(select(func.count(Movement.id))) == 2

    def test_actor_from_log_context(self, movement_ledger, make_spec):
        with LogContext.bind(actor_id="till-3"):
            record = movement_ledger.append(make_spec())
        assert record.actor == "till-3"

    def test_explicit_actor_wins(self, movement_ledger, make_spec):
        with LogContext.bind(actor_id="till-3"):
            record = movement_ledger.append(make_spec(actor="manager"))
        assert record.actor == "manager"

    def test_append_logged(self, movement_ledger, make_spec, captured_logs):
        record = movement_ledger.append(make_spec(TransactionType.SALE, "2.5"))
        logs = [r for r in captured_logs() if r["message"] == "movement_appended"]
        assert len(logs) == 1
        assert logs[0]["movement_id"] == str(record.id)
        assert logs[0]["direction"] == "OUT"
        assert logs[0]["quantity"] == "2.5"


class TestIdempotency:

    def test_replay_returns_original(self, movement_ledger, make_spec, session, captured_logs):
        first = movement_ledger.append_with_result(make_spec(idempotency_key="pos-1"))
        second = movement_ledger.append_with_result(make_spec(idempotency_key="pos-1"))

        assert first.created
        assert not second.created
        assert second.record.id == first.record.id
        assert second.record.seq == first.record.seq
        assert session.scalar(select(func.count(Movement.id))) == 1
        assert any(r["message"] == "movement_append_replayed" for r in captured_logs())

    def test_replay_ignores_actor(self, movement_ledger, make_spec):
        first = movement_ledger.append(make_spec(idempotency_key="pos-2", actor="a"))
        second = movement_ledger.append(make_spec(idempotency_key="pos-2", actor="b"))
        assert second.id == first.id
        assert second.actor == "a"

    def test_conflicting_payload(self, movement_ledger, make_spec, captured_logs):
        movement_ledger.append(make_spec(quantity="100", idempotency_key="pos-3"))
        with pytest.raises(IdempotencyConflictError) as exc_info:
            movement_ledger.append(make_spec(quantity="101", idempotency_key="pos-3"))

        assert exc_info.value.idempotency_key == "pos-3"
        assert exc_info.value.expected_hash != exc_info.value.received_hash
        assert any(r["message"] == "idempotency_conflict" for r in captured_logs())


class TestVoid:

    def test_void_appends_compensation(self, movement_ledger, make_spec, deterministic_clock):
        original = movement_ledger.append(make_spec(TransactionType.GRV, "100", reason="delivery"))
        deterministic_clock.advance(60)

        result = movement_ledger.void(original.id, "captured twice", actor="supervisor")

        assert result.original.voided
        assert result.original.void_reason == "captured twice"
        assert result.original.voided_at == deterministic_clock.now()
        assert result.original.voided_by_movement_id == result.compensation.id
        assert result.original.reason == "delivery"
        assert result.original.quantity == Decimal("100")

        comp = result.compensation
        assert comp.direction is MovementDirection.OUT
        assert comp.quantity == original.quantity
        assert comp.batch_number == original.batch_number
        assert comp.transaction_ref == original.transaction_ref
        assert comp.voids_movement_id == original.id
        assert comp.is_compensation
        assert comp.idempotency_key == f"{VOID_KEY_PREFIX}{original.id}"
        assert comp.actor == "supervisor"
        assert comp.reason == "captured twice"
        assert comp.seq > original.seq

    def test_void_requires_reason(self, movement_ledger, make_spec):
        original = movement_ledger.append(make_spec())
        for reason in ("", "   ", None):
            with pytest.raises(InvalidArgumentError):
                movement_ledger.void(original.id, reason)

    def test_void_unknown(self, movement_ledger):
        with pytest.raises(MovementNotFoundError):
            movement_ledger.void(uuid4(), "typo")

    def test_double_void(self, movement_ledger, make_spec):
        original = movement_ledger.append(make_spec())
        first = movement_ledger.void(original.id, "wrong batch")

        with pytest.raises(MovementAlreadyVoidedError) as exc_info:
            movement_ledger.void(original.id, "again")
        assert exc_info.value.voided_by_movement_id == str(first.compensation.id)

    def test_compensation_cannot_be_voided(self, movement_ledger, make_spec):
        original = movement_ledger.append(make_spec())
        result = movement_ledger.void(original.id, "wrong batch")
        with pytest.raises(InvalidArgumentError):
            movement_ledger.void(result.compensation.id, "undo the undo")

    def test_void_logged(self, movement_ledger, make_spec, captured_logs):
        original = movement_ledger.append(make_spec())
        result = movement_ledger.void(original.id, "wrong batch")
        logs = [r for r in captured_logs() if r["message"] == "movement_voided"]
        assert len(logs) == 1
        assert logs[0]["compensation_id"] == str(result.compensation.id)
        assert logs[0]["reason"] == "wrong batch"

    def test_void_transaction(self, movement_ledger, make_spec, selector):
        a = movement_ledger.append(make_spec(TransactionType.SALE, "1", transaction_ref="INV-9"))
        b = movement_ledger.append(make_spec(
            TransactionType.SALE, "2", transaction_ref="INV-9", batch_number="CULT-002",
        ))
        other = movement_ledger.append(make_spec(TransactionType.SALE, "3", transaction_ref="INV-10"))

        results = movement_ledger.void_transaction(TransactionType.SALE, "INV-9", "sale cancelled")

        assert [r.original.id for r in results] == [a.id, b.id]
        assert selector.get(other.id).voided is False
        # Nothing left to void
        assert movement_ledger.void_transaction("SALE", "INV-9", "again") == []


class TestAsOfVisibility:
    """A void hides the original from its recorded_at onwards, not before."""

    def test_soh_before_and_after_void(self, movement_ledger, make_spec, selector, deterministic_clock):
        t0 = deterministic_clock.now()
        receipt = movement_ledger.append(make_spec(TransactionType.GRV, "100"))
        deterministic_clock.advance(60)
        movement_ledger.append(make_spec(TransactionType.SALE, "30"))
        t1 = deterministic_clock.now()
        deterministic_clock.advance(60)
        movement_ledger.void(receipt.id, "never arrived")
        t2 = deterministic_clock.now()

        assert selector.stock_on_hand(1, 1, as_of=t0 - timedelta(seconds=1)) == Decimal("0")
        assert selector.stock_on_hand(1, 1, as_of=t0) == Decimal("100")
        assert selector.stock_on_hand(1, 1, as_of=t1) == Decimal("70")
        assert selector.stock_on_hand(1, 1, as_of=t2) == Decimal("-30")
        assert selector.stock_on_hand(1, 1) == Decimal("-30")

    def test_query_shows_compensation_after_void(self, movement_ledger, make_spec, selector, deterministic_clock):
        receipt = movement_ledger.append(make_spec(TransactionType.GRV, "100"))
        t0 = deterministic_clock.now()
        deterministic_clock.advance(60)
        result = movement_ledger.void(receipt.id, "never arrived")

        before = selector.query(1, 1, as_of=t0)
        after = selector.query(1, 1)
        assert [m.id for m in before] == [receipt.id]
        assert [m.id for m in after] == [result.compensation.id]

    def test_history_keeps_both(self, movement_ledger, make_spec, selector):
        receipt = movement_ledger.append(make_spec(TransactionType.GRV, "100"))
        result = movement_ledger.void(receipt.id, "never arrived")

        history = selector.by_batch("CULT-001")
        assert [m.id for m in history] == [receipt.id, result.compensation.id]
        assert history[0].voided

    def test_batch_scope(self, movement_ledger, make_spec, selector):
        movement_ledger.append(make_spec(TransactionType.GRV, "100", batch_number="CULT-001"))
        movement_ledger.append(make_spec(TransactionType.GRV, "40", batch_number="PROD-002"))

        assert selector.stock_on_hand(1, 1, "CULT-001") == Decimal("100")
        assert selector.stock_on_hand(1, 1, "PROD-002") == Decimal("40")
        assert selector.stock_on_hand(1, 1) == Decimal("140")
        assert selector.stock_on_hand(1, 2) == Decimal("0")
