"""
Tests for SequenceService and InMemorySequenceAllocator.

Counters are per partition, strictly increasing, bounded by the digit width
of the field they feed, and allocated by one atomic UPDATE.
"""

import inspect
import re
import threading

import pytest

from stock_kernel.domain.identifiers import PartitionKey
from stock_kernel.exceptions import InvalidArgumentError, SequenceExhaustedError
from stock_kernel.services.sequence_service import (
    InMemorySequenceAllocator,
    SequenceService,
)

KEY = "batch:01:02:20250115"


class TestSequenceService:

    def test_first_value_is_one(self, sequence_service):
        assert sequence_service.next_value(KEY, 9999) == 1

    def test_strictly_increasing(self, sequence_service):
        values = [sequence_service.next_value(KEY, 9999) for _ in range(5)]
        assert values == [1, 2, 3, 4, 5]
        assert sequence_service.current_value(KEY) == 5

    def test_partitions_are_independent(self, sequence_service):
        other = "batch:01:03:20250115"
        sequence_service.next_value(KEY, 9999)
        sequence_service.next_value(KEY, 9999)
        assert sequence_service.next_value(other, 9999) == 1
        assert sequence_service.next_value(KEY, 9999) == 3

    def test_current_value_of_unknown_partition(self, sequence_service):
        assert sequence_service.current_value("never:used") is None

    def test_exhaustion(self, sequence_service, captured_logs):
        sequence_service.reset(KEY, 9998, max_value=9999)
        assert sequence_service.next_value(KEY, 9999) == 9999

        with pytest.raises(SequenceExhaustedError) as exc_info:
            sequence_service.next_value(KEY, 9999)

        assert exc_info.value.partition_key == KEY
        assert exc_info.value.max_value == 9999
        assert sequence_service.current_value(KEY) == 9999
        assert any(r["message"] == "sequence_exhausted" for r in captured_logs())

    def test_capacity_of_one(self, sequence_service):
        assert sequence_service.next_value("tiny", 1) == 1
        with pytest.raises(SequenceExhaustedError):
            sequence_service.next_value("tiny", 1)

    def test_reset(self, sequence_service):
        sequence_service.next_value(KEY, 9999)
        sequence_service.reset(KEY, 41)
        assert sequence_service.next_value(KEY, 9999) == 42

    def test_reset_creates_partition(self, sequence_service):
        sequence_service.reset("fresh:key", 10, max_value=99)
        assert sequence_service.current_value("fresh:key") == 10

    @pytest.mark.parametrize("key, max_value", [("", 10), (None, 10), (KEY, 0), (KEY, True)])
    def test_invalid_request(self, sequence_service, key, max_value):
        with pytest.raises(InvalidArgumentError):
            sequence_service.next_value(key, max_value)

    def test_ledger_partition(self, sequence_service):
        first = sequence_service.next_ledger_value()
        assert sequence_service.next_ledger_value() == first + 1
        assert sequence_service.current_value(PartitionKey.MOVEMENT_LEDGER) == first + 1

    def test_rollback_returns_value(self, sequence_service, session):
        sequence_service.next_value(KEY, 9999)
        savepoint = session.begin_nested()
        sequence_service.next_value(KEY, 9999)
        savepoint.rollback()
        assert sequence_service.next_value(KEY, 9999) == 2


class TestAllocationStatement:
    """The increment is a single conditional UPDATE, never max-plus-one."""

    def test_increment_is_update_returning(self):
        source = inspect.getsource(SequenceService._increment)
        assert "update(SequenceCounter)" in source
        assert ".returning(" in source

    def test_no_max_scan(self):
        source = inspect.getsource(SequenceService)
        for pattern in (r"func\.max", r"MAX\s*\("):
            assert not re.search(pattern, source), pattern


class TestInMemoryAllocator:

    def test_contract_matches_database_allocator(self):
        allocator = InMemorySequenceAllocator()
        assert [allocator.next_value(KEY, 3) for _ in range(3)] == [1, 2, 3]
        with pytest.raises(SequenceExhaustedError):
            allocator.next_value(KEY, 3)
        assert allocator.current_value(KEY) == 3
        assert allocator.current_value("other") is None

    def test_reset(self):
        allocator = InMemorySequenceAllocator()
        allocator.reset(KEY, 100)
        assert allocator.next_value(KEY, 9999) == 101

    def test_threads_never_share_a_value(self):
        allocator = InMemorySequenceAllocator()
        results: list[int] = []
        lock = threading.Lock()
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            local = [allocator.next_value(KEY, 99999) for _ in range(250)]
            with lock:
                results.extend(local)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 2000
        assert sorted(results) == list(range(1, 2001))

    def test_exhaustion_under_contention_issues_exactly_capacity(self):
        allocator = InMemorySequenceAllocator()
        issued: list[int] = []
        exhausted: list[int] = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                try:
                    value = allocator.next_value(KEY, 50)
                except SequenceExhaustedError:
                    with lock:
                        exhausted.append(1)
                else:
                    with lock:
                        issued.append(value)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(issued) == list(range(1, 51))
        assert len(exhausted) == 50
