"""
SequenceService -- per-partition sequence allocation via atomic counter rows.

Responsibility:
    Issues unique, strictly increasing integers within a partition key
    (site + category + date for identifiers, one ledger-wide key for movement
    ordering).  One counter row per partition; unrelated partitions never
    touch the same row and never contend.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by IdentifierService (batch, unit and short serial sequences) and
    MovementLedger (ledger seq).

Invariants enforced:
    - The read-increment-write is ONE statement:
          UPDATE sequence_counters
             SET last_issued = last_issued + 1
           WHERE partition_key = :key AND last_issued < :max_value
       RETURNING last_issued
      The database serializes concurrent updates of the row, so no two
      callers ever receive the same value.  Scanning issued identifiers for
      the highest value (max-plus-one) is never used.
    - Counter rows are created lazily by an insert-if-absent
      (``ON CONFLICT DO NOTHING``), so two first callers cannot both create
      the row.
    - Transactional: the increment is only visible once the caller commits;
      a rollback returns the value.  Skipped values after an abort are
      tolerated, duplicates never.

Failure modes:
    - SequenceExhaustedError when the partition has issued max_value values.
    - InvalidArgumentError for an empty key or non-positive max_value.

Audit relevance:
    Allocation is logged at DEBUG (``sequence_allocated``), exhaustion at
    WARNING (``sequence_exhausted``).
"""

import threading
from typing import Protocol
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.identifiers import PartitionKey
from stock_kernel.exceptions import InvalidArgumentError, SequenceExhaustedError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.sequence_counter import SequenceCounter
from stock_kernel.services.base import BaseService

logger = get_logger("services.sequence")

# BIGINT upper bound; the ledger-wide partition never exhausts in practice
LEDGER_SEQUENCE_MAX = 2**63 - 1


class SequenceAllocator(Protocol):
    """Anything that can hand out the next value of a partition."""

    def next_value(self, partition_key: str, max_value: int) -> int: ...


def _validate_request(partition_key: str, max_value: int) -> None:
    if not partition_key or not isinstance(partition_key, str):
        raise InvalidArgumentError("partition_key", partition_key, "cannot be empty")
    if isinstance(max_value, bool) or not isinstance(max_value, int) or max_value < 1:
        raise InvalidArgumentError("max_value", max_value, "must be a positive integer")


class SequenceService(BaseService[SequenceCounter]):
    """
    Database-backed sequence allocator.

    Contract:
        ``next_value(partition_key, max_value)`` returns an integer in
        ``[1, max_value]`` strictly greater than every value previously
        issued for that key.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT guarantee density; aborted transactions may leave gaps.

    Usage:
        with session_scope() as session:
            seq = SequenceService(session).next_value(
                PartitionKey.batch(1, 2, today), 9999,
            )
    """

    MOVEMENT_LEDGER = PartitionKey.MOVEMENT_LEDGER

    def next_value(self, partition_key: str, max_value: int) -> int:
        """
        Allocate the next value of a partition.

        Raises:
            SequenceExhaustedError: If max_value values were already issued.
        """
        _validate_request(partition_key, max_value)

        value = self._increment(partition_key, max_value)
        if value is None:
            # First use of the partition, or exhausted
            self._ensure_counter(partition_key, max_value)
            value = self._increment(partition_key, max_value)

        if value is None:
            logger.warning(
                "sequence_exhausted",
                extra={"partition_key": partition_key, "max_value": max_value},
            )
            raise SequenceExhaustedError(partition_key, max_value)

        logger.debug(
            "sequence_allocated",
            extra={"partition_key": partition_key, "value": value},
        )
        return value

    def next_ledger_value(self) -> int:
        """Next ledger-wide movement ordering value."""
        return self.next_value(self.MOVEMENT_LEDGER, LEDGER_SEQUENCE_MAX)

    def _increment(self, partition_key: str, max_value: int) -> int | None:
        stmt = (
            update(SequenceCounter)
            .where(
                SequenceCounter.partition_key == partition_key,
                SequenceCounter.last_issued < max_value,
            )
            .values(last_issued=SequenceCounter.last_issued + 1)
            .returning(SequenceCounter.last_issued)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def _ensure_counter(self, partition_key: str, max_value: int) -> None:
        """Insert the counter row if no other caller has created it yet."""
        dialect = self.session.get_bind().dialect.name
        values = {
            "id": uuid4(),
            "partition_key": partition_key,
            "last_issued": 0,
            "max_value": max_value,
        }

        if dialect in ("postgresql", "sqlite"):
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            self.session.execute(
                insert(SequenceCounter)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["partition_key"])
            )
            return

        # Other backends: savepoint and tolerate the creation race
        savepoint = self.session.begin_nested()
        try:
            self.session.add(SequenceCounter(**values))
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"partition_key": partition_key},
            )
            savepoint.rollback()

    def current_value(self, partition_key: str) -> int | None:
        """
        Last value issued for a partition, without incrementing.

        Returns:
            Last issued value (0 if created but unused), or None if the
            partition has never been requested.
        """
        return self.session.execute(
            select(SequenceCounter.last_issued)
            .where(SequenceCounter.partition_key == partition_key)
        ).scalar_one_or_none()

    def reset(self, partition_key: str, value: int = 0, max_value: int | None = None) -> None:
        """
        Set a partition's last issued value.

        WARNING: tests and migration scripts only.  Lowering a counter in
        production re-issues identifiers.
        """
        counter = self.session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.partition_key == partition_key)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if counter is None:
            counter = SequenceCounter(
                partition_key=partition_key,
                last_issued=value,
                max_value=max_value or LEDGER_SEQUENCE_MAX,
            )
            self.session.add(counter)
        else:
            counter.last_issued = value
            if max_value is not None:
                counter.max_value = max_value

        self.session.flush()


class InMemorySequenceAllocator:
    """
    Process-local allocator with the same contract as SequenceService.

    Contract:
        For a single logical allocator instance (one process).  Each
        partition has its own lock, so callers of unrelated partitions never
        wait on each other; only the dict of locks is shared, and it is held
        just long enough to fetch or create a partition's lock.

    Non-goals:
        - Not durable.  Values restart at 1 when the process restarts, so it
          must not back identifiers that outlive the process.
    """

    def __init__(self) -> None:
        self._counters: dict[str, int] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, partition_key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(partition_key)
            if lock is None:
                lock = self._locks[partition_key] = threading.Lock()
            return lock

    def next_value(self, partition_key: str, max_value: int) -> int:
        _validate_request(partition_key, max_value)
        with self._lock_for(partition_key):
            current = self._counters.get(partition_key, 0)
            if current >= max_value:
                logger.warning(
                    "sequence_exhausted",
                    extra={"partition_key": partition_key, "max_value": max_value},
                )
                raise SequenceExhaustedError(partition_key, max_value)
            value = current + 1
            self._counters[partition_key] = value

        logger.debug(
            "sequence_allocated",
            extra={"partition_key": partition_key, "value": value},
        )
        return value

    def next_ledger_value(self) -> int:
        return self.next_value(PartitionKey.MOVEMENT_LEDGER, LEDGER_SEQUENCE_MAX)

    def current_value(self, partition_key: str) -> int | None:
        with self._lock_for(partition_key):
            return self._counters.get(partition_key)

    def reset(self, partition_key: str, value: int = 0, max_value: int | None = None) -> None:
        with self._lock_for(partition_key):
            self._counters[partition_key] = value
