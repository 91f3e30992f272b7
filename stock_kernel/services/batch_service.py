"""
BatchService -- batch registration, lifecycle and lineage.

Responsibility:
    Registers issued batch numbers as traceability units, moves them through
    their lifecycle and walks the ``source_batch_number`` chain in both
    directions for recall and audit queries.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - A batch number is registered once and carries the site, type and date
      encoded in it.
    - A source batch must already be registered, so lineage never points at
      an unknown batch.
    - Status changes follow BATCH_TRANSITIONS.
    - Lineage and descendant walks visit each batch at most once, so a
      corrupted chain cannot loop forever.

Failure modes:
    - MalformedIdentifierError / CheckDigitMismatchError on registration.
    - DuplicateIdentifierError when the batch is already registered.
    - BatchNotFoundError for an unknown batch or source batch.
    - InvalidStatusTransitionError for a transition outside the lifecycle.
"""

from collections import deque

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain import identifiers as ids
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import BatchInfo
from stock_kernel.domain.values import BATCH_TRANSITIONS, BatchStatus
from stock_kernel.exceptions import (
    BatchNotFoundError,
    DuplicateIdentifierError,
    InvalidArgumentError,
    InvalidStatusTransitionError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.batch import Batch
from stock_kernel.services.base import BaseService

logger = get_logger("services.batch")


class BatchService(BaseService[Batch]):
    """Batch registry over the batches table."""

    def __init__(self, session: Session, clock: Clock | None = None, default_actor: str = "SYSTEM"):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._default_actor = default_actor

    def register(
        self,
        batch_number: str,
        *,
        source_batch_number: str | None = None,
        product_id: int | None = None,
        notes: str | None = None,
        actor: str | None = None,
    ) -> BatchInfo:
        """
        Register an issued batch number.

        Site, batch type and creation date are read from the number itself.
        """
        parts = ids.parse_batch_number(batch_number)
        ids.require_valid(batch_number)
        if source_batch_number is not None:
            if source_batch_number == batch_number:
                raise InvalidArgumentError(
                    "source_batch_number", source_batch_number, "a batch cannot be its own source",
                )
            self._load(source_batch_number)

        actor = actor or LogContext.get("actor_id") or self._default_actor
        batch = Batch(
            batch_number=batch_number,
            site_id=parts.site_id,
            batch_type=parts.batch_type,
            created_date=parts.batch_date,
            source_batch_number=source_batch_number,
            status=BatchStatus.ACTIVE.value,
            status_changed_at=self._clock.now(),
            product_id=product_id,
            notes=notes,
            created_by=actor,
        )
        try:
            with self.session.begin_nested():
                self.session.add(batch)
                self.session.flush()
        except IntegrityError as exc:
            raise DuplicateIdentifierError(batch_number, "BATCH") from exc

        logger.info(
            "batch_registered",
            extra={
                "batch_number": batch_number,
                "site_id": parts.site_id,
                "batch_type": parts.batch_type,
                "source_batch_number": source_batch_number,
                "actor": actor,
            },
        )
        return BatchInfo.from_model(batch)

    def get(self, batch_number: str) -> BatchInfo:
        return BatchInfo.from_model(self._load(batch_number))

    def _find(self, batch_number: str) -> Batch | None:
        return self.session.execute(
            select(Batch).where(Batch.batch_number == batch_number)
        ).scalar_one_or_none()

    def _load(self, batch_number: str) -> Batch:
        batch = self._find(batch_number)
        if batch is None:
            raise BatchNotFoundError(batch_number)
        return batch

    def change_status(self, batch_number: str, new_status: BatchStatus | str) -> BatchInfo:
        batch = self._load(batch_number)
        current = BatchStatus(batch.status)
        try:
            target = BatchStatus(new_status)
        except ValueError as exc:
            raise InvalidArgumentError("new_status", new_status, "unknown batch status") from exc

        if target not in BATCH_TRANSITIONS[current]:
            raise InvalidStatusTransitionError("Batch", batch_number, current.value, target.value)

        batch.status = target.value
        batch.status_changed_at = self._clock.now()
        self.session.flush()

        logger.info(
            "batch_status_changed",
            extra={
                "batch_number": batch_number,
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        return BatchInfo.from_model(batch)

    def lineage(self, batch_number: str) -> list[BatchInfo]:
        """
        The batch followed by its ancestors, nearest first.

        Stops at the first batch without a source, at a source that is not
        registered, or at a batch already visited.
        """
        chain = [self._load(batch_number)]
        seen = {batch_number}

        while chain[-1].source_batch_number is not None:
            parent_number = chain[-1].source_batch_number
            if parent_number in seen:
                logger.warning(
                    "batch_lineage_cycle",
                    extra={"batch_number": batch_number, "repeated": parent_number},
                )
                break
            parent = self._find(parent_number)
            if parent is None:
                break
            seen.add(parent_number)
            chain.append(parent)

        return [BatchInfo.from_model(b) for b in chain]

    def descendants(self, batch_number: str) -> list[BatchInfo]:
        """Every batch derived from this one, breadth first."""
        self._load(batch_number)

        found: list[Batch] = []
        seen = {batch_number}
        queue = deque([batch_number])
        while queue:
            current = queue.popleft()
            children = self.session.scalars(
                select(Batch)
                .where(Batch.source_batch_number == current)
                .order_by(Batch.batch_number)
            )
            for child in children:
                if child.batch_number in seen:
                    continue
                seen.add(child.batch_number)
                found.append(child)
                queue.append(child.batch_number)

        return [BatchInfo.from_model(b) for b in found]
