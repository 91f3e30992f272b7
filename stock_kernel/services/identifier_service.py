"""
IdentifierService -- batch and serial number issuance.

Responsibility:
    Validates the caller's fields, draws a sequence value from the
    partition the identifier belongs to, composes the fixed-width identifier
    (domain/identifiers.py) and records who issued it, when and why.

Architecture position:
    Kernel > Services -- imperative shell.  Composition and validation are
    pure domain code; this service adds the allocator call and the issue log.

Invariants enforced:
    - Every argument is validated before the allocator is called, so an
      invalid request consumes no sequence value.
    - Each identifier is recorded once in identifier_issues (unique); a
      collision there means the allocator handed out a value twice and is
      raised as DuplicateIdentifierError, never retried.
    - Generated identifiers always pass validate_check_digit().

Failure modes:
    - InvalidArgumentError / WeightOutOfRangeError / MalformedIdentifierError
      before any allocation.
    - SequenceExhaustedError from the allocator.
    - DuplicateIdentifierError on an issue-log collision (logged CRITICAL).

Audit relevance:
    ``identifier_issued`` is logged for every identifier alongside the
    persisted IdentifierIssue row.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain import identifiers as ids
from stock_kernel.domain.check_digit import validate as luhn_valid
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import SerialPair
from stock_kernel.domain.values import IdentifierKind, SerialStatus
from stock_kernel.exceptions import (
    CheckDigitMismatchError,
    DuplicateIdentifierError,
    InvalidArgumentError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.identifier_issue import IdentifierIssue
from stock_kernel.models.serial_number import SerialNumber
from stock_kernel.services.base import BaseService
from stock_kernel.services.sequence_service import SequenceAllocator, SequenceService

logger = get_logger("services.identifier")


class IdentifierService(BaseService[IdentifierIssue]):
    """
    Issues batch numbers, full serial numbers and short serial numbers.

    Contract:
        Returns an identifier whose sequence field is unique within its
        partition.  Dates default to the injected clock's calendar date.
        ``allocator`` defaults to a SequenceService on the same session, so
        the sequence value and the issue row commit or roll back together.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        allocator: SequenceAllocator | None = None,
        *,
        batch_capacity: int = ids.BATCH_SEQUENCE_MAX,
        unit_capacity: int = ids.UNIT_SEQUENCE_MAX,
        short_serial_capacity: int = ids.SHORT_SEQUENCE_MAX,
        batch_check_digit: bool = True,
        short_serial_check_digit: bool = True,
        max_bulk_serials: int = 10000,
        default_actor: str = "SYSTEM",
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._allocator = allocator or SequenceService(session)
        self._batch_capacity = min(batch_capacity, ids.BATCH_SEQUENCE_MAX)
        self._unit_capacity = min(unit_capacity, ids.UNIT_SEQUENCE_MAX)
        self._short_capacity = min(short_serial_capacity, ids.SHORT_SEQUENCE_MAX)
        self._batch_check_digit = batch_check_digit
        self._short_check_digit = short_serial_check_digit
        self._max_bulk_serials = max_bulk_serials
        self._default_actor = default_actor

    # ------------------------------------------------------------------
    # Batch numbers
    # ------------------------------------------------------------------

    def generate_batch_number(
        self,
        site_id: int,
        batch_type: int,
        *,
        batch_date: date | None = None,
        requested_by: str | None = None,
        reason: str | None = None,
    ) -> str:
        """
        Issue the next batch number for (site, batch type, date).

        Returns:
            17-digit batch number, or 16 digits when batch check digits are
            switched off.
        """
        site_id = ids.validate_site_id(site_id)
        batch_type = ids.validate_batch_type(batch_type)
        day = batch_date or self._clock.today()

        partition_key = ids.PartitionKey.batch(site_id, batch_type, day)
        sequence = self._allocator.next_value(partition_key, self._batch_capacity)

        batch_number = ids.format_batch_number(
            site_id, batch_type, day, sequence, with_check=self._batch_check_digit,
        )
        self._record_issue(
            batch_number, IdentifierKind.BATCH, partition_key, sequence,
            requested_by, reason,
        )
        return batch_number

    # ------------------------------------------------------------------
    # Serial numbers
    # ------------------------------------------------------------------

    def generate_full_serial_number(
        self,
        site_id: int,
        strain_id: int,
        product_type: int,
        batch_number: str,
        unit_sequence: int | None = None,
        weight_grams: Decimal | int | str = 0,
        *,
        serial_date: date | None = None,
        requested_by: str | None = None,
        reason: str | None = None,
    ) -> str:
        """
        Issue a 28-digit full serial number for one unit of a batch.

        ``unit_sequence`` is used as given when supplied (1-99999); when
        omitted it is drawn from the partition of everything the serial
        carries before it, so batches that share a daily sequence share the
        counter and their serials stay distinct.
        """
        fields = self._validate_serial_fields(
            site_id, strain_id, product_type, batch_number, unit_sequence, weight_grams,
        )
        day = serial_date or self._clock.today()

        partition_key = ids.PartitionKey.unit(
            site_id, strain_id, product_type, day, fields["batch_sequence"],
        )
        if unit_sequence is None:
            unit_sequence = self._allocator.next_value(partition_key, self._unit_capacity)

        serial_number = ids.format_full_serial_number(
            site_id,
            strain_id,
            product_type,
            day,
            fields["batch_sequence"],
            unit_sequence,
            fields["weight_centigrams"],
        )
        self._record_issue(
            serial_number, IdentifierKind.FULL_SERIAL, partition_key, unit_sequence,
            requested_by, reason,
        )
        return serial_number

    def generate_short_serial_number(
        self,
        site_id: int,
        *,
        serial_date: date | None = None,
        requested_by: str | None = None,
        reason: str | None = None,
    ) -> str:
        """
        Issue the next short serial for (site, date).

        Returns:
            14 digits ending in an EAN-style check digit, or 13 when short
            serial check digits are switched off.
        """
        site_id = ids.validate_site_id(site_id)
        day = serial_date or self._clock.today()

        partition_key = ids.PartitionKey.short_serial(site_id, day)
        sequence = self._allocator.next_value(partition_key, self._short_capacity)

        serial_number = ids.format_short_serial_number(
            site_id, day, sequence, with_check=self._short_check_digit,
        )
        self._record_issue(
            serial_number, IdentifierKind.SHORT_SERIAL, partition_key, sequence,
            requested_by, reason,
        )
        return serial_number

    def generate_serial_pair(
        self,
        site_id: int,
        strain_id: int,
        product_type: int,
        batch_number: str,
        weight_grams: Decimal | int | str,
        product_id: int,
        *,
        serial_date: date | None = None,
        requested_by: str | None = None,
        reason: str | None = None,
    ) -> SerialPair:
        """
        Issue a full and short serial for one unit and register the unit.

        A SerialNumber row in status AVAILABLE is added for the pair.
        """
        if isinstance(product_id, bool) or not isinstance(product_id, int) or product_id < 1:
            raise InvalidArgumentError("product_id", product_id, "must be a positive integer")
        self._validate_serial_fields(
            site_id, strain_id, product_type, batch_number, None, weight_grams,
        )

        full = self.generate_full_serial_number(
            site_id, strain_id, product_type, batch_number,
            weight_grams=weight_grams,
            serial_date=serial_date,
            requested_by=requested_by,
            reason=reason,
        )
        short = self.generate_short_serial_number(
            site_id,
            serial_date=serial_date,
            requested_by=requested_by,
            reason=reason,
        )
        parts = ids.parse_full_serial_number(full)

        self.session.add(SerialNumber(
            full_serial_number=full,
            short_serial_number=short,
            batch_number=batch_number,
            product_id=product_id,
            site_id=site_id,
            strain_id=strain_id,
            product_type=product_type,
            unit_sequence=parts.unit_sequence,
            weight_grams=parts.weight_grams,
            status=SerialStatus.AVAILABLE.value,
            status_changed_at=self._clock.now(),
            created_by=self._actor(requested_by),
        ))
        self.session.flush()

        return SerialPair(
            full_serial_number=full,
            short_serial_number=short,
            batch_number=batch_number,
            unit_sequence=parts.unit_sequence,
        )

    def generate_bulk_serials(
        self,
        count: int,
        site_id: int,
        strain_id: int,
        product_type: int,
        batch_number: str,
        weight_grams: Decimal | int | str,
        product_id: int,
        *,
        serial_date: date | None = None,
        requested_by: str | None = None,
        reason: str | None = None,
    ) -> list[SerialPair]:
        """
        Issue ``count`` serial pairs for the units of one production run.

        The count is checked against the configured maximum before any
        sequence is drawn.
        """
        if isinstance(count, bool) or not isinstance(count, int) or not (
            1 <= count <= self._max_bulk_serials
        ):
            raise InvalidArgumentError(
                "count", count, f"must be between 1 and {self._max_bulk_serials}",
            )

        pairs = [
            self.generate_serial_pair(
                site_id, strain_id, product_type, batch_number, weight_grams, product_id,
                serial_date=serial_date,
                requested_by=requested_by,
                reason=reason,
            )
            for _ in range(count)
        ]
        logger.info(
            "bulk_serials_generated",
            extra={"batch_number": batch_number, "count": count},
        )
        return pairs

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate_check_digit(identifier: str) -> bool:
        return ids.validate_check_digit(identifier)

    def _validate_serial_fields(
        self,
        site_id,
        strain_id,
        product_type,
        batch_number,
        unit_sequence,
        weight_grams,
    ) -> dict:
        ids.validate_site_id(site_id)
        ids.validate_strain_id(strain_id)
        ids.validate_product_type(product_type)
        if unit_sequence is not None:
            ids.validate_unit_sequence(unit_sequence)
        weight_centigrams = ids.encode_weight(weight_grams)

        batch = ids.parse_batch_number(batch_number)
        if batch.has_check_digit and not luhn_valid(batch_number):
            raise CheckDigitMismatchError(batch_number)

        return {
            "batch_sequence": batch.sequence,
            "weight_centigrams": weight_centigrams,
        }

    # ------------------------------------------------------------------
    # Issue log
    # ------------------------------------------------------------------

    def _actor(self, requested_by: str | None) -> str:
        return requested_by or LogContext.get("actor_id") or self._default_actor

    def _record_issue(
        self,
        identifier: str,
        kind: IdentifierKind,
        partition_key: str,
        sequence_value: int,
        requested_by: str | None,
        reason: str | None,
    ) -> None:
        issued_by = self._actor(requested_by)
        reason = reason or LogContext.get("request_reason")
        issued_at = self._clock.now()

        issue = IdentifierIssue(
            identifier=identifier,
            kind=kind.value,
            partition_key=partition_key,
            sequence_value=sequence_value,
            issued_at=issued_at,
            issued_by=issued_by,
            reason=reason,
        )
        try:
            with self.session.begin_nested():
                self.session.add(issue)
                self.session.flush()
        except IntegrityError as exc:
            logger.critical(
                "duplicate_identifier_issued",
                extra={
                    "identifier": identifier,
                    "kind": kind.value,
                    "partition_key": partition_key,
                    "sequence_value": sequence_value,
                },
            )
            raise DuplicateIdentifierError(identifier, kind.value) from exc

        logger.info(
            "identifier_issued",
            extra={
                "identifier": identifier,
                "kind": kind.value,
                "partition_key": partition_key,
                "sequence_value": sequence_value,
                "issued_by": issued_by,
                "issued_at": issued_at,
                "reason": reason,
            },
        )
