"""
SerialService -- registry and lifecycle of serialized units.

Responsibility:
    Registers a full/short serial pair for one physical unit, looks units up
    by either number and moves them through AVAILABLE, SOLD, RETURNED and
    DESTROYED.

Architecture position:
    Kernel > Services -- imperative shell.  IdentifierService.generate_serial_pair
    registers the units it issues itself; register() covers serials issued
    elsewhere (imports, migrations).

Invariants enforced:
    - Both numbers validate (check digits included) before registration.
    - The full serial's batch sequence must match the given batch number.
    - Status changes follow SERIAL_TRANSITIONS; a destruction records its
      reason, a sale its time and customer reference.

Failure modes:
    - MalformedIdentifierError / CheckDigitMismatchError on registration.
    - DuplicateIdentifierError when either number is already registered.
    - SerialNotFoundError, InvalidStatusTransitionError.
"""

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain import identifiers as ids
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import SerialInfo
from stock_kernel.domain.values import SERIAL_TRANSITIONS, SerialStatus
from stock_kernel.exceptions import (
    DuplicateIdentifierError,
    InvalidArgumentError,
    InvalidStatusTransitionError,
    SerialNotFoundError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.serial_number import SerialNumber
from stock_kernel.services.base import BaseService

logger = get_logger("services.serial")


class SerialService(BaseService[SerialNumber]):

    def __init__(self, session: Session, clock: Clock | None = None, default_actor: str = "SYSTEM"):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._default_actor = default_actor

    def register(
        self,
        full_serial_number: str,
        short_serial_number: str,
        batch_number: str,
        product_id: int,
        *,
        actor: str | None = None,
    ) -> SerialInfo:
        full = ids.parse_full_serial_number(full_serial_number)
        ids.require_valid(full_serial_number)
        ids.parse_short_serial_number(short_serial_number)
        ids.require_valid(short_serial_number)

        batch = ids.parse_batch_number(batch_number)
        if batch.sequence != full.batch_sequence:
            raise InvalidArgumentError(
                "batch_number",
                batch_number,
                f"does not match batch sequence {full.batch_sequence:04d} of the serial",
            )

        actor = actor or LogContext.get("actor_id") or self._default_actor
        serial = SerialNumber(
            full_serial_number=full_serial_number,
            short_serial_number=short_serial_number,
            batch_number=batch_number,
            product_id=product_id,
            site_id=full.site_id,
            strain_id=full.strain_id,
            product_type=full.product_type,
            unit_sequence=full.unit_sequence,
            weight_grams=full.weight_grams,
            status=SerialStatus.AVAILABLE.value,
            status_changed_at=self._clock.now(),
            created_by=actor,
        )
        try:
            with self.session.begin_nested():
                self.session.add(serial)
                self.session.flush()
        except IntegrityError as exc:
            raise DuplicateIdentifierError(full_serial_number, "SERIAL") from exc

        logger.info(
            "serial_registered",
            extra={
                "full_serial_number": full_serial_number,
                "short_serial_number": short_serial_number,
                "batch_number": batch_number,
                "actor": actor,
            },
        )
        return SerialInfo.from_model(serial)

    def _load(self, serial_number: str) -> SerialNumber:
        serial = self.session.execute(
            select(SerialNumber).where(
                or_(
                    SerialNumber.full_serial_number == serial_number,
                    SerialNumber.short_serial_number == serial_number,
                )
            )
        ).scalar_one_or_none()
        if serial is None:
            raise SerialNotFoundError(serial_number)
        return serial

    def get(self, serial_number: str) -> SerialInfo:
        """Look a unit up by its full or short serial number."""
        return SerialInfo.from_model(self._load(serial_number))

    def by_batch(self, batch_number: str) -> list[SerialInfo]:
        rows = self.session.scalars(
            select(SerialNumber)
            .where(SerialNumber.batch_number == batch_number)
            .order_by(SerialNumber.unit_sequence)
        )
        return [SerialInfo.from_model(s) for s in rows]

    def change_status(
        self,
        serial_number: str,
        new_status: SerialStatus | str,
        *,
        customer_ref: str | None = None,
        reason: str | None = None,
    ) -> SerialInfo:
        """
        Move a unit to ``new_status``.

        SOLD stamps ``sold_at`` and keeps ``customer_ref``; DESTROYED
        requires ``reason``.
        """
        serial = self._load(serial_number)
        current = SerialStatus(serial.status)
        try:
            target = SerialStatus(new_status)
        except ValueError as exc:
            raise InvalidArgumentError("new_status", new_status, "unknown serial status") from exc

        if target not in SERIAL_TRANSITIONS[current]:
            raise InvalidStatusTransitionError(
                "SerialNumber", serial.full_serial_number, current.value, target.value,
            )
        if target is SerialStatus.DESTROYED and not reason:
            raise InvalidArgumentError("reason", reason, "destruction requires a reason")

        now = self._clock.now()
        serial.status = target.value
        serial.status_changed_at = now
        if target is SerialStatus.SOLD:
            serial.sold_at = now
            serial.customer_ref = customer_ref
        elif target is SerialStatus.DESTROYED:
            serial.destruction_reason = reason
        self.session.flush()

        logger.info(
            "serial_status_changed",
            extra={
                "full_serial_number": serial.full_serial_number,
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        return SerialInfo.from_model(serial)
