"""
Identifiers -- fixed-width numeric batch and serial number shapes.

Responsibility:
    Compose, parse and validate the three identifier shapes, encode unit
    weights, and build the sequence partition keys each shape allocates from.
    Sequence allocation itself lives in services/sequence_service.py; this
    module is pure.

Architecture position:
    Kernel > Domain -- pure functions and frozen dataclasses, zero I/O.

Shapes (all digits, fields zero-padded):

    Batch number (16, or 17 with trailing Luhn digit)
        SS TT YYYYMMDD NNNN
        site(2) batch_type(2) date(8) daily sequence(4)

    Full serial number (28)
        SS KKK PP YYMMDD BBBB UUUUU WWWW CC
        site(2) strain(3) product_type(2) date(6) batch sequence(4)
        unit sequence(5) weight in centigrams(4) two-digit check(2)

    Short serial number (13, or 14 with trailing Luhn digit for EAN-13 style)
        SS YYMMDD NNNNN
        site(2) date(6) daily sequence(5)

Invariants enforced:
    - Every argument is range-checked before a sequence value is requested,
      so a rejected request consumes nothing.
    - A full serial always carries its two-digit check.  Batch and short
      serial numbers carry a trailing Luhn digit unless issued with check
      digits switched off; the 16- and 13-digit forms still parse.
    - Unit sequences are drawn per serial prefix (site, strain, product
      type, date, batch sequence), so drawn unit sequences never repeat a
      full serial.

Failure modes:
    - InvalidArgumentError for out-of-range fields.
    - WeightOutOfRangeError for weights that do not fit four centigram digits.
    - MalformedIdentifierError from the parse functions.
    - CheckDigitMismatchError from require_valid().
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from stock_kernel.domain import check_digit
from stock_kernel.exceptions import (
    CheckDigitMismatchError,
    InvalidArgumentError,
    MalformedIdentifierError,
    WeightOutOfRangeError,
)

BATCH_NUMBER_LENGTH = 16
BATCH_NUMBER_CHECKED_LENGTH = 17
FULL_SERIAL_LENGTH = 28
SHORT_SERIAL_LENGTH = 13
SHORT_SERIAL_CHECKED_LENGTH = 14

SITE_ID_RANGE = (1, 99)
BATCH_TYPE_RANGE = (1, 9)
STRAIN_ID_RANGE = (1, 999)
PRODUCT_TYPE_RANGE = (1, 99)

BATCH_SEQUENCE_MAX = 9999
UNIT_SEQUENCE_MAX = 99999
SHORT_SEQUENCE_MAX = 99999

MAX_WEIGHT_GRAMS = Decimal("99.99")
_CENTIGRAMS = Decimal(100)


# =============================================================================
# Argument validation
# =============================================================================


def _require_int_in_range(argument: str, value, bounds: tuple[int, int]) -> int:
    low, high = bounds
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError(argument, value, "must be an integer")
    if not low <= value <= high:
        raise InvalidArgumentError(argument, value, f"must be between {low} and {high}")
    return value


def validate_site_id(site_id: int) -> int:
    return _require_int_in_range("site_id", site_id, SITE_ID_RANGE)


def validate_batch_type(batch_type: int) -> int:
    # BatchType is an IntEnum; store the plain int
    return int(_require_int_in_range("batch_type", batch_type, BATCH_TYPE_RANGE))


def validate_strain_id(strain_id: int) -> int:
    return _require_int_in_range("strain_id", strain_id, STRAIN_ID_RANGE)


def validate_product_type(product_type: int) -> int:
    return _require_int_in_range("product_type", product_type, PRODUCT_TYPE_RANGE)


def validate_unit_sequence(unit_sequence: int) -> int:
    return _require_int_in_range("unit_sequence", unit_sequence, (1, UNIT_SEQUENCE_MAX))


def encode_weight(weight_grams) -> int:
    """
    Encode a unit weight as whole centigrams.

    ``round(weight_grams * 100)`` with half-up rounding.  Accepts Decimal,
    int, str or float (floats go through ``str`` so 3.5 stays 3.5).

    Raises:
        WeightOutOfRangeError: If negative or above 99.99 g.
    """
    if isinstance(weight_grams, bool):
        raise WeightOutOfRangeError(weight_grams, MAX_WEIGHT_GRAMS)
    try:
        grams = weight_grams if isinstance(weight_grams, Decimal) else Decimal(str(weight_grams))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidArgumentError("weight_grams", weight_grams, "must be numeric") from exc
    if not grams.is_finite() or grams < 0 or grams > MAX_WEIGHT_GRAMS:
        raise WeightOutOfRangeError(weight_grams, MAX_WEIGHT_GRAMS)
    return int((grams * _CENTIGRAMS).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def decode_weight(centigrams: int) -> Decimal:
    return (Decimal(centigrams) / _CENTIGRAMS).quantize(Decimal("0.01"))


def strain_category(strain_id: int) -> str:
    """Strain family encoded in the hundreds digit of a three-digit strain id."""
    if not isinstance(strain_id, int) or not 100 <= strain_id <= 999:
        return "Unknown"
    return {1: "Sativa", 2: "Indica", 3: "Hybrid", 4: "CBD"}.get(strain_id // 100, "Unknown")


# =============================================================================
# Partition keys
# =============================================================================


class PartitionKey:
    """
    Sequence partition keys.

    Each key embeds the calendar date, so a new day starts a new counter and
    no key is ever reused across days.

    The unit key covers the serial's own prefix rather than the batch number:
    batches of different types or days can share a daily sequence, and their
    serials would otherwise repeat.
    """

    MOVEMENT_LEDGER = "ledger:movement"

    @staticmethod
    def batch(site_id: int, batch_type: int, day: date) -> str:
        return f"batch:{site_id:02d}:{int(batch_type):02d}:{day:%Y%m%d}"

    @staticmethod
    def unit(
        site_id: int, strain_id: int, product_type: int, day: date, batch_sequence: int,
    ) -> str:
        return (
            f"unit:{site_id:02d}:{strain_id:03d}:{product_type:02d}"
            f":{day:%Y%m%d}:{batch_sequence:04d}"
        )

    @staticmethod
    def short_serial(site_id: int, day: date) -> str:
        return f"short:{site_id:02d}:{day:%Y%m%d}"


# =============================================================================
# Composition
# =============================================================================


def format_batch_number(
    site_id: int,
    batch_type: int,
    batch_date: date,
    sequence: int,
    with_check: bool = False,
) -> str:
    payload = f"{site_id:02d}{int(batch_type):02d}{batch_date:%Y%m%d}{sequence:04d}"
    return check_digit.append_check_digit(payload) if with_check else payload


def format_full_serial_number(
    site_id: int,
    strain_id: int,
    product_type: int,
    serial_date: date,
    batch_sequence: int,
    unit_sequence: int,
    weight_centigrams: int,
) -> str:
    payload = (
        f"{site_id:02d}"
        f"{strain_id:03d}"
        f"{product_type:02d}"
        f"{serial_date:%y%m%d}"
        f"{batch_sequence:04d}"
        f"{unit_sequence:05d}"
        f"{weight_centigrams:04d}"
    )
    return payload + check_digit.compute_double_check(payload)


def format_short_serial_number(
    site_id: int,
    serial_date: date,
    sequence: int,
    with_check: bool = False,
) -> str:
    payload = f"{site_id:02d}{serial_date:%y%m%d}{sequence:05d}"
    return check_digit.append_check_digit(payload) if with_check else payload


# =============================================================================
# Parsing
# =============================================================================


@dataclass(frozen=True)
class BatchNumberParts:
    batch_number: str
    site_id: int
    batch_type: int
    batch_date: date
    sequence: int
    has_check_digit: bool


@dataclass(frozen=True)
class FullSerialParts:
    serial_number: str
    site_id: int
    strain_id: int
    product_type: int
    serial_date: date
    batch_sequence: int
    unit_sequence: int
    weight_grams: Decimal
    check: str

    @property
    def strain_category(self) -> str:
        return strain_category(self.strain_id)


@dataclass(frozen=True)
class ShortSerialParts:
    serial_number: str
    site_id: int
    serial_date: date
    sequence: int
    has_check_digit: bool


def _parse_date(identifier: str, text: str, fmt: str, expected: str) -> date:
    try:
        return datetime.strptime(text, fmt).date()
    except ValueError as exc:
        raise MalformedIdentifierError(identifier, expected) from exc


def _require_shape(identifier, lengths: tuple[int, ...], expected: str) -> None:
    if not isinstance(identifier, str) or not identifier.isascii() or not identifier.isdigit():
        raise MalformedIdentifierError(identifier, expected)
    if len(identifier) not in lengths:
        raise MalformedIdentifierError(identifier, expected)


def parse_batch_number(batch_number: str) -> BatchNumberParts:
    """
    Split a batch number into its fields.

    Accepts the 16-digit form and the 17-digit check variant.  The check
    digit of the 17-digit form is not verified here; use validate_check_digit.
    """
    expected = "16 or 17 digits SSTTYYYYMMDDNNNN[C]"
    _require_shape(batch_number, (BATCH_NUMBER_LENGTH, BATCH_NUMBER_CHECKED_LENGTH), expected)

    site_id = int(batch_number[0:2])
    batch_type = int(batch_number[2:4])
    sequence = int(batch_number[12:16])
    if site_id < 1 or batch_type < 1 or sequence < 1:
        raise MalformedIdentifierError(batch_number, expected)

    return BatchNumberParts(
        batch_number=batch_number,
        site_id=site_id,
        batch_type=batch_type,
        batch_date=_parse_date(batch_number, batch_number[4:12], "%Y%m%d", expected),
        sequence=sequence,
        has_check_digit=len(batch_number) == BATCH_NUMBER_CHECKED_LENGTH,
    )


def parse_full_serial_number(serial_number: str) -> FullSerialParts:
    expected = "28 digits SSKKKPPYYMMDDBBBBUUUUUWWWWCC"
    _require_shape(serial_number, (FULL_SERIAL_LENGTH,), expected)

    site_id = int(serial_number[0:2])
    strain_id = int(serial_number[2:5])
    product_type = int(serial_number[5:7])
    unit_sequence = int(serial_number[17:22])
    if site_id < 1 or strain_id < 1 or product_type < 1 or unit_sequence < 1:
        raise MalformedIdentifierError(serial_number, expected)

    return FullSerialParts(
        serial_number=serial_number,
        site_id=site_id,
        strain_id=strain_id,
        product_type=product_type,
        serial_date=_parse_date(serial_number, serial_number[7:13], "%y%m%d", expected),
        batch_sequence=int(serial_number[13:17]),
        unit_sequence=unit_sequence,
        weight_grams=decode_weight(int(serial_number[22:26])),
        check=serial_number[26:28],
    )


def parse_short_serial_number(serial_number: str) -> ShortSerialParts:
    expected = "13 or 14 digits SSYYMMDDNNNNN[C]"
    _require_shape(serial_number, (SHORT_SERIAL_LENGTH, SHORT_SERIAL_CHECKED_LENGTH), expected)

    site_id = int(serial_number[0:2])
    sequence = int(serial_number[8:13])
    if site_id < 1 or sequence < 1:
        raise MalformedIdentifierError(serial_number, expected)

    return ShortSerialParts(
        serial_number=serial_number,
        site_id=site_id,
        serial_date=_parse_date(serial_number, serial_number[2:8], "%y%m%d", expected),
        sequence=sequence,
        has_check_digit=len(serial_number) == SHORT_SERIAL_CHECKED_LENGTH,
    )


def batch_sequence_of(batch_number: str) -> int:
    """Daily sequence field of a batch number, embedded in full serials."""
    return parse_batch_number(batch_number).sequence


# =============================================================================
# Validation
# =============================================================================

_PARSERS = {
    BATCH_NUMBER_LENGTH: parse_batch_number,
    BATCH_NUMBER_CHECKED_LENGTH: parse_batch_number,
    FULL_SERIAL_LENGTH: parse_full_serial_number,
    SHORT_SERIAL_LENGTH: parse_short_serial_number,
    SHORT_SERIAL_CHECKED_LENGTH: parse_short_serial_number,
}


def validate_check_digit(identifier: str) -> bool:
    """
    Validate any identifier shape, dispatching on length.

    28 digits: two-digit check.  17 and 14 digits: single Luhn digit.
    16 and 13 digits carry no check digit, so only their structure (field
    ranges and calendar date) is validated.  Never raises.
    """
    if not isinstance(identifier, str) or not identifier.isascii() or not identifier.isdigit():
        return False

    length = len(identifier)
    parser = _PARSERS.get(length)
    if parser is None:
        return False

    if length == FULL_SERIAL_LENGTH:
        if not check_digit.validate_double_check(identifier):
            return False
    elif length in (BATCH_NUMBER_CHECKED_LENGTH, SHORT_SERIAL_CHECKED_LENGTH):
        if not check_digit.validate(identifier):
            return False

    try:
        parser(identifier)
    except MalformedIdentifierError:
        return False
    return True


def require_valid(identifier: str) -> str:
    """
    Return the identifier unchanged if it validates.

    Raises:
        MalformedIdentifierError: If it matches no known shape.
        CheckDigitMismatchError: If the shape is known but validation fails.
    """
    if (
        not isinstance(identifier, str)
        or not identifier.isdigit()
        or len(identifier) not in _PARSERS
    ):
        raise MalformedIdentifierError(identifier, "a batch or serial number")
    if not validate_check_digit(identifier):
        raise CheckDigitMismatchError(identifier)
    return identifier
