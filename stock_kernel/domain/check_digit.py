"""
Check digit -- Luhn (mod 10) computation and validation.

Responsibility:
    Compute and validate the single-digit Luhn check used by batch numbers
    and EAN-13 style short serials, and the two-digit variant that closes a
    28-digit full serial number.

Architecture position:
    Kernel > Domain -- pure functions, no I/O.

Algorithm:
    Walk the payload right to left.  The rightmost payload digit and every
    second digit after it is doubled (the check digit itself will take
    position 1 once appended), 9 is subtracted from doubled values above 9,
    and the check digit is ``(10 - sum % 10) % 10``.

    The two-digit check is ``c1 = luhn(payload)`` followed by
    ``c2 = luhn(payload + c1)``, so each digit is an ordinary Luhn digit over
    everything to its left.

Failure modes:
    - InvalidArgumentError from the compute functions on empty or non-digit
      input.  The validate functions never raise; they return False.
"""

from stock_kernel.exceptions import InvalidArgumentError


def _require_digits(digits: str, argument: str = "digits") -> None:
    if not isinstance(digits, str) or not digits.strip():
        raise InvalidArgumentError(argument, digits, "cannot be empty")
    if not digits.isascii() or not digits.isdigit():
        raise InvalidArgumentError(argument, digits, "must contain only digits 0-9")


def _is_digit_string(value) -> bool:
    return isinstance(value, str) and value.isascii() and value.isdigit()


def compute_check_digit(digits: str) -> int:
    """
    Compute the Luhn check digit for a payload.

    >>> compute_check_digit("7992739871")
    3

    Raises:
        InvalidArgumentError: If digits is empty or contains a non-digit.
    """
    _require_digits(digits)

    total = 0
    double = True
    for ch in reversed(digits):
        d = ord(ch) - 48
        if double:
            d *= 2
            if d > 9:
                d -= 9
        total += d
        double = not double

    return (10 - total % 10) % 10


def append_check_digit(digits: str) -> str:
    """Return ``digits`` followed by its Luhn check digit."""
    return f"{digits}{compute_check_digit(digits)}"


def validate(digits_with_check: str) -> bool:
    """
    Validate a string whose last character is a Luhn check digit.

    Returns False for anything shorter than two digits or containing a
    non-digit; never raises.
    """
    if not _is_digit_string(digits_with_check) or len(digits_with_check) < 2:
        return False
    payload, check = digits_with_check[:-1], digits_with_check[-1]
    return compute_check_digit(payload) == int(check)


def extract_check_digit(digits_with_check: str) -> int:
    """Return the trailing check digit."""
    _require_digits(digits_with_check, "digits_with_check")
    return int(digits_with_check[-1])


def remove_check_digit(digits_with_check: str) -> str:
    """Return the payload without its trailing check digit."""
    _require_digits(digits_with_check, "digits_with_check")
    if len(digits_with_check) < 2:
        raise InvalidArgumentError(
            "digits_with_check", digits_with_check, "must have at least 2 digits",
        )
    return digits_with_check[:-1]


def compute_double_check(digits: str) -> str:
    """
    Compute the two-digit check for a payload.

    Returns:
        Two-character string ``c1 c2``.
    """
    c1 = compute_check_digit(digits)
    c2 = compute_check_digit(f"{digits}{c1}")
    return f"{c1}{c2}"


def validate_double_check(value: str) -> bool:
    """Validate a string whose last two characters are a two-digit check."""
    if not _is_digit_string(value) or len(value) < 3:
        return False
    return compute_double_check(value[:-2]) == value[-2:]
