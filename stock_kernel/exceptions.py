"""
Typed exception hierarchy for the stock kernel.

Every error carries a machine-readable ``code`` class attribute and its
context as structured attributes, so callers catch by type and APIs and logs
serialize the attributes instead of parsing messages.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- InvalidArgumentError
    |   +-- WeightOutOfRangeError
    |   +-- MalformedIdentifierError
    |
    +-- SequenceError
    |   +-- SequenceExhaustedError
    |
    +-- IdentifierError
    |   +-- CheckDigitMismatchError
    |   +-- DuplicateIdentifierError
    |
    +-- LedgerError
    |   +-- MovementNotFoundError
    |   +-- MovementAlreadyVoidedError
    |   +-- IdempotencyConflictError
    |   +-- InsufficientStockError
    |
    +-- TraceabilityError
    |   +-- BatchNotFoundError
    |   +-- SerialNotFoundError
    |   +-- InvalidStatusTransitionError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Argument        | INVALID_ARGUMENT            | Site/strain/type/quantity out of range
                | WEIGHT_OUT_OF_RANGE         | Weight above 99.99 g or negative
                | MALFORMED_IDENTIFIER        | Identifier has the wrong shape
----------------|-----------------------------|-----------------------------------------
Sequence        | SEQUENCE_EXHAUSTED          | Partition capacity used up
----------------|-----------------------------|-----------------------------------------
Identifier      | CHECK_DIGIT_MISMATCH        | Scanned identifier fails validation
                | DUPLICATE_IDENTIFIER        | Same identifier issued twice (allocator bug)
----------------|-----------------------------|-----------------------------------------
Ledger          | MOVEMENT_NOT_FOUND          | Movement id does not exist
                | MOVEMENT_ALREADY_VOIDED     | Second void of the same movement
                | IDEMPOTENCY_CONFLICT        | Same key, different payload
                | INSUFFICIENT_STOCK          | Withdrawal would drive SOH negative
----------------|-----------------------------|-----------------------------------------
Traceability    | BATCH_NOT_FOUND             | Batch number not registered
                | SERIAL_NOT_FOUND            | Serial number not registered
                | INVALID_STATUS_TRANSITION   | Lifecycle transition not allowed
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | UPDATE/DELETE of an append-only row

``DriftDetected`` (code DRIFT_DETECTED) is not an exception: reconciliation
repairs drift automatically and publishes it as an event
(see stock_kernel.domain.dtos.DriftDetected).

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Allocation errors are returned synchronously and leave no identifier
   in use:

    try:
        batch_number = ledger.generate_batch_number(site_id, batch_type)
    except SequenceExhaustedError as e:
        escalate(e.partition_key, e.max_value)

2. Append durability failures are retried with the same idempotency key:

    except OperationalError:
        ledger.record_movement(spec)  # same spec.idempotency_key

3. DuplicateIdentifierError is never retried silently; it means the
   allocator handed out a value twice.
"""


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses define a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Argument validation


class InvalidArgumentError(StockKernelError):
    """Argument outside its permitted range; rejected before any allocation."""

    code: str = "INVALID_ARGUMENT"

    def __init__(self, argument: str, value, reason: str):
        self.argument = argument
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {argument}={value!r}: {reason}")


class WeightOutOfRangeError(InvalidArgumentError):
    """Unit weight cannot be encoded in four centigram digits."""

    code: str = "WEIGHT_OUT_OF_RANGE"

    def __init__(self, weight_grams, max_grams):
        self.weight_grams = weight_grams
        self.max_grams = max_grams
        super().__init__(
            "weight_grams",
            weight_grams,
            f"must be between 0 and {max_grams} grams",
        )


class MalformedIdentifierError(InvalidArgumentError):
    """Identifier does not match any known shape."""

    code: str = "MALFORMED_IDENTIFIER"

    def __init__(self, identifier: str, expected: str):
        self.identifier = identifier
        self.expected = expected
        super().__init__("identifier", identifier, f"expected {expected}")


# Sequence allocation


class SequenceError(StockKernelError):
    """Base exception for sequence allocation errors."""

    code: str = "SEQUENCE_ERROR"


class SequenceExhaustedError(SequenceError):
    """Partition has issued every value its digit width allows."""

    code: str = "SEQUENCE_EXHAUSTED"

    def __init__(self, partition_key: str, max_value: int):
        self.partition_key = partition_key
        self.max_value = max_value
        super().__init__(
            f"Sequence partition {partition_key} exhausted at {max_value}"
        )


# Identifier validation


class IdentifierError(StockKernelError):
    """Base exception for identifier errors."""

    code: str = "IDENTIFIER_ERROR"


class CheckDigitMismatchError(IdentifierError):
    """Identifier failed check-digit validation on scan or lookup."""

    code: str = "CHECK_DIGIT_MISMATCH"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Check digit mismatch for identifier {identifier}")


class DuplicateIdentifierError(IdentifierError):
    """
    The same identifier was issued twice.

    Structurally impossible with atomic allocation; observing it means the
    allocator is broken, so it is logged at CRITICAL and never retried.
    """

    code: str = "DUPLICATE_IDENTIFIER"

    def __init__(self, identifier: str, kind: str):
        self.identifier = identifier
        self.kind = kind
        super().__init__(f"Duplicate {kind} identifier issued: {identifier}")


# Ledger


class LedgerError(StockKernelError):
    """Base exception for movement ledger errors."""

    code: str = "LEDGER_ERROR"


class MovementNotFoundError(LedgerError):
    """Movement with given ID was not found."""

    code: str = "MOVEMENT_NOT_FOUND"

    def __init__(self, movement_id: str):
        self.movement_id = movement_id
        super().__init__(f"Movement not found: {movement_id}")


class MovementAlreadyVoidedError(LedgerError):
    """Movement already has a compensating entry."""

    code: str = "MOVEMENT_ALREADY_VOIDED"

    def __init__(self, movement_id: str, voided_by_movement_id: str | None):
        self.movement_id = movement_id
        self.voided_by_movement_id = voided_by_movement_id
        super().__init__(
            f"Movement {movement_id} already voided by {voided_by_movement_id}"
        )


class IdempotencyConflictError(LedgerError):
    """Idempotency key reused with a different payload."""

    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, expected_hash: str, received_hash: str):
        self.idempotency_key = idempotency_key
        self.expected_hash = expected_hash
        self.received_hash = received_hash
        super().__init__(
            f"Idempotency key {idempotency_key} reused with a different payload: "
            f"expected {expected_hash}, received {received_hash}"
        )


class InsufficientStockError(LedgerError):
    """Withdrawal would drive stock on hand negative (policy ``block``)."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: int,
        site_id: int,
        batch_number: str | None,
        available: str,
        requested: str,
    ):
        self.product_id = product_id
        self.site_id = site_id
        self.batch_number = batch_number
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id} at site {site_id}"
            f" batch {batch_number}: available={available}, requested={requested}"
        )


# Traceability


class TraceabilityError(StockKernelError):
    """Base exception for batch and serial traceability errors."""

    code: str = "TRACEABILITY_ERROR"


class BatchNotFoundError(TraceabilityError):
    """Batch number is not registered."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_number: str):
        self.batch_number = batch_number
        super().__init__(f"Batch not found: {batch_number}")


class SerialNotFoundError(TraceabilityError):
    """Serial number is not registered."""

    code: str = "SERIAL_NOT_FOUND"

    def __init__(self, serial_number: str):
        self.serial_number = serial_number
        super().__init__(f"Serial number not found: {serial_number}")


class InvalidStatusTransitionError(TraceabilityError):
    """Lifecycle transition is not permitted."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, from_status: str, to_status: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"{entity_type} {entity_id} cannot move from {from_status} to {to_status}"
        )


# Immutability


class ImmutabilityError(StockKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
