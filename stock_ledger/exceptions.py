"""
Typed exception hierarchy for the stock ledger.

Every error raised by the engine is a subclass of ``StockLedgerError`` and
carries:
  1. a TYPED class, so callers catch by type instead of parsing messages,
  2. a ``code`` class attribute, machine-readable and API-safe,
  3. structured attributes describing the failure.

Example:
    try:
        posting.post(sale_event)
    except InsufficientStockError as e:
        api_response(code=e.code, available=e.available, requested=e.requested)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockLedgerError (base)
    |
    +-- ValidationError
    |   +-- InvalidDeltaError
    |
    +-- PostingError
    |   +-- DuplicateMovementError      (non-fatal: prior result attached)
    |   +-- IdempotencyConflictError
    |   +-- MovementNotFoundError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- PersistenceError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                     | When Raised
-------------|--------------------------|------------------------------------------
Validation   | VALIDATION_ERROR         | Malformed document / line input
             | INVALID_DELTA            | Delta sign contradicts transaction type
-------------|--------------------------|------------------------------------------
Posting      | DUPLICATE_MOVEMENT       | Idempotency key already posted (OK)
             | IDEMPOTENCY_CONFLICT     | Only part of a call's keys already exist
             | MOVEMENT_NOT_FOUND       | Movement seq / document has no movements
-------------|--------------------------|------------------------------------------
Stock        | INSUFFICIENT_STOCK       | Balance would go negative (no backorder)
-------------|--------------------------|------------------------------------------
Workflow     | INVALID_TRANSITION       | Action not allowed from current state
-------------|--------------------------|------------------------------------------
Concurrency  | OPTIMISTIC_LOCK_CONFLICT | Snapshot version changed under us
-------------|--------------------------|------------------------------------------
Immutability | IMMUTABILITY_VIOLATION   | Update/delete of an appended movement
-------------|--------------------------|------------------------------------------
Persistence  | PERSISTENCE_ERROR        | Storage failure; transaction rolled back

Handling guidance:
   - DuplicateMovementError -> treat as success
   - ValidationError / InsufficientStockError -> surface to the user
   - ConcurrencyError / PersistenceError -> retry with backoff or fail generically
"""

from decimal import Decimal
from typing import Any


class StockLedgerError(Exception):
    """
    Base exception for all stock ledger errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "STOCK_LEDGER_ERROR"


# Validation exceptions


class ValidationError(StockLedgerError):
    """Classifier rejected malformed input. Nothing was applied."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidDeltaError(ValidationError):
    """Requested delta sign is inconsistent with the transaction type."""

    code: str = "INVALID_DELTA"

    def __init__(self, transaction_type: str, quantity_delta: Decimal, expected: str):
        self.transaction_type = transaction_type
        self.quantity_delta = quantity_delta
        self.expected = expected
        super().__init__(
            f"{transaction_type} requires a {expected} delta, got {quantity_delta}",
            field="quantity_delta",
        )


# Posting exceptions


class PostingError(StockLedgerError):
    """Base exception for movement posting errors."""

    code: str = "POSTING_ERROR"


class DuplicateMovementError(PostingError):
    """
    Every idempotency key in the call was already posted.

    Non-fatal: callers treat this as success. ``prior_result`` is the
    AppendResult describing the movements that already exist.
    """

    code: str = "DUPLICATE_MOVEMENT"

    def __init__(self, idempotency_keys: list[str], prior_result: Any = None):
        self.idempotency_keys = idempotency_keys
        self.prior_result = prior_result
        super().__init__(
            f"Movements already posted for {len(idempotency_keys)} key(s): "
            f"{', '.join(idempotency_keys)}"
        )


class IdempotencyConflictError(PostingError):
    """Some, but not all, idempotency keys of one append already exist."""

    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(self, existing_keys: list[str], missing_keys: list[str]):
        self.existing_keys = existing_keys
        self.missing_keys = missing_keys
        super().__init__(
            f"Partial duplicate posting: {len(existing_keys)} key(s) exist, "
            f"{len(missing_keys)} missing"
        )


class MovementNotFoundError(PostingError):
    """No movement matched the given seq or document reference."""

    code: str = "MOVEMENT_NOT_FOUND"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Stock movement not found: {identifier}")


# Stock exceptions


class StockError(StockLedgerError):
    """Base exception for stock-level business rule errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Applying the delta would drive the balance below zero."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        variation_id: int,
        location_id: int,
        available: Decimal,
        requested: Decimal,
    ):
        self.variation_id = variation_id
        self.location_id = location_id
        self.available = available
        self.requested = requested
        self.shortage = requested - available
        super().__init__(
            f"Insufficient stock for variation {variation_id} at location "
            f"{location_id}. Current: {available}, Requested: {requested}, "
            f"Shortage: {self.shortage}"
        )


# Workflow exceptions


class WorkflowError(StockLedgerError):
    """Base exception for document workflow errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """The action is not allowed from the document's current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, workflow: str, state: str, action: str):
        self.workflow = workflow
        self.state = state
        self.action = action
        super().__init__(
            f"Workflow {workflow}: action '{action}' not allowed from state '{state}'"
        )


# Concurrency exceptions


class ConcurrencyError(StockLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, attempts: int = 1):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attempts = attempts
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id} after "
            f"{attempts} attempt(s): entity was modified by another transaction"
        )


# Immutability exceptions


class ImmutabilityError(StockLedgerError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an appended stock movement."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Persistence exceptions


class PersistenceError(StockLedgerError):
    """
    Underlying storage failure.

    The unit of work was rolled back; no partial log or snapshot
    mutation is visible.
    """

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause_type = type(cause).__name__
        super().__init__(f"Storage failure during {operation}: {cause}")
