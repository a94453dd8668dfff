"""
Transaction classifier (``stock_ledger.domain.classifier``).

Responsibility
--------------
Turns a business document event (document type + action + line items)
into canonical movement intents: ``(transaction_type, signed quantity
delta, unit cost)`` per affected (variation, location).

Architecture position
---------------------
**Domain layer** -- pure functions and frozen value objects.  ZERO I/O.
Consumed by ``StockPostingService`` and ``TransferService``; the writer
re-checks every intent with ``validate_delta``.

Invariants enforced
-------------------
* Exactly one intent per line item; a completed transfer line yields a
  ``transfer_out``/``transfer_in`` pair that is appended as one unit.
* Zero quantities are rejected, never logged.
* Negative quantities on directional documents are rejected, never flipped.
* A delta whose sign contradicts its transaction type raises
  ``InvalidDeltaError``.

Sign conventions
----------------
=================  =====================  ======
document           movement               delta
=================  =====================  ======
opening_stock      opening_stock          +q
purchase_receipt   purchase_receipt       +q
sale               sale                   -q
customer_return    customer_return        +q
supplier_return    supplier_return        -q
correction         correction             q (signed)
transfer/send      transfer_out (source)  -q
transfer/receive   transfer_in (dest)     +q
transfer/complete  both of the above      -q, +q
=================  =====================  ======
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from stock_ledger.db.types import QUANTITY_DECIMAL_PLACES, round_quantity, to_decimal
from stock_ledger.domain.values import (
    SIGN_RULES,
    VALUATION_TYPES,
    DeltaSign,
    DocumentReference,
    MovementType,
    ReferenceType,
)
from stock_ledger.exceptions import InvalidDeltaError, ValidationError
from stock_ledger.utils.idempotency import generate_idempotency_key


class DocumentType(str, Enum):
    """Business documents that move stock."""

    OPENING_STOCK = "opening_stock"
    PURCHASE_RECEIPT = "purchase_receipt"
    SALE = "sale"
    TRANSFER = "transfer"
    CORRECTION = "correction"
    CUSTOMER_RETURN = "customer_return"
    SUPPLIER_RETURN = "supplier_return"


class TransferAction(str, Enum):
    """Transfer legs a classification can request."""

    SEND = "send"
    RECEIVE = "receive"
    COMPLETE = "complete"


# Single-movement documents
_DIRECT_DOCUMENTS: dict[DocumentType, MovementType] = {
    DocumentType.OPENING_STOCK: MovementType.OPENING_STOCK,
    DocumentType.PURCHASE_RECEIPT: MovementType.PURCHASE_RECEIPT,
    DocumentType.SALE: MovementType.SALE,
    DocumentType.CORRECTION: MovementType.CORRECTION,
    DocumentType.CUSTOMER_RETURN: MovementType.CUSTOMER_RETURN,
    DocumentType.SUPPLIER_RETURN: MovementType.SUPPLIER_RETURN,
}

_DEFAULT_NOTES: dict[MovementType, str] = {
    MovementType.OPENING_STOCK: "Opening stock {ref}",
    MovementType.PURCHASE_RECEIPT: "Purchase receipt {ref}",
    MovementType.SALE: "Sale {ref}",
    MovementType.CORRECTION: "Inventory correction {ref}",
    MovementType.CUSTOMER_RETURN: "Customer return {ref}",
    MovementType.SUPPLIER_RETURN: "Supplier return {ref}",
    MovementType.TRANSFER_OUT: "Transfer {ref} to location {other}",
    MovementType.TRANSFER_IN: "Transfer {ref} from location {other}",
}


@dataclass(frozen=True)
class LineItem:
    """One document line: how much of which variation, at what unit cost."""

    product_id: int
    variation_id: int
    quantity: Decimal
    unit_cost: Decimal | None = None


@dataclass(frozen=True)
class StockEvent:
    """
    A stock-affecting business event, as supplied by a document handler.

    ``location_id`` is the location the document acts on; for transfers it
    is the source and ``destination_location_id`` the destination.
    """

    business_id: int
    document_type: DocumentType
    reference_id: int
    location_id: int
    lines: tuple[LineItem, ...]
    actor_id: int
    transaction_date: datetime
    action: TransferAction | None = None
    destination_location_id: int | None = None
    notes: str | None = None

    @property
    def reference(self) -> DocumentReference:
        return DocumentReference(ReferenceType(DocumentType(self.document_type).value), self.reference_id)


@dataclass(frozen=True)
class MovementIntent:
    """
    A classified movement waiting to be appended.

    Carries everything the writer needs to persist one StockMovement row.
    """

    business_id: int
    product_id: int
    variation_id: int
    location_id: int
    transaction_type: MovementType
    quantity_delta: Decimal
    reference: DocumentReference
    transaction_date: datetime
    actor_id: int
    unit_cost: Decimal | None = None
    notes: str | None = None
    affects_balance: bool = True
    reverses_seq: int | None = None

    @property
    def idempotency_key(self) -> str:
        return generate_idempotency_key(
            self.business_id,
            self.reference.reference_type.value,
            self.reference.reference_id,
            self.transaction_type.value,
            self.variation_id,
            self.location_id,
            reversal=self.reverses_seq is not None,
        )

    @property
    def total_value(self) -> Decimal | None:
        if self.unit_cost is None:
            return None
        return self.unit_cost * abs(self.quantity_delta)

    @property
    def pair(self) -> tuple[int, int, int]:
        """(business, variation, location) key of the balance this moves."""
        return (self.business_id, self.variation_id, self.location_id)


def validate_delta(
    transaction_type: MovementType,
    quantity_delta: Decimal,
    allow_zero: bool = False,
) -> None:
    """
    Check a signed delta against its transaction type's sign convention.

    Raises:
        ValidationError: zero delta (unless ``allow_zero``).
        InvalidDeltaError: sign contradicts the type (e.g. a positive sale).
    """
    if quantity_delta == 0:
        if allow_zero:
            return
        raise ValidationError(
            f"{transaction_type.value} movement with zero quantity", field="quantity_delta"
        )

    rule = SIGN_RULES[transaction_type]
    if rule is DeltaSign.POSITIVE and quantity_delta < 0:
        raise InvalidDeltaError(transaction_type.value, quantity_delta, "positive")
    if rule is DeltaSign.NEGATIVE and quantity_delta > 0:
        raise InvalidDeltaError(transaction_type.value, quantity_delta, "negative")


def _require_id(value: object, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer, got {value!r}", field=field)
    return value


class TransactionClassifier:
    """
    Maps business documents to signed movement intents.

    Contract:
        ``classify(event)`` returns one intent per line (two per transfer
        line on ``complete``), in line order, or raises ValidationError.
        Deterministic: the same event always yields the same intents.
    """

    def __init__(self, quantity_places: int = QUANTITY_DECIMAL_PLACES):
        self._quantity_places = quantity_places

    def classify(self, event: StockEvent) -> tuple[MovementIntent, ...]:
        try:
            document_type = DocumentType(event.document_type)
        except ValueError:
            raise ValidationError(
                f"Unknown document type: {event.document_type!r}", field="document_type"
            ) from None

        _require_id(event.business_id, "business_id")
        _require_id(event.reference_id, "reference_id")
        _require_id(event.location_id, "location_id")
        if not event.lines:
            raise ValidationError("Document has no line items", field="lines")

        seen: set[int] = set()
        for line in event.lines:
            _require_id(line.variation_id, "variation_id")
            _require_id(line.product_id, "product_id")
            if line.variation_id in seen:
                raise ValidationError(
                    f"Variation {line.variation_id} appears more than once in "
                    f"{document_type.value} {event.reference_id}",
                    field="lines",
                )
            seen.add(line.variation_id)

        if document_type is DocumentType.TRANSFER:
            return self._classify_transfer(event)

        if event.action is not None:
            raise ValidationError(
                f"{document_type.value} documents take no action, got {event.action!r}",
                field="action",
            )

        movement_type = _DIRECT_DOCUMENTS[document_type]
        intents = []
        for line in event.lines:
            quantity = self._quantity(line)
            if SIGN_RULES[movement_type] is DeltaSign.EITHER:
                delta = quantity
            else:
                if quantity < 0:
                    raise ValidationError(
                        f"{document_type.value} quantity must be positive, got {quantity}",
                        field="quantity",
                    )
                delta = quantity * SIGN_RULES[movement_type].value
            intents.append(
                self._intent(event, line, movement_type, delta, event.location_id, None)
            )
        return tuple(intents)

    def _classify_transfer(self, event: StockEvent) -> tuple[MovementIntent, ...]:
        try:
            action = TransferAction(event.action) if event.action is not None else None
        except ValueError:
            action = None
        if action is None:
            raise ValidationError(
                f"Transfer requires an action (send, receive or complete), got {event.action!r}",
                field="action",
            )

        destination = event.destination_location_id
        if destination is None:
            raise ValidationError("Transfer requires a destination location", field="destination_location_id")
        _require_id(destination, "destination_location_id")
        if destination == event.location_id:
            raise ValidationError(
                f"Transfer source and destination are both location {destination}",
                field="destination_location_id",
            )

        intents = []
        for line in event.lines:
            quantity = self._quantity(line)
            if quantity < 0:
                raise ValidationError(
                    f"transfer quantity must be positive, got {quantity}", field="quantity"
                )
            if action in (TransferAction.SEND, TransferAction.COMPLETE):
                intents.append(
                    self._intent(
                        event, line, MovementType.TRANSFER_OUT, -quantity,
                        event.location_id, destination,
                    )
                )
            if action in (TransferAction.RECEIVE, TransferAction.COMPLETE):
                intents.append(
                    self._intent(
                        event, line, MovementType.TRANSFER_IN, quantity,
                        destination, event.location_id,
                    )
                )
        return tuple(intents)

    def _quantity(self, line: LineItem) -> Decimal:
        try:
            quantity = to_decimal(line.quantity)
        except ValueError as exc:
            raise ValidationError(str(exc), field="quantity") from exc
        if not quantity.is_finite():
            raise ValidationError(f"Quantity must be finite, got {quantity}", field="quantity")
        if quantity == 0:
            raise ValidationError(
                f"Zero quantity for variation {line.variation_id}", field="quantity"
            )
        if round_quantity(quantity, self._quantity_places) != quantity:
            raise ValidationError(
                f"Quantity {quantity} has more than {self._quantity_places} decimal places",
                field="quantity",
            )
        return quantity

    def _unit_cost(self, line: LineItem, movement_type: MovementType) -> Decimal | None:
        if line.unit_cost is None:
            if movement_type in VALUATION_TYPES:
                raise ValidationError(
                    f"{movement_type.value} requires a unit cost for variation {line.variation_id}",
                    field="unit_cost",
                )
            return None
        try:
            cost = to_decimal(line.unit_cost)
        except ValueError as exc:
            raise ValidationError(str(exc), field="unit_cost") from exc
        if not cost.is_finite() or cost < 0:
            raise ValidationError(f"Unit cost must be zero or more, got {cost}", field="unit_cost")
        return cost

    def _intent(
        self,
        event: StockEvent,
        line: LineItem,
        movement_type: MovementType,
        delta: Decimal,
        location_id: int,
        other_location_id: int | None,
    ) -> MovementIntent:
        validate_delta(movement_type, delta)
        notes = event.notes or _DEFAULT_NOTES[movement_type].format(
            ref=event.reference_id, other=other_location_id
        )
        return MovementIntent(
            business_id=event.business_id,
            product_id=line.product_id,
            variation_id=line.variation_id,
            location_id=location_id,
            transaction_type=movement_type,
            quantity_delta=delta,
            reference=event.reference,
            transaction_date=event.transaction_date,
            actor_id=event.actor_id,
            unit_cost=self._unit_cost(line, movement_type),
            notes=notes,
        )
