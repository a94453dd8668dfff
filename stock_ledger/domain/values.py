"""
Value types shared by every layer of the stock ledger.

Pure value objects: canonical transaction-type tags, document reference
tags, and the sign convention each transaction type obeys.  ZERO I/O.
"""

from dataclasses import dataclass
from enum import Enum


class MovementType(str, Enum):
    """Canonical transaction-type tag stored on every StockMovement."""

    OPENING_STOCK = "opening_stock"
    PURCHASE_RECEIPT = "purchase_receipt"
    SALE = "sale"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"
    CORRECTION = "correction"
    CUSTOMER_RETURN = "customer_return"
    SUPPLIER_RETURN = "supplier_return"


class ReferenceType(str, Enum):
    """Kind of business document a movement points back to."""

    OPENING_STOCK = "opening_stock"
    PURCHASE_RECEIPT = "purchase_receipt"
    SALE = "sale"
    TRANSFER = "transfer"
    CORRECTION = "correction"
    CUSTOMER_RETURN = "customer_return"
    SUPPLIER_RETURN = "supplier_return"
    RECONCILIATION = "reconciliation"


class DeltaSign(int, Enum):
    """Required sign of a movement's quantity delta."""

    NEGATIVE = -1
    EITHER = 0
    POSITIVE = 1


SIGN_RULES: dict[MovementType, DeltaSign] = {
    MovementType.OPENING_STOCK: DeltaSign.POSITIVE,
    MovementType.PURCHASE_RECEIPT: DeltaSign.POSITIVE,
    MovementType.SALE: DeltaSign.NEGATIVE,
    MovementType.TRANSFER_OUT: DeltaSign.NEGATIVE,
    MovementType.TRANSFER_IN: DeltaSign.POSITIVE,
    MovementType.CORRECTION: DeltaSign.EITHER,
    MovementType.CUSTOMER_RETURN: DeltaSign.POSITIVE,
    MovementType.SUPPLIER_RETURN: DeltaSign.NEGATIVE,
}

# Types whose rows carry valuation and therefore need a unit cost
VALUATION_TYPES: frozenset[MovementType] = frozenset(
    {MovementType.OPENING_STOCK, MovementType.PURCHASE_RECEIPT}
)


@dataclass(frozen=True)
class DocumentReference:
    """
    Polymorphic pointer to the business document behind a movement.

    Resolving the pointer to a concrete document is the caller's job.
    """

    reference_type: ReferenceType
    reference_id: int

    def __post_init__(self):
        if not isinstance(self.reference_type, ReferenceType):
            object.__setattr__(self, "reference_type", ReferenceType(self.reference_type))
        if isinstance(self.reference_id, bool) or not isinstance(self.reference_id, int):
            raise ValueError(f"reference_id must be an int, got {self.reference_id!r}")
        if self.reference_id <= 0:
            raise ValueError(f"reference_id must be positive, got {self.reference_id}")

    def __str__(self) -> str:
        return f"{self.reference_type.value}/{self.reference_id}"
