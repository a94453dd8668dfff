"""Shared constants and builders for the stock ledger tests."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from stock_ledger.domain.classifier import DocumentType, LineItem, StockEvent, TransferAction

# Test tenant and actor for all test operations
BUSINESS_ID = 1
ACTOR_ID = 7

# Catalogue used across the suite
PRODUCT_ID = 100
VARIATION_ID = 1001
OTHER_VARIATION_ID = 1002
LOCATION_ID = 10
OTHER_LOCATION_ID = 20

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def day(n: int) -> datetime:
    """T0 plus ``n`` days."""
    return T0 + timedelta(days=n)


def make_event(
    document_type: DocumentType,
    reference_id: int,
    quantity,
    *,
    unit_cost=None,
    location_id: int = LOCATION_ID,
    variation_id: int = VARIATION_ID,
    product_id: int = PRODUCT_ID,
    business_id: int = BUSINESS_ID,
    action: TransferAction | None = None,
    destination_location_id: int | None = None,
    transaction_date: datetime = T0,
    notes: str | None = None,
) -> StockEvent:
    """Build a single-line StockEvent with suite defaults."""
    cost = Decimal(str(unit_cost)) if unit_cost is not None else None
    return StockEvent(
        business_id=business_id,
        document_type=document_type,
        reference_id=reference_id,
        location_id=location_id,
        lines=(LineItem(product_id, variation_id, Decimal(str(quantity)), cost),),
        actor_id=ACTOR_ID,
        transaction_date=transaction_date,
        action=action,
        destination_location_id=destination_location_id,
        notes=notes,
    )
