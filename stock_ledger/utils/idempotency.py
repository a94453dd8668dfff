"""
Idempotency key generation utilities.

A stock movement's idempotency key identifies the business event that
produced it, so that retried or duplicated postings collapse onto the
row that already exists.
"""

REVERSAL_SUFFIX = "rev"

_KEY_PARTS = 6


def generate_idempotency_key(
    business_id: int,
    reference_type: str,
    reference_id: int,
    transaction_type: str,
    variation_id: int,
    location_id: int,
    reversal: bool = False,
) -> str:
    """
    Generate an idempotency key for a stock movement.

    Format: business:reference_type:reference_id:transaction_type:variation:location
    with a trailing ``:rev`` for compensating movements.

    The key is stored on the StockMovement and has a unique constraint.

    Example:
        >>> generate_idempotency_key(1, "transfer", 17, "transfer_out", 42, 3)
        "1:transfer:17:transfer_out:42:3"
    """
    key = (
        f"{business_id}:{reference_type}:{reference_id}:"
        f"{transaction_type}:{variation_id}:{location_id}"
    )
    if reversal:
        key = f"{key}:{REVERSAL_SUFFIX}"
    return key


def parse_idempotency_key(key: str) -> dict[str, str | bool]:
    """
    Parse an idempotency key into its components.

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":")
    reversal = False
    if len(parts) == _KEY_PARTS + 1 and parts[-1] == REVERSAL_SUFFIX:
        reversal = True
        parts = parts[:-1]
    if len(parts) != _KEY_PARTS or not all(parts):
        raise ValueError(f"Invalid idempotency key format: {key}")
    return {
        "business_id": parts[0],
        "reference_type": parts[1],
        "reference_id": parts[2],
        "transaction_type": parts[3],
        "variation_id": parts[4],
        "location_id": parts[5],
        "reversal": reversal,
    }
