"""
Module: stock_ledger.db.types
Responsibility: Decimal conversion and the single rounding helper for
    stock quantities and unit costs.
Architecture position: Ledger > DB.  May be imported by models/, domain/,
    services/ and selectors/.

Invariants enforced:
    - No floats.  Quantities and costs are Decimal with explicit precision.
    - round_quantity() is the only sanctioned rounding function for
      quantities; to_decimal() is the only sanctioned conversion.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

QUANTITY_DECIMAL_PLACES = 4
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_decimal(value: Decimal | int | str) -> Decimal:
    """
    Convert a caller-supplied number to Decimal.

    Floats are refused: binary floating point cannot represent most
    quantities exactly.

    Raises:
        ValueError: On floats, booleans or unparseable strings.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"Quantities must be Decimal, int or str, got {type(value).__name__}")
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a decimal quantity: {value!r}") from exc


def round_quantity(
    value: Decimal,
    decimal_places: int = QUANTITY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a quantity to ``decimal_places`` using ``rounding``."""
    quantize_str = "1" if decimal_places == 0 else "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)
