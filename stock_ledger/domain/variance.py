"""
Variance classification rules for reconciliation reports.

Pure functions over Decimals.  ZERO I/O.  ``variance`` is always
``computed - stored``: positive means the snapshot holds less than the log
says (shortage), negative means it holds more (overage).
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from stock_ledger.config import LedgerConfig

_HUNDRED = Decimal("100")


class VarianceType(str, Enum):
    MATCH = "match"
    SHORTAGE = "shortage"
    OVERAGE = "overage"


@dataclass(frozen=True)
class VarianceAssessment:
    """How bad a variance is, and what may be done about it."""

    variance_type: VarianceType
    variance_percentage: Decimal
    variance_value: Decimal | None
    requires_investigation: bool
    auto_fixable: bool
    suspicious_activity: bool
    suspicious_reasons: tuple[str, ...] = ()


def variance_percentage(variance: Decimal, computed: Decimal) -> Decimal:
    """|variance / computed| * 100, or 0 when the computed balance is zero."""
    if computed == 0:
        return Decimal("0")
    return abs(variance / computed) * _HUNDRED


def assess_variance(
    computed: Decimal,
    stored: Decimal,
    *,
    unit_cost: Decimal | None,
    movement_count: int,
    recent_movement_count: int,
    config: LedgerConfig,
) -> VarianceAssessment:
    """
    Classify ``computed - stored``.

    Investigation is required when any threshold is exceeded: percentage,
    absolute quantity or absolute value.  A non-matching variance that
    exceeds none of them is auto-fixable.
    """
    variance = computed - stored
    pct = variance_percentage(variance, computed)
    value = variance * unit_cost if unit_cost is not None else None

    if abs(variance) < config.variance_tolerance:
        variance_type = VarianceType.MATCH
    elif variance > 0:
        variance_type = VarianceType.SHORTAGE
    else:
        variance_type = VarianceType.OVERAGE

    requires_investigation = variance_type is not VarianceType.MATCH and (
        pct > config.investigation_percentage
        or abs(variance) > config.investigation_quantity
        or (value is not None and abs(value) > config.investigation_value)
    )
    auto_fixable = variance_type is not VarianceType.MATCH and not requires_investigation

    reasons = []
    if movement_count == 0 and stored > 0:
        reasons.append("stock_without_movements")
    if recent_movement_count > config.suspicious_movement_count:
        reasons.append("high_movement_frequency")
    if computed < 0:
        reasons.append("negative_ledger_balance")

    return VarianceAssessment(
        variance_type=variance_type,
        variance_percentage=pct,
        variance_value=value,
        requires_investigation=requires_investigation,
        auto_fixable=auto_fixable,
        suspicious_activity=bool(reasons),
        suspicious_reasons=tuple(reasons),
    )
