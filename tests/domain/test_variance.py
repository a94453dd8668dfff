"""Tests for variance classification rules."""

from decimal import Decimal

import pytest

from stock_ledger.config import LedgerConfig
from stock_ledger.domain.variance import VarianceType, assess_variance, variance_percentage


def assess(computed, stored, unit_cost=None, movement_count=3, recent=3, config=None):
    return assess_variance(
        Decimal(computed),
        Decimal(stored),
        unit_cost=Decimal(unit_cost) if unit_cost is not None else None,
        movement_count=movement_count,
        recent_movement_count=recent,
        config=config or LedgerConfig.with_defaults(),
    )


class TestVarianceType:
    """variance = computed - stored."""

    def test_match(self):
        result = assess("100", "100")
        assert result.variance_type is VarianceType.MATCH
        assert not result.requires_investigation
        assert not result.auto_fixable

    def test_below_tolerance_is_match(self):
        assert assess("100", "100.00005").variance_type is VarianceType.MATCH

    def test_snapshot_below_ledger_is_shortage(self):
        assert assess("100", "98").variance_type is VarianceType.SHORTAGE

    def test_snapshot_above_ledger_is_overage(self):
        assert assess("100", "102").variance_type is VarianceType.OVERAGE


class TestThresholds:
    """Investigation thresholds: 5 percent, 10 units, 1000 in value."""

    def test_small_variance_is_auto_fixable(self):
        result = assess("100", "98", unit_cost="10")
        assert result.variance_percentage == Decimal("2")
        assert result.variance_value == Decimal("20")
        assert result.auto_fixable
        assert not result.requires_investigation

    def test_percentage_threshold(self):
        result = assess("50", "47")
        assert result.variance_percentage == Decimal("6")
        assert result.requires_investigation
        assert not result.auto_fixable

    def test_quantity_threshold(self):
        assert assess("1000", "989").requires_investigation

    def test_value_threshold(self):
        result = assess("1000", "998", unit_cost="600")
        assert result.variance_value == Decimal("1200")
        assert result.requires_investigation

    def test_zero_computed_balance_has_zero_percentage(self):
        assert variance_percentage(Decimal("-3"), Decimal("0")) == Decimal("0")

    def test_thresholds_come_from_config(self):
        strict = LedgerConfig(investigation_percentage=1)
        assert assess("100", "98", config=strict).requires_investigation


class TestSuspiciousActivity:
    """Patterns that point at something other than a simple drift."""

    def test_stock_without_movements(self):
        result = assess("0", "5", movement_count=0, recent=0)
        assert result.suspicious_activity
        assert "stock_without_movements" in result.suspicious_reasons

    def test_high_movement_frequency(self):
        result = assess("10", "10", recent=101)
        assert result.suspicious_reasons == ("high_movement_frequency",)

    def test_negative_ledger_balance(self):
        assert "negative_ledger_balance" in assess("-2", "0").suspicious_reasons

    @pytest.mark.parametrize("computed,stored", [("10", "10"), ("10", "9")])
    def test_nothing_suspicious(self, computed, stored):
        result = assess(computed, stored)
        assert not result.suspicious_activity
        assert result.suspicious_reasons == ()
