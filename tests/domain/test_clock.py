"""Tests for the injectable clocks."""

from datetime import datetime, timedelta, timezone

import pytest

from stock_ledger.domain.clock import EPOCH, DeterministicClock, SystemClock


class TestDeterministicClock:
    def test_frozen_until_advanced(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now() == EPOCH

        assert clock.advance(days=1, hours=2) == EPOCH + timedelta(days=1, hours=2)
        assert clock.now() == EPOCH + timedelta(days=1, hours=2)

    def test_start_is_normalised_to_utc(self):
        start = datetime(2024, 6, 1, 8, 0, tzinfo=timezone(timedelta(hours=-4)))
        clock = DeterministicClock(start)
        assert clock.now() == start
        assert clock.now().utcoffset() == timedelta(0)

    def test_days_ago(self):
        clock = DeterministicClock()
        assert clock.days_ago(30) == EPOCH - timedelta(days=30)

    def test_set_time_rejects_naive(self):
        with pytest.raises(ValueError):
            DeterministicClock().set_time(datetime(2024, 1, 1))


def test_system_clock_is_utc_aware():
    assert SystemClock().now().utcoffset() == timedelta(0)
