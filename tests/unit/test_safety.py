"""Tests for the price drift circuit breaker."""

import pytest

from tokenbalancer.exceptions import PriceDriftDetected
from tokenbalancer.portfolio.safety import PriceSafetyMonitor, PriceSnapshot, PriceTracker

PAIR = ("0xaaa", "0xeee")


class TestPriceTracker:
    def test_keeps_last_ten(self):
        tracker = PriceTracker()
        for price in range(1, 12):
            tracker.push(float(price))

        assert len(tracker) == 10
        assert tracker.values()[0] == 2.0
        assert tracker.average() == pytest.approx(6.5)


class TestPriceSnapshot:
    def test_snapshot_is_read_only(self):
        prices = {PAIR: 1.0}
        snapshot = PriceSnapshot.capture(prices)
        prices[PAIR] = 2.0

        assert snapshot.get(PAIR) == 1.0
        with pytest.raises(TypeError):
            snapshot.prices[PAIR] = 3.0


class TestPriceSafetyMonitor:
    @pytest.fixture
    def monitor(self, test_config):
        monitor = PriceSafetyMonitor(test_config)
        monitor.begin({PAIR: 100.0})
        return monitor

    def test_within_bounds(self, monitor):
        monitor.check(PAIR, 101.0)
        monitor.check(PAIR, 99.5)
        assert monitor.tracker(PAIR).values() == [101.0, 99.5]

    @pytest.mark.parametrize("live", [121.0, 79.0])
    def test_relative_drift(self, monitor, live):
        with pytest.raises(PriceDriftDetected) as exc_info:
            monitor.check(PAIR, live)
        assert exc_info.value.kind == "relative"
        assert exc_info.value.pair == PAIR

    def test_relative_trip_does_not_touch_tracker(self, monitor):
        with pytest.raises(PriceDriftDetected):
            monitor.check(PAIR, 130.0)
        assert len(monitor.tracker(PAIR)) == 0

    def test_average_drift(self, monitor):
        for _ in range(9):
            monitor.check(PAIR, 100.0)

        # 15% above the start is fine, but 13% above the recent mean is not
        with pytest.raises(PriceDriftDetected) as exc_info:
            monitor.check(PAIR, 115.0)
        assert exc_info.value.kind == "average"

    def test_untracked_pair_passes(self, monitor):
        monitor.check(("0xbbb", "0xeee"), 1e9)

    def test_reset(self, monitor):
        monitor.reset()
        assert monitor.snapshot.get(PAIR) is None
        assert monitor.tracker(PAIR) is None
        monitor.check(PAIR, 1000.0)

    def test_begin_skips_missing_prices(self, test_config):
        monitor = PriceSafetyMonitor(test_config)
        monitor.begin({PAIR: 100.0, ("0xbbb", "0xeee"): None})
        assert monitor.tracker(("0xbbb", "0xeee")) is None
