"""Price drift circuit breaker."""

from collections import deque
from dataclasses import dataclass, field
from statistics import fmean
from types import MappingProxyType
from typing import Mapping, Optional

import structlog

from tokenbalancer.config import PRICE_TRACKER_WINDOW, AppConfig
from tokenbalancer.exceptions import PriceDriftDetected
from tokenbalancer.models import Pair

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PriceSnapshot:
    """Per-pair prices captured once when the algorithm starts."""

    prices: Mapping[Pair, float] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def capture(cls, prices: Mapping[Pair, float]) -> "PriceSnapshot":
        return cls(prices=MappingProxyType(dict(prices)))

    def get(self, pair: Pair) -> Optional[float]:
        return self.prices.get(pair)


class PriceTracker:
    """Most recent prices for one pair, oldest evicted first."""

    def __init__(self, window: int = PRICE_TRACKER_WINDOW):
        self._prices: deque[float] = deque(maxlen=window)

    def push(self, price: float) -> None:
        self._prices.append(price)

    def average(self) -> float:
        return fmean(self._prices)

    def __len__(self) -> int:
        return len(self._prices)

    def values(self) -> list[float]:
        return list(self._prices)


class PriceSafetyMonitor:
    """Halts the algorithm when a live price drifts too far from its baselines."""

    def __init__(self, config: AppConfig):
        self._relative_limit = config.rebalancing.relative_change_limit
        self._average_limit = config.rebalancing.average_change_limit
        self._snapshot = PriceSnapshot()
        self._trackers: dict[Pair, PriceTracker] = {}

    @property
    def snapshot(self) -> PriceSnapshot:
        return self._snapshot

    def tracker(self, pair: Pair) -> Optional[PriceTracker]:
        return self._trackers.get(pair)

    def begin(self, initial_prices: Mapping[Pair, float]) -> None:
        """Install the start-of-run baseline and empty trackers."""
        self._snapshot = PriceSnapshot.capture(initial_prices)
        self._trackers = {pair: PriceTracker() for pair, price in initial_prices.items() if price}
        logger.info("safety.baseline_captured", pairs=len(self._trackers))

    def reset(self) -> None:
        self._snapshot = PriceSnapshot()
        self._trackers = {}

    def check(self, pair: Pair, live_price: float) -> None:
        """Run both drift checks for a price that is about to be published.

        Raises:
            PriceDriftDetected: If either bound is exceeded.
        """
        initial = self._snapshot.get(pair)
        if initial:
            ratio = live_price / initial
            if _outside(ratio, self._relative_limit):
                raise PriceDriftDetected(pair, "relative", ratio, self._relative_limit)

        tracker = self._trackers.get(pair)
        if tracker is not None:
            tracker.push(live_price)
            ratio = live_price / tracker.average()
            if _outside(ratio, self._average_limit):
                raise PriceDriftDetected(pair, "average", ratio, self._average_limit)


def _outside(ratio: float, limit: float) -> bool:
    return ratio > 1 + limit or ratio < 1 - limit
