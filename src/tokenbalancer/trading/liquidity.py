"""Per-pair tradable liquidity after reserving open orders."""

from typing import Iterable

from tokenbalancer.models import OpenOrder, Pair


def recompute_liquidity(
    limits: dict[Pair, int],
    balances: dict[str, int],
    open_orders: Iterable[OpenOrder],
) -> dict[Pair, int]:
    """liquidity = min(limit, maker balance) - open maker amounts on the pair.

    Pairs without a limit or without a known maker balance are absent from
    the result, which is distinct from a pair with zero liquidity.
    """
    reserved: dict[Pair, int] = {}
    for order in open_orders:
        reserved[order.pair] = reserved.get(order.pair, 0) + order.maker_amount

    liquidity: dict[Pair, int] = {}
    for pair, limit in limits.items():
        maker, _ = pair
        balance = balances.get(maker)
        if limit is None or balance is None:
            continue
        liquidity[pair] = min(limit, balance) - reserved.get(pair, 0)
    return liquidity


class LiquidityAccountant:
    """Single source of truth for how much can still be quoted per pair."""

    def __init__(self):
        self._liquidity: dict[Pair, int] = {}

    def recompute(
        self,
        limits: dict[Pair, int],
        balances: dict[str, int],
        open_orders: Iterable[OpenOrder],
    ) -> dict[Pair, int]:
        self._liquidity = recompute_liquidity(limits, balances, open_orders)
        return self._liquidity

    def get(self, maker: str, taker: str) -> int | None:
        return self._liquidity.get((maker, taker))

    def snapshot(self) -> dict[Pair, int]:
        return dict(self._liquidity)
