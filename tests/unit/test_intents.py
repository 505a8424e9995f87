"""Tests for intent generation and limit amounts."""

import pytest

from tokenbalancer.models import Intent, IntentSide, RebalancePlan
from tokenbalancer.rebalancing.intents import build_intents, limit_amount_for

E18 = 10**18


def _make_plan(deltas: dict[str, int]) -> RebalancePlan:
    return RebalancePlan(
        total_value_usd=1000.0,
        goal_balances={},
        delta_balances=deltas,
        needed_weth=0,
        needed_intents=len(deltas),
    )


class TestBuildIntents:
    def test_buy_and_sell(self, addr):
        plan = _make_plan({addr["AAA"]: 10 * E18, addr["BBB"]: -20 * 10**6})
        intents = build_intents(plan, addr["ETH"], addr["WETH"])

        assert len(intents) == 2
        buy = next(i for i in intents if i.side == IntentSide.BUY)
        sell = next(i for i in intents if i.side == IntentSide.SELL)
        assert buy.pair == (addr["WETH"], addr["AAA"])
        assert sell.pair == (addr["BBB"], addr["ETH"])
        assert buy.price is None

    def test_eth_weth_and_zero_deltas_skipped(self, addr):
        plan = _make_plan({addr["ETH"]: -E18, addr["WETH"]: E18, addr["AAA"]: 0})
        assert build_intents(plan, addr["ETH"], addr["WETH"]) == []


class TestLimitAmountFor:
    def test_sell_limit_is_excess_balance(self, addr):
        plan = _make_plan({addr["BBB"]: -20 * 10**6})
        intent = Intent(addr["BBB"], addr["ETH"], IntentSide.SELL)
        assert limit_amount_for(intent, plan, addr["ETH"], addr["WETH"], 2.5e9) == 20 * 10**6

    def test_sell_limit_absent_once_target_reached(self, addr):
        plan = _make_plan({addr["BBB"]: 5})
        intent = Intent(addr["BBB"], addr["ETH"], IntentSide.SELL)
        assert limit_amount_for(intent, plan, addr["ETH"], addr["WETH"], 2.5e9) is None

    def test_buy_limit_in_weth_units(self, addr):
        plan = _make_plan({addr["AAA"]: 10 * E18})
        intent = Intent(addr["WETH"], addr["AAA"], IntentSide.BUY)
        # 200 AAA units per WETH unit, so 10 AAA costs 0.05 WETH
        assert limit_amount_for(intent, plan, addr["ETH"], addr["WETH"], 200.0) == 5 * 10**16

    def test_buy_limit_needs_price(self, addr):
        plan = _make_plan({addr["AAA"]: 10 * E18})
        intent = Intent(addr["WETH"], addr["AAA"], IntentSide.BUY)
        assert limit_amount_for(intent, plan, addr["ETH"], addr["WETH"], None) is None

    def test_buy_limit_absent_for_negative_delta(self, addr):
        plan = _make_plan({addr["AAA"]: -E18})
        intent = Intent(addr["WETH"], addr["AAA"], IntentSide.BUY)
        assert limit_amount_for(intent, plan, addr["ETH"], addr["WETH"], 200.0) is None

    @pytest.mark.parametrize("maker, taker", [("AAA", "BBB"), ("BBB", "WETH")])
    def test_other_pairs_carry_no_limit(self, addr, maker, taker):
        plan = _make_plan({addr["AAA"]: E18, addr["BBB"]: -E18})
        intent = Intent(addr[maker], addr[taker], IntentSide.SELL)
        assert limit_amount_for(intent, plan, addr["ETH"], addr["WETH"], 1.0) is None
