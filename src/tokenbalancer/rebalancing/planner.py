"""Rebalance planning - convert goal fractions into goal and delta balances."""

import math
from typing import Optional

import structlog

from tokenbalancer.config import TRADING_RIGHTS_PER_INTENT, AppConfig
from tokenbalancer.exceptions import ConfigurationError, TransientFetchFailure
from tokenbalancer.logging_config import get_decision_logger
from tokenbalancer.models import RebalancePlan, TokenProps
from tokenbalancer.portfolio.state import PortfolioSnapshot
from tokenbalancer.trading.base import TradingRightsSource

logger = structlog.get_logger(__name__)

WEI_PER_ETH = 10**18


def sum_fractions(goal_fractions: dict[str, float]) -> float:
    return sum(f for f in goal_fractions.values() if f)


def validate_fractions(goal_fractions: dict[str, float], tolerance: float) -> None:
    """Raise ConfigurationError unless the fractions sum to one within tolerance."""
    deviation = abs(sum_fractions(goal_fractions) - 1)
    if deviation > tolerance:
        raise ConfigurationError(
            f"Sum of goal fractions is off from desired precision by {deviation:.6f}"
        )


def compute_plan(
    goal_fractions: dict[str, float],
    snapshot: PortfolioSnapshot,
    tokens: dict[str, TokenProps],
    eth_address: str,
    weth_address: str,
    tolerance: float = 0.001,
) -> RebalancePlan:
    """Compute goal balances, deltas, needed WETH and needed intents.

    Args:
        goal_fractions: Target share of portfolio value per token address
        snapshot: Freshly refreshed portfolio state
        tokens: Token metadata by address
        eth_address: Native ETH pseudo-address
        weth_address: Wrapped ETH address, folded into ETH
        tolerance: Allowed deviation of the fraction sum from one

    Returns:
        RebalancePlan without the trading-rights check applied

    Raises:
        ConfigurationError: If the fractions do not sum to one.
    """
    validate_fractions(goal_fractions, tolerance)

    balances = snapshot.balances
    usd_prices = snapshot.usd_prices
    total_value = snapshot.total_value_usd

    goal_balances: dict[str, float] = {}
    delta_balances: dict[str, int] = {}
    for token, fraction in goal_fractions.items():
        if token == weth_address:
            continue  # WETH is part of the ETH bucket
        price = usd_prices.get(token)
        props = tokens.get(token)
        if fraction is None or not price or props is None:
            continue
        goal_balances[token] = total_value * fraction / price * props.scale
        delta_balances[token] = math.floor(goal_balances[token] - balances.get(token, 0))

    weth_balance = balances.get(weth_address)
    if weth_balance is not None and eth_address in delta_balances:
        # Inbound ETH can always be received; reducing ETH needs manual wrapping
        delta_balances[eth_address] -= weth_balance

    tradable = {
        t: d for t, d in delta_balances.items()
        if t not in (eth_address, weth_address) and d != 0
    }

    eth_usd = usd_prices.get(eth_address)
    weth_selling = 0.0
    for token, delta in tradable.items():
        if delta <= 0:
            continue
        if not eth_usd:
            logger.warning("planner.no_eth_price", token=token)
            break
        weth_selling += delta / tokens[token].scale * usd_prices[token] / eth_usd
    needed_weth = math.floor(weth_selling * WEI_PER_ETH) - (weth_balance or 0)

    return RebalancePlan(
        total_value_usd=total_value,
        goal_balances=goal_balances,
        delta_balances=delta_balances,
        needed_weth=needed_weth,
        needed_intents=len(tradable),
    )


class RebalancePlanner:
    """Plans a rebalance and checks it against the trading-rights budget."""

    def __init__(
        self,
        config: AppConfig,
        rights: TradingRightsSource,
        tokens: dict[str, TokenProps],
    ):
        self._wallet = config.wallet.address
        self._eth = config.network.eth_address
        self._weth = config.network.weth_address
        self._tolerance = config.rebalancing.fraction_tolerance
        self._rights = rights
        self._tokens = tokens
        self._decision_log = get_decision_logger()
        self.last_plan: Optional[RebalancePlan] = None

    def validate(self, goal_fractions: dict[str, float]) -> None:
        validate_fractions(goal_fractions, self._tolerance)

    async def plan(
        self, goal_fractions: dict[str, float], snapshot: PortfolioSnapshot
    ) -> RebalancePlan:
        """Compute a plan from a fresh snapshot and check trading rights.

        A failed rights lookup leaves the plan marked not executable rather
        than raising.

        Raises:
            ConfigurationError: If the fractions do not sum to one. last_plan
                is left unchanged.
        """
        plan = compute_plan(
            goal_fractions,
            snapshot,
            self._tokens,
            self._eth,
            self._weth,
            self._tolerance,
        )
        await self._check_trading_rights(plan)
        self.last_plan = plan

        self._decision_log.info(
            "plan.computed",
            total_value_usd=round(plan.total_value_usd, 2),
            deltas={self._symbol(t): d for t, d in plan.delta_balances.items()},
            needed_weth=plan.needed_weth,
            needed_intents=plan.needed_intents,
            rights_checked=plan.rights_checked,
            missing_trading_rights=plan.missing_trading_rights,
        )
        return plan

    async def _check_trading_rights(self, plan: RebalancePlan) -> None:
        try:
            balance = await self._rights.get_trading_rights_balance(self._wallet)
        except TransientFetchFailure as e:
            logger.warning("planner.trading_rights_lookup_failed", error=str(e))
            plan.rights_checked = False
            return

        plan.trading_rights_balance = balance
        plan.rights_checked = True
        diff = balance - TRADING_RIGHTS_PER_INTENT * plan.needed_intents
        plan.missing_trading_rights = math.floor(-diff) if diff < 0 else 0

    def _symbol(self, token: str) -> str:
        props = self._tokens.get(token)
        return props.symbol if props else token
