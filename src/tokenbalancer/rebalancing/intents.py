"""Intent generation - convert delta balances into quotable pairs and limits."""

import math
from typing import Optional

import structlog

from tokenbalancer.models import Intent, IntentSide, RebalancePlan

logger = structlog.get_logger(__name__)


def build_intents(plan: RebalancePlan, eth_address: str, weth_address: str) -> list[Intent]:
    """Derive one intent per token that has to move.

    Tokens to acquire are bought with WETH (the engine makes WETH); tokens
    to dispose of are sold for ETH. ETH and WETH themselves never get an
    intent.
    """
    intents: list[Intent] = []
    for token, delta in plan.delta_balances.items():
        if token in (eth_address, weth_address) or not delta:
            continue
        if delta > 0:
            intents.append(Intent(maker_token=weth_address, taker_token=token, side=IntentSide.BUY))
        else:
            intents.append(Intent(maker_token=token, taker_token=eth_address, side=IntentSide.SELL))

    logger.info(
        "intents.built",
        buys=sum(1 for i in intents if i.side == IntentSide.BUY),
        sells=sum(1 for i in intents if i.side == IntentSide.SELL),
    )
    return intents


def limit_amount_for(
    intent: Intent,
    plan: RebalancePlan,
    eth_address: str,
    weth_address: str,
    price: Optional[float],
) -> Optional[int]:
    """Maximum maker-side raw amount to quote for an intent.

    Args:
        intent: The pair being quoted
        plan: Current plan with delta balances
        eth_address: Native ETH pseudo-address
        weth_address: Wrapped ETH address
        price: Published price for the pair (taker raw per maker raw)

    Returns:
        Raw maker units, or None if this intent carries no limit.
    """
    if intent.taker_token == eth_address:
        delta = plan.delta_balances.get(intent.maker_token)
        if delta is not None and delta < 0:
            return -delta
        return None

    if intent.maker_token == weth_address:
        delta = plan.delta_balances.get(intent.taker_token)
        if delta is not None and delta > 0 and price:
            # Buying delta taker units costs delta / price maker units
            return math.floor(delta / price)
        return None

    return None
