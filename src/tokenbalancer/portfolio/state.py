"""Portfolio state: balances, USD prices, value and allocation fractions."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional

import structlog

from tokenbalancer.config import AppConfig
from tokenbalancer.models import TokenProps
from tokenbalancer.prices.base import PriceProvider
from tokenbalancer.trading.base import BalanceSource

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Point-in-time portfolio state produced by one refresh."""

    balances: dict[str, int]  # token -> raw units
    usd_prices: dict[str, Optional[float]]  # token -> USD per whole token
    total_value_usd: float
    fractions: dict[str, float]  # token -> share of value, WETH folded into ETH
    taken_at: float = field(default_factory=time.time)


def compute_fractions(
    balances: dict[str, int],
    usd_prices: dict[str, Optional[float]],
    tokens: dict[str, TokenProps],
    eth_address: str,
    weth_address: str,
) -> tuple[float, dict[str, float]]:
    """Compute total USD value and per-token value fractions.

    Returns:
        Tuple of (total_value_usd, fractions). The ETH entry is always
        present; the WETH fraction is merged into it.
    """
    total = 0.0
    values: dict[str, float] = {}
    for token, balance in balances.items():
        props = tokens.get(token)
        price = usd_prices.get(token)
        if balance is None or props is None or not price:
            continue
        values[token] = balance / props.scale * price
        total += values[token]

    fractions: dict[str, float] = {eth_address: 0.0}
    for token, value in values.items():
        fractions[token] = value / total if total > 0 else 0.0

    if weth_address in fractions:
        fractions[eth_address] += fractions.pop(weth_address)

    return total, fractions


class PortfolioStateTracker:
    """Owns the wallet's balances and the latest USD prices."""

    def __init__(self, config: AppConfig, prices: PriceProvider, balances: BalanceSource):
        self._wallet = config.wallet.address
        self._eth = config.network.eth_address
        self._weth = config.network.weth_address
        self._tokens = {
            t.address: TokenProps(address=t.address, symbol=t.symbol, decimals=t.decimals)
            for t in config.tokens
        }
        self._price_provider = prices
        self._balance_source = balances
        self._snapshot: Optional[PortfolioSnapshot] = None

    @property
    def tokens(self) -> dict[str, TokenProps]:
        return self._tokens

    @property
    def eth_address(self) -> str:
        return self._eth

    @property
    def weth_address(self) -> str:
        return self._weth

    @property
    def snapshot(self) -> Optional[PortfolioSnapshot]:
        return self._snapshot

    @property
    def balances(self) -> dict[str, int]:
        return self._snapshot.balances if self._snapshot else {}

    def token_props(self, token: str) -> Optional[TokenProps]:
        return self._tokens.get(token)

    async def refresh(self) -> PortfolioSnapshot:
        """Fetch prices and balances concurrently and recompute fractions.

        Raises:
            TransientFetchFailure: If the price source is unreachable. The
                previous snapshot is kept untouched.
        """
        addresses = list(self._tokens)
        symbols = [self._tokens[a].symbol for a in addresses]

        usd_by_symbol, raw_balances = await asyncio.gather(
            self._price_provider.fetch_usd_prices(symbols),
            asyncio.gather(
                *(self._balance_source.fetch_token_balance(a, self._wallet) for a in addresses)
            ),
        )

        usd_prices = {a: usd_by_symbol.get(self._tokens[a].symbol) for a in addresses}
        # Price sources quote ETH but not its wrapped form
        if usd_prices.get(self._weth) is None:
            usd_prices[self._weth] = usd_prices.get(self._eth)

        balances = {a: int(b) for a, b in zip(addresses, raw_balances)}
        total, fractions = compute_fractions(
            balances, usd_prices, self._tokens, self._eth, self._weth
        )

        self._snapshot = PortfolioSnapshot(
            balances=balances,
            usd_prices=usd_prices,
            total_value_usd=total,
            fractions=fractions,
        )

        logger.debug(
            "portfolio.refreshed",
            total_value_usd=round(total, 2),
            fractions={self._tokens[t].symbol: round(f, 4) for t, f in fractions.items()},
        )
        return self._snapshot

    def pair_price(self, maker: str, taker: str) -> Optional[float]:
        """Reference price in taker raw units per maker raw unit."""
        if self._snapshot is None:
            return None
        maker_props, taker_props = self._tokens.get(maker), self._tokens.get(taker)
        maker_usd = self._snapshot.usd_prices.get(maker)
        taker_usd = self._snapshot.usd_prices.get(taker)
        if not (maker_props and taker_props and maker_usd and taker_usd):
            return None
        return maker_usd / taker_usd * taker_props.scale / maker_props.scale
