"""Shared test fixtures."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tokenbalancer.config import AppConfig, Secrets
from tokenbalancer.prices.base import PriceProvider
from tokenbalancer.trading.paper import PaperVenue

ETH = "0x0000000000000000000000000000000000000000"
WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
AST = "0x27054b13b1b798b345b591a4d22e6562d47ea75a"
AAA = "0xaaaa000000000000000000000000000000000001"
BBB = "0xbbbb000000000000000000000000000000000002"
WALLET = "0x1111111111111111111111111111111111111111"
COUNTERPARTY = "0x2222222222222222222222222222222222222222"

E18 = 10**18


class FakeClock:
    """Settable replacement for time.time."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def test_config() -> AppConfig:
    """Provide a test configuration with safe defaults."""
    return AppConfig(
        wallet={"address": WALLET},
        network={
            "eth_address": ETH,
            "weth_address": WETH,
            "trading_rights_address": AST,
        },
        tokens=[
            {"address": ETH, "symbol": "ETH", "decimals": 18},
            {"address": WETH, "symbol": "WETH", "decimals": 18},
            {"address": AAA, "symbol": "AAA", "decimals": 18},
            {"address": BBB, "symbol": "BBB", "decimals": 6},
        ],
        rebalancing={
            "goal_fractions": {"AAA": 0.6, "BBB": 0.4},
            "poll_interval_ms": 60000,
        },
        pricing={"expiration_seconds": 300},
        paper={
            "balances": {"AAA": 50 * E18, "BBB": 100 * 10**6},
            "trading_rights": 1000,
        },
        logging={
            "level": "DEBUG",
            "app_log": "/tmp/test_tokenbalancer.log",
            "order_log": "/tmp/test_orders.log",
            "decision_log": "/tmp/test_decisions.log",
        },
    )


@pytest.fixture
def mock_secrets() -> Secrets:
    """Provide a fake API key for unit tests."""
    return Secrets(cryptocompare_api_key="test-cryptocompare-key")


@pytest.fixture
def addr(test_config) -> dict[str, str]:
    """Token address by symbol, plus the wallet and a counterparty."""
    return {
        **test_config.symbol_to_address(),
        "wallet": WALLET,
        "counterparty": COUNTERPARTY,
    }


@pytest.fixture
def usd_prices() -> dict:
    """Mutable USD prices served by price_provider."""
    return {"ETH": 2000.0, "AAA": 10.0, "BBB": 5.0}


@pytest.fixture
def price_provider(usd_prices) -> PriceProvider:
    """Price provider answering from usd_prices at call time."""
    provider = MagicMock(spec=PriceProvider)
    provider.fetch_usd_prices = AsyncMock(
        side_effect=lambda symbols: {s: usd_prices.get(s) for s in symbols}
    )
    return provider


@pytest.fixture
def venue(test_config, mock_secrets) -> PaperVenue:
    return PaperVenue(test_config, mock_secrets)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
