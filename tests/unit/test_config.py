"""Tests for configuration loading and validation."""

import pytest
import yaml

from tokenbalancer.config import AppConfig, load_config


def _raw_config(**overrides) -> dict:
    raw = {
        "wallet": {"address": "0xABCDEF0000000000000000000000000000000001"},
        "tokens": [
            {"address": "0x0000000000000000000000000000000000000000", "symbol": "ETH", "decimals": 18},
            {"address": "0xC02AAA39B223FE8D0A0E5C4F27EAD9083C756CC2", "symbol": "WETH", "decimals": 18},
            {"address": "0x6B175474E89094C44DA98B954EEDEAC495271D0F", "symbol": "DAI", "decimals": 18},
        ],
        "rebalancing": {"goal_fractions": {"ETH": 0.5, "DAI": 0.5}},
        "logging": {
            "app_log": "a.log",
            "order_log": "o.log",
            "decision_log": "d.log",
        },
    }
    raw.update(overrides)
    return raw


class TestAppConfig:
    def test_valid_config(self, test_config):
        """A valid config should load without errors."""
        assert test_config.rebalancing.goal_fractions == {"AAA": 0.6, "BBB": 0.4}
        assert test_config.pricing.expiration_seconds == 300
        assert test_config.paper.trading_rights == 1000

    def test_defaults(self):
        config = AppConfig(**_raw_config())
        assert config.rebalancing.fraction_tolerance == 0.001
        assert config.rebalancing.relative_change_limit == 0.20
        assert config.rebalancing.average_change_limit == 0.10
        assert config.rebalancing.price_modifier == 1.0
        assert config.rebalancing.continuous_price_updates is True
        assert config.rebalancing.auto_start is False
        assert config.pricing.expiration_seconds == 300
        assert config.providers.prices == "cryptocompare"
        assert config.providers.venue == "paper"

    def test_addresses_are_lowercased(self):
        config = AppConfig(**_raw_config())
        assert config.wallet.address == "0xabcdef0000000000000000000000000000000001"
        assert config.symbol_to_address()["DAI"] == "0x6b175474e89094c44da98b954eedeac495271d0f"
        assert config.network.weth_address in config.symbol_to_address().values()

    def test_goal_fraction_out_of_range(self):
        with pytest.raises(ValueError, match="between 0 and 1"):
            AppConfig(**_raw_config(rebalancing={"goal_fractions": {"ETH": 1.5}}))

    def test_goal_fraction_unknown_symbol(self):
        with pytest.raises(ValueError, match="unknown tokens"):
            AppConfig(**_raw_config(rebalancing={"goal_fractions": {"MKR": 1.0}}))

    def test_weth_must_be_listed(self):
        raw = _raw_config()
        raw["tokens"] = [t for t in raw["tokens"] if t["symbol"] != "WETH"]
        with pytest.raises(ValueError, match="weth_address must be listed"):
            AppConfig(**raw)

    def test_decimals_range(self):
        raw = _raw_config()
        raw["tokens"][2]["decimals"] = 40
        with pytest.raises(ValueError):
            AppConfig(**raw)

    def test_poll_interval_floor(self):
        with pytest.raises(ValueError):
            AppConfig(**_raw_config(rebalancing={"poll_interval_ms": 10}))

    def test_batch_size_capped(self):
        with pytest.raises(ValueError):
            AppConfig(**_raw_config(prices={"batch_size": 100}))

    def test_load_config_from_yaml(self, tmp_path):
        """load_config should parse a YAML file correctly."""
        config_data = _raw_config(
            pricing={"expiration_seconds": 120, "blacklist": ["0xBAD"]},
            paper={"balances": {"DAI": 1000}, "trading_rights": 500},
        )
        config_file = tmp_path / "settings.yaml"
        with open(config_file, "w") as f:
            yaml.dump(config_data, f)

        config = load_config(config_file)
        assert config.pricing.expiration_seconds == 120
        assert config.pricing.blacklist == ["0xBAD"]
        assert config.paper.balances == {"DAI": 1000}
        assert config.rebalancing.goal_fractions == {"ETH": 0.5, "DAI": 0.5}
