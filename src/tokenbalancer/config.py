"""Configuration loading and validation using Pydantic."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

# Number of recent prices averaged per pair by the safety monitor
PRICE_TRACKER_WINDOW = 10
# Trading-rights tokens that must be held per posted intent
TRADING_RIGHTS_PER_INTENT = 250


class WalletConfig(BaseModel):
    address: str

    @field_validator("address")
    @classmethod
    def lowercase_address(cls, v):
        return v.lower()


class NetworkConfig(BaseModel):
    eth_address: str = "0x0000000000000000000000000000000000000000"
    weth_address: str = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
    trading_rights_address: str = "0x27054b13b1b798b345b591a4d22e6562d47ea75a"

    @field_validator("eth_address", "weth_address", "trading_rights_address")
    @classmethod
    def lowercase_address(cls, v):
        return v.lower()


class TokenConfig(BaseModel):
    address: str
    symbol: str
    decimals: int = Field(ge=0, le=36)

    @field_validator("address")
    @classmethod
    def lowercase_address(cls, v):
        return v.lower()


class RebalancingConfig(BaseModel):
    """Configuration for the rebalancing algorithm and its circuit breakers."""

    goal_fractions: dict[str, float] = Field(default_factory=dict)  # symbol -> fraction
    fraction_tolerance: float = Field(default=0.001, gt=0, lt=1)
    relative_change_limit: float = Field(default=0.20, gt=0, lt=1)
    average_change_limit: float = Field(default=0.10, gt=0, lt=1)
    price_modifier: float = Field(default=1.0, gt=0)
    continuous_price_updates: bool = True
    poll_interval_ms: int = Field(default=30000, ge=100)
    auto_start: bool = False

    @field_validator("goal_fractions")
    @classmethod
    def fractions_in_range(cls, v):
        for symbol, fraction in v.items():
            if fraction < 0 or fraction > 1:
                raise ValueError(f"goal fraction for {symbol} must be between 0 and 1")
        return v


class PricingConfig(BaseModel):
    expiration_seconds: int = Field(default=300, ge=1)
    blacklist: list[str] = Field(default_factory=list)


class PricesConfig(BaseModel):
    base_url: str = "https://min-api.cryptocompare.com/data/pricemulti"
    timeout_seconds: float = Field(default=10.0, gt=0)
    batch_size: int = Field(default=50, ge=1, le=50)


class PaperVenueConfig(BaseModel):
    """Starting state for the in-memory venue."""

    balances: dict[str, int] = Field(default_factory=dict)  # symbol -> raw units
    trading_rights: int = Field(default=0, ge=0)


class ProvidersConfig(BaseModel):
    prices: str = "cryptocompare"
    venue: str = "paper"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    app_log: str
    order_log: str
    decision_log: str
    max_bytes: int = 10485760
    backup_count: int = 5


class AppConfig(BaseModel):
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    wallet: WalletConfig
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    tokens: list[TokenConfig]
    rebalancing: RebalancingConfig = Field(default_factory=RebalancingConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    prices: PricesConfig = Field(default_factory=PricesConfig)
    paper: PaperVenueConfig = Field(default_factory=PaperVenueConfig)
    logging: LoggingConfig

    @model_validator(mode="after")
    def goal_symbols_must_be_known(self):
        known = {t.symbol for t in self.tokens}
        unknown = sorted(set(self.rebalancing.goal_fractions) - known)
        if unknown:
            raise ValueError(f"goal_fractions reference unknown tokens: {unknown}")
        return self

    @model_validator(mode="after")
    def eth_and_weth_must_be_listed(self):
        addresses = {t.address for t in self.tokens}
        for name in ("eth_address", "weth_address"):
            if getattr(self.network, name) not in addresses:
                raise ValueError(f"network.{name} must be listed in tokens")
        return self

    def symbol_to_address(self) -> dict[str, str]:
        return {t.symbol: t.address for t in self.tokens}


class Secrets(BaseSettings):
    """Loaded from .env file automatically."""

    cryptocompare_api_key: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


def load_config(config_path: Path = Path("config/settings.yaml")) -> AppConfig:
    """Load and validate application configuration from YAML."""
    with open(config_path) as f:
        raw = yaml.safe_load(f)

    return AppConfig(**raw)
