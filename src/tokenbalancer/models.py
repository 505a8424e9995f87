"""Domain models for the rebalancing and market-making engine."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

# (maker_token, taker_token); absence from a per-pair dict means "unset"
Pair = tuple[str, str]


class EngineState(str, Enum):
    IDLE = "IDLE"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


class IntentSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class TokenProps:
    """Static token metadata."""

    address: str
    symbol: str
    decimals: int

    @property
    def scale(self) -> int:
        """Raw units per whole token."""
        return 10**self.decimals

    def to_human(self, raw_amount: float) -> float:
        return raw_amount / self.scale


@dataclass
class Intent:
    """A pair the engine is willing to quote, with its reference price."""

    maker_token: str
    taker_token: str
    side: IntentSide
    price: Optional[float] = None  # taker raw units per maker raw unit

    @property
    def pair(self) -> Pair:
        return (self.maker_token, self.taker_token)


@dataclass
class RebalancePlan:
    """Output of one planning pass."""

    total_value_usd: float
    goal_balances: dict[str, float]
    delta_balances: dict[str, int]
    needed_weth: int  # wei, negative when the WETH balance already covers all buys
    needed_intents: int
    trading_rights_balance: Optional[int] = None
    missing_trading_rights: int = 0
    rights_checked: bool = False

    @property
    def enough_trading_rights(self) -> bool:
        return self.rights_checked and self.missing_trading_rights == 0

    @property
    def executable(self) -> bool:
        return self.enough_trading_rights


class OrderRequest(BaseModel):
    """Inbound request for a quote. Exactly one amount is expected."""

    id: str
    maker_address: str = Field(alias="makerAddress")
    maker_token: str = Field(alias="makerToken")
    taker_address: str = Field(alias="takerAddress")
    taker_token: str = Field(alias="takerToken")
    maker_amount: Optional[int] = Field(None, alias="makerAmount")
    taker_amount: Optional[int] = Field(None, alias="takerAmount")

    model_config = {"populate_by_name": True}

    @field_validator("maker_address", "maker_token", "taker_address", "taker_token")
    @classmethod
    def lowercase_address(cls, v):
        return v.lower()


class SignedOrder(BaseModel):
    """Order as returned to the requester."""

    maker_address: str = Field(alias="makerAddress")
    maker_amount: str = Field(alias="makerAmount")
    maker_token: str = Field(alias="makerToken")
    taker_address: str = Field(alias="takerAddress")
    taker_amount: str = Field(alias="takerAmount")
    taker_token: str = Field(alias="takerToken")
    expiration: int
    nonce: str
    v: int
    r: str
    s: str

    model_config = {"populate_by_name": True}

    @property
    def signature(self) -> str:
        return f"{self.v}{self.r}{self.s}"


@dataclass
class OpenOrder:
    """A signed offer that has not yet expired."""

    maker_token: str
    taker_token: str
    maker_amount: int
    signature: str
    expiration: int  # unix seconds
    order: Optional[SignedOrder] = field(default=None, repr=False)

    @property
    def pair(self) -> Pair:
        return (self.maker_token, self.taker_token)
