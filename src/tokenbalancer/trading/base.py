"""Abstract base classes for venue-side collaborators."""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from tokenbalancer.models import Intent, OrderRequest, SignedOrder

OrderHandler = Callable[[OrderRequest], Awaitable[Optional[SignedOrder]]]


class BalanceSource(ABC):
    """On-chain token balances."""

    @abstractmethod
    async def fetch_token_balance(self, token: str, address: str) -> int:
        """Return the raw balance of token held by address."""
        ...


class TradingRightsSource(ABC):
    """Balance of the token that gates how many intents may be posted."""

    @abstractmethod
    async def get_trading_rights_balance(self, address: str) -> int:
        ...


class OrderTransport(ABC):
    """Intent publication, order signing and the inbound request channel."""

    @abstractmethod
    async def post_intents(self, intents: list[Intent]) -> None:
        """Replace the posted intents with the given list."""
        ...

    @abstractmethod
    async def get_intents(self) -> list[Intent]:
        """Read the currently posted intents back from the venue."""
        ...

    @abstractmethod
    def register_order_handler(self, handler: OrderHandler) -> None:
        """Route inbound order requests to handler."""
        ...

    @abstractmethod
    async def sign_order(self, fields: dict[str, Any]) -> SignedOrder:
        ...

    @abstractmethod
    async def send_response(self, address: str, payload: dict[str, Any]) -> None:
        ...


class NotificationSink(ABC):
    """Operator-facing messages. Fire-and-forget."""

    @abstractmethod
    def notify(self, message: str) -> None:
        ...
