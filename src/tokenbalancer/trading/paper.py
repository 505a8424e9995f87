"""In-memory venue for dry runs: balances, trading rights, intents, signing."""

import hashlib
import json
from typing import Any, Optional

import structlog

from tokenbalancer.config import AppConfig, Secrets
from tokenbalancer.models import Intent, OrderRequest, SignedOrder
from tokenbalancer.trading.base import (
    BalanceSource,
    OrderHandler,
    OrderTransport,
    TradingRightsSource,
)

logger = structlog.get_logger(__name__)


class PaperVenue(BalanceSource, TradingRightsSource, OrderTransport):
    """Simulated exchange seeded from the `paper` config section.

    Signatures are deterministic sha256 digests of the order fields, so
    they are unique per order but carry no cryptographic meaning.
    """

    def __init__(self, config: AppConfig, secrets: Secrets):
        self._wallet = config.wallet.address
        symbol_to_address = config.symbol_to_address()

        self._balances: dict[tuple[str, str], int] = {}
        for symbol, amount in config.paper.balances.items():
            if symbol not in symbol_to_address:
                raise ValueError(f"Unknown token in paper balances: '{symbol}'")
            self._balances[(symbol_to_address[symbol], self._wallet)] = amount

        self._trading_rights: dict[str, int] = {self._wallet: config.paper.trading_rights}
        self._intents: list[Intent] = []
        self._handler: Optional[OrderHandler] = None
        self.responses: list[tuple[str, dict[str, Any]]] = []

    # -- balances -----------------------------------------------------------

    async def fetch_token_balance(self, token: str, address: str) -> int:
        return self._balances.get((token.lower(), address.lower()), 0)

    def set_balance(self, token: str, address: str, amount: int) -> None:
        self._balances[(token.lower(), address.lower())] = amount

    async def get_trading_rights_balance(self, address: str) -> int:
        return self._trading_rights.get(address.lower(), 0)

    def set_trading_rights(self, address: str, amount: int) -> None:
        self._trading_rights[address.lower()] = amount

    # -- intents and orders -------------------------------------------------

    async def post_intents(self, intents: list[Intent]) -> None:
        self._intents = [
            Intent(maker_token=i.maker_token, taker_token=i.taker_token, side=i.side)
            for i in intents
        ]
        logger.info("paper.intents_posted", count=len(self._intents))

    async def get_intents(self) -> list[Intent]:
        return [
            Intent(maker_token=i.maker_token, taker_token=i.taker_token, side=i.side)
            for i in self._intents
        ]

    def register_order_handler(self, handler: OrderHandler) -> None:
        self._handler = handler

    async def submit_request(self, request: OrderRequest) -> Optional[SignedOrder]:
        """Deliver an inbound request as a counterparty would."""
        if self._handler is None:
            raise RuntimeError("No order handler registered")
        return await self._handler(request)

    async def sign_order(self, fields: dict[str, Any]) -> SignedOrder:
        payload = json.dumps(fields, sort_keys=True) + self._wallet
        r = hashlib.sha256(payload.encode()).hexdigest()
        s = hashlib.sha256((r + payload).encode()).hexdigest()
        v = 27 + int(r[-1], 16) % 2
        return SignedOrder.model_validate({**fields, "v": v, "r": f"0x{r}", "s": f"0x{s}"})

    async def send_response(self, address: str, payload: dict[str, Any]) -> None:
        self.responses.append((address, payload))
        logger.info("paper.response_sent", address=address, request_id=payload.get("id"))
