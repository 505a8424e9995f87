"""Market-making pricing engine: limit book, inbound requests, order expiry."""

import asyncio
import random
import time
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Awaitable, Callable, Optional

import structlog

from tokenbalancer.config import AppConfig
from tokenbalancer.exceptions import RequestValidationFailure, TransientFetchFailure
from tokenbalancer.logging_config import get_order_logger
from tokenbalancer.models import OpenOrder, OrderRequest, Pair, SignedOrder, TokenProps
from tokenbalancer.portfolio.state import PortfolioStateTracker
from tokenbalancer.trading.base import BalanceSource, OrderTransport
from tokenbalancer.trading.liquidity import LiquidityAccountant

logger = structlog.get_logger(__name__)

EXPIRY_CHECK_SECONDS = 1.0


def to_raw_units(value: Decimal) -> int:
    """Round a raw-unit quantity to a whole number of units."""
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


class PricingEngine:
    """Answers one-sided order requests at the configured limit prices.

    Every signed order reserves maker liquidity until it expires. Fills are
    never confirmed explicitly: an order that is still open at expiry is
    dropped and the freed liquidity shows up on the next balance refresh.
    """

    def __init__(
        self,
        config: AppConfig,
        state: PortfolioStateTracker,
        balances: BalanceSource,
        transport: OrderTransport,
        clock: Callable[[], float] = time.time,
    ):
        self._wallet = config.wallet.address
        self._expiration_seconds = config.pricing.expiration_seconds
        self._state = state
        self._balance_source = balances
        self._transport = transport
        self._clock = clock
        self._limit_prices: dict[Pair, float] = {}
        self._limit_amounts: dict[Pair, int] = {}
        self._open_orders: dict[str, OpenOrder] = {}  # signature -> order
        self._expiry_tasks: dict[str, asyncio.Task] = {}
        self._liquidity = LiquidityAccountant()
        self._blacklist = {a.lower() for a in config.pricing.blacklist}
        self._order_log = get_order_logger()

        # Set by the scheduling loop while the algorithm runs
        self.on_order_expired: Optional[Callable[[], Awaitable[None]]] = None

    # -- limit book ---------------------------------------------------------

    def set_price(self, maker: str, taker: str, price: float) -> None:
        """Publish a limit price. Non-positive prices are ignored."""
        if price is None or price <= 0:
            return
        self._limit_prices[(maker, taker)] = price

    def get_price(self, maker: str, taker: str) -> Optional[float]:
        return self._limit_prices.get((maker, taker))

    def remove_price_offer(self, maker: str, taker: str) -> None:
        self._limit_prices.pop((maker, taker), None)

    def clear_price_offers(self) -> None:
        self._limit_prices.clear()

    def set_limit_amount(self, maker: str, taker: str, amount: int) -> None:
        self._limit_amounts[(maker, taker)] = amount
        self.update_liquidity()

    def get_limit_amount(self, maker: str, taker: str) -> Optional[int]:
        return self._limit_amounts.get((maker, taker))

    @property
    def limit_prices(self) -> dict[Pair, float]:
        return dict(self._limit_prices)

    # -- blacklist ----------------------------------------------------------

    def blacklist_address(self, address: str) -> None:
        self._blacklist.add(address.lower())

    def unblacklist_address(self, address: str) -> None:
        self._blacklist.discard(address.lower())

    def is_blacklisted(self, address: str) -> bool:
        return address.lower() in self._blacklist

    # -- liquidity ----------------------------------------------------------

    def update_liquidity(self) -> dict[Pair, int]:
        return self._liquidity.recompute(
            self._limit_amounts, self._state.balances, self._open_orders.values()
        )

    def get_liquidity(self, maker: str, taker: str) -> Optional[int]:
        return self._liquidity.get(maker, taker)

    @property
    def open_orders(self) -> dict[str, OpenOrder]:
        return dict(self._open_orders)

    # -- inbound requests ---------------------------------------------------

    async def handle_order_request(self, request: OrderRequest) -> Optional[SignedOrder]:
        """Answer a request for a quote, or return None if it is rejected.

        Safe to run concurrently: liquidity is re-checked after the
        counterparty balance lookup and reserved before signing.
        """
        try:
            self._validate(request)
            taker_maker_balance, taker_taker_balance = await asyncio.gather(
                self._balance_source.fetch_token_balance(request.maker_token, request.taker_address),
                self._balance_source.fetch_token_balance(request.taker_token, request.taker_address),
            )
            # Prices or liquidity may have changed while suspended
            maker_props, taker_props, price = self._validate(request)
            maker_amount, taker_amount = self._answer_amounts(request, price)

            self._order_log.info(
                "order.request_received",
                request_id=request.id,
                taker=request.taker_address,
                maker_symbol=maker_props.symbol,
                taker_symbol=taker_props.symbol,
                maker_amount=maker_props.to_human(maker_amount),
                taker_amount=taker_props.to_human(taker_amount),
            )

            if taker_taker_balance < taker_amount:
                raise RequestValidationFailure(
                    "counterparty_balance_insufficient",
                    counterparty_balance=taker_props.to_human(taker_taker_balance),
                    required=taker_props.to_human(taker_amount),
                )

            liquidity = self._liquidity.get(request.maker_token, request.taker_token)
            if liquidity is None or liquidity < maker_amount:
                raise RequestValidationFailure(
                    "liquidity_insufficient",
                    liquidity=maker_props.to_human(liquidity or 0),
                    required=maker_props.to_human(maker_amount),
                )
        except RequestValidationFailure as e:
            self._order_log.info(
                "order.request_rejected",
                request_id=request.id,
                taker=request.taker_address,
                reason=e.reason,
                **e.context,
            )
            return None

        return await self._sign_and_send(request, maker_amount, taker_amount)

    def _validate(self, request: OrderRequest) -> tuple[TokenProps, TokenProps, float]:
        if self.is_blacklisted(request.taker_address):
            raise RequestValidationFailure("blacklisted")

        # Zero counts as unset
        if not request.maker_amount and not request.taker_amount:
            raise RequestValidationFailure("no_amount")
        if request.maker_amount and request.taker_amount:
            raise RequestValidationFailure("both_amounts")

        maker_props = self._state.token_props(request.maker_token)
        taker_props = self._state.token_props(request.taker_token)
        if maker_props is None or taker_props is None:
            raise RequestValidationFailure("unknown_token")

        price = self.get_price(request.maker_token, request.taker_token)
        if not price:
            raise RequestValidationFailure("no_price")

        liquidity = self._liquidity.get(request.maker_token, request.taker_token)
        if not liquidity or liquidity <= 0:
            raise RequestValidationFailure("no_liquidity")

        return maker_props, taker_props, price

    @staticmethod
    def _answer_amounts(request: OrderRequest, price: float) -> tuple[int, int]:
        """Fill in the missing side of a one-sided request."""
        exact_price = Decimal(str(price))
        if request.maker_amount:
            maker_amount = request.maker_amount
            taker_amount = to_raw_units(exact_price * maker_amount)
        else:
            taker_amount = request.taker_amount
            maker_amount = to_raw_units(Decimal(taker_amount) / exact_price)

        if maker_amount <= 0 or taker_amount <= 0:
            raise RequestValidationFailure(
                "amount_too_small", maker_amount=maker_amount, taker_amount=taker_amount
            )
        return maker_amount, taker_amount

    async def _sign_and_send(
        self, request: OrderRequest, maker_amount: int, taker_amount: int
    ) -> Optional[SignedOrder]:
        expiration = int(round(self._clock())) + self._expiration_seconds
        nonce = str(random.randrange(10**12))

        # Hold the liquidity while the signature is pending
        reservation = f"pending-{uuid.uuid4().hex}"
        self._open_orders[reservation] = OpenOrder(
            maker_token=request.maker_token,
            taker_token=request.taker_token,
            maker_amount=maker_amount,
            signature=reservation,
            expiration=expiration,
        )
        self.update_liquidity()

        try:
            signed = await self._transport.sign_order({
                "makerAddress": self._wallet,
                "makerAmount": str(maker_amount),
                "makerToken": request.maker_token,
                "takerAddress": request.taker_address,
                "takerAmount": str(taker_amount),
                "takerToken": request.taker_token,
                "expiration": expiration,
                "nonce": nonce,
            })
        except Exception:
            self._open_orders.pop(reservation, None)
            self.update_liquidity()
            raise

        if self._open_orders.pop(reservation, None) is None:
            # Open orders were dropped (algorithm stopped) while signing
            self.update_liquidity()
            self._order_log.info("order.discarded_after_stop", request_id=request.id)
            return None

        order = OpenOrder(
            maker_token=request.maker_token,
            taker_token=request.taker_token,
            maker_amount=maker_amount,
            signature=signed.signature,
            expiration=expiration,
            order=signed,
        )
        self._open_orders[signed.signature] = order
        self.update_liquidity()
        self._schedule_expiration(signed.signature)

        await self._transport.send_response(
            request.taker_address,
            {"id": request.id, "jsonrpc": "2.0", "result": signed.model_dump(by_alias=True)},
        )

        self._order_log.info(
            "order.signed",
            request_id=request.id,
            taker=request.taker_address,
            maker_token=request.maker_token,
            taker_token=request.taker_token,
            maker_amount=maker_amount,
            taker_amount=taker_amount,
            expiration=expiration,
            signature=signed.signature,
        )
        return signed

    # -- expiration ---------------------------------------------------------

    def _schedule_expiration(self, signature: str) -> None:
        self._expiry_tasks[signature] = asyncio.create_task(
            self._watch_expiration(signature), name=f"order-expiry-{signature[:16]}"
        )

    async def _watch_expiration(self, signature: str) -> None:
        while not await self.check_expiration(signature):
            await asyncio.sleep(EXPIRY_CHECK_SECONDS)

    async def check_expiration(self, signature: str) -> bool:
        """Expire the order if its time is up.

        Returns:
            True once the order is no longer open, False while it is still live.
        """
        order = self._open_orders.get(signature)
        if order is None:
            self._release_timer(signature)
            return True
        if self._clock() <= order.expiration:
            return False

        self._open_orders.pop(signature, None)
        self._release_timer(signature)
        self._order_log.info(
            "order.expired",
            signature=signature,
            maker_token=order.maker_token,
            taker_token=order.taker_token,
            maker_amount=order.maker_amount,
        )

        # The order may have been filled, so release it against fresh balances
        try:
            await self._state.refresh()
        except TransientFetchFailure as e:
            logger.warning("pricing.expiry_refresh_failed", signature=signature, error=str(e))
        self.update_liquidity()

        callback = self.on_order_expired
        if callback is not None:
            try:
                await callback()
            except Exception as e:
                logger.error(
                    "pricing.expiry_callback_failed",
                    signature=signature,
                    error=str(e),
                    exc_info=True,
                )
        return True

    def remove_order(self, signature: str) -> Optional[OpenOrder]:
        """Drop an open order and its expiry watcher."""
        order = self._open_orders.pop(signature, None)
        self._release_timer(signature)
        if order is not None:
            self.update_liquidity()
            self._order_log.info("order.removed", signature=signature)
        return order

    def cancel_all_orders(self) -> int:
        """Drop every open order and cancel all expiry watchers."""
        count = len(self._open_orders)
        for signature in list(self._expiry_tasks):
            self._release_timer(signature)
        self._open_orders.clear()
        self.update_liquidity()
        if count:
            self._order_log.info("order.all_cancelled", count=count)
        return count

    def _release_timer(self, signature: str) -> None:
        task = self._expiry_tasks.pop(signature, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
