"""Scheduling loop driving the rebalancing algorithm and background polling."""

import asyncio
import signal as signal_mod
import time
from typing import Callable, Optional

import structlog

from tokenbalancer.config import AppConfig, Secrets
from tokenbalancer.exceptions import (
    ConfigurationError,
    InsufficientTradingRights,
    PriceDriftDetected,
    TransientFetchFailure,
)
from tokenbalancer.logging_config import get_decision_logger
from tokenbalancer.models import EngineState, Intent, RebalancePlan
from tokenbalancer.notifications import LogNotificationSink
from tokenbalancer.portfolio.safety import PriceSafetyMonitor
from tokenbalancer.portfolio.state import PortfolioStateTracker
from tokenbalancer.prices.base import PriceProvider
from tokenbalancer.providers import create_price_provider, create_venue
from tokenbalancer.rebalancing.intents import build_intents, limit_amount_for
from tokenbalancer.rebalancing.planner import RebalancePlanner
from tokenbalancer.scheduler import RecurringTask
from tokenbalancer.trading.base import (
    BalanceSource,
    NotificationSink,
    OrderTransport,
    TradingRightsSource,
)
from tokenbalancer.trading.pricing import PricingEngine

logger = structlog.get_logger(__name__)


class RebalancingEngine:
    """Idle -> Starting -> Running -> Stopping -> Idle.

    While idle, a background poller keeps balances and prices fresh. While
    running, the poller is disarmed and a separate iteration task replans,
    checks price safety and republishes limits on the same cadence.
    """

    def __init__(
        self,
        config: AppConfig,
        prices: PriceProvider,
        balances: BalanceSource,
        rights: TradingRightsSource,
        transport: OrderTransport,
        notifier: Optional[NotificationSink] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config
        self._rebal = config.rebalancing
        self._eth = config.network.eth_address
        self._weth = config.network.weth_address
        self._transport = transport
        self._notifier = notifier or LogNotificationSink()
        self._decision_log = get_decision_logger()

        self._tracker = PortfolioStateTracker(config, prices, balances)
        self._planner = RebalancePlanner(config, rights, self._tracker.tokens)
        self._pricing = PricingEngine(config, self._tracker, balances, transport, clock=clock)
        self._monitor = PriceSafetyMonitor(config)

        interval = self._rebal.poll_interval_ms / 1000
        self._poller = RecurringTask("background-poll", interval, self._poll)
        self._run_task = RecurringTask("rebalance-iteration", interval, self._iteration)

        self._state = EngineState.IDLE
        self._goal_fractions: dict[str, float] = {}
        self._intents: list[Intent] = []
        self._iterations = 0
        self._shutdown_event: Optional[asyncio.Event] = None

    @classmethod
    def from_config(cls, config: AppConfig, secrets: Secrets) -> "RebalancingEngine":
        """Build an engine with the providers named in config."""
        venue = create_venue(config, secrets)
        return cls(
            config,
            prices=create_price_provider(config, secrets),
            balances=venue,
            rights=venue,
            transport=venue,
        )

    # -- accessors ----------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def algorithm_running(self) -> bool:
        return self._state is EngineState.RUNNING

    @property
    def tracker(self) -> PortfolioStateTracker:
        return self._tracker

    @property
    def planner(self) -> RebalancePlanner:
        return self._planner

    @property
    def pricing(self) -> PricingEngine:
        return self._pricing

    @property
    def monitor(self) -> PriceSafetyMonitor:
        return self._monitor

    @property
    def intents(self) -> list[Intent]:
        return list(self._intents)

    @property
    def polling(self) -> bool:
        return self._poller.running

    def configured_goal_fractions(self) -> dict[str, float]:
        """Goal fractions from config, keyed by token address."""
        by_symbol = self._config.symbol_to_address()
        return {by_symbol[s]: f for s, f in self._rebal.goal_fractions.items()}

    # -- lifecycle ----------------------------------------------------------

    async def start_algorithm(self, goal_fractions: dict[str, float]) -> bool:
        """Plan, post intents, publish initial prices and start iterating.

        Returns:
            True if the engine is now running, False if the start was
            aborted by a concurrent stop.

        Raises:
            ConfigurationError: If the fractions do not sum to one.
            InsufficientTradingRights: If the plan needs more trading rights.
            TransientFetchFailure: If a lookup failed or the venue did not
                confirm the posted intents.
        """
        if self._state is not EngineState.IDLE:
            logger.warning("engine.start_ignored", state=self._state.value)
            return False

        self._planner.validate(goal_fractions)
        was_polling = self._poller.running
        self._set_state(EngineState.STARTING)

        try:
            snapshot = await self._tracker.refresh()
            if self._state is not EngineState.STARTING:
                return False
            plan = await self._planner.plan(goal_fractions, snapshot)
            if self._state is not EngineState.STARTING:
                return False
            if not plan.rights_checked:
                raise TransientFetchFailure("Trading-rights lookup failed")
            if not plan.enough_trading_rights:
                raise InsufficientTradingRights(plan.missing_trading_rights, plan.needed_intents)

            intents = build_intents(plan, self._eth, self._weth)
            await self._transport.post_intents(intents)
            confirmed = {i.pair for i in await self._transport.get_intents()}
            unconfirmed = [i.pair for i in intents if i.pair not in confirmed]
            if unconfirmed:
                raise TransientFetchFailure(f"Venue did not confirm intents: {unconfirmed}")
            if self._state is not EngineState.STARTING:
                return False

            # No manual updates interfere with the run from here on
            self._poller.cancel()
            await self._tracker.refresh()
            if self._state is not EngineState.STARTING:
                return False
        except Exception:
            if self._state is EngineState.STARTING:
                self._set_state(EngineState.IDLE)
            if self._state is EngineState.IDLE and was_polling:
                self._poller.start(immediate=False)
            raise

        self._goal_fractions = dict(goal_fractions)
        self._intents = intents
        initial_prices = {}
        for intent in self._intents:
            intent.price = self._live_price(intent)
            if intent.price is None:
                continue
            self._pricing.set_price(intent.maker_token, intent.taker_token, intent.price)
            initial_prices[intent.pair] = intent.price
        self._monitor.begin(initial_prices)

        self._pricing.on_order_expired = self._on_order_expired
        self._set_state(EngineState.RUNNING)
        self._decision_log.info(
            "engine.algorithm_started",
            intents=[self._describe(i) for i in self._intents],
            needed_weth=plan.needed_weth,
        )
        self._run_task.start(immediate=True)
        return True

    def stop_algorithm(self, reason: str = "operator") -> None:
        """Halt the run and drop every quote before re-arming the poller."""
        if self._state not in (EngineState.STARTING, EngineState.RUNNING):
            return

        self._set_state(EngineState.STOPPING)
        self._run_task.cancel()
        self._pricing.on_order_expired = None
        self._pricing.clear_price_offers()
        self._pricing.cancel_all_orders()
        self._monitor.reset()
        self._intents = []

        self._decision_log.warning("engine.algorithm_stopped", reason=reason)
        self._set_state(EngineState.IDLE)
        if self._shutdown_event is None or not self._shutdown_event.is_set():
            self._poller.start(immediate=True)

    async def run(self) -> None:
        """Serve requests until a shutdown signal is received."""
        self._shutdown_event = asyncio.Event()
        self._register_signal_handlers()
        self._transport.register_order_handler(self._pricing.handle_order_request)
        self._poller.start(immediate=True)

        logger.info(
            "tokenbalancer.starting",
            wallet=self._config.wallet.address,
            tokens=len(self._tracker.tokens),
            price_provider=self._config.providers.prices,
            venue=self._config.providers.venue,
            poll_interval_ms=self._rebal.poll_interval_ms,
        )

        if self._rebal.auto_start and self._rebal.goal_fractions:
            try:
                await self.start_algorithm(self.configured_goal_fractions())
            except (ConfigurationError, InsufficientTradingRights, TransientFetchFailure) as e:
                logger.error("tokenbalancer.auto_start_failed", error=str(e))
                self._notifier.notify(f"Could not start rebalancing: {e}")

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            logger.info("tokenbalancer.cancelled")
        finally:
            self._shutdown()

    def request_shutdown(self) -> None:
        """Signal the main loop to stop."""
        logger.info("tokenbalancer.shutdown_requested")
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    # -- periodic work ------------------------------------------------------

    async def _poll(self) -> None:
        try:
            await self._tracker.refresh()
        except TransientFetchFailure as e:
            logger.warning("engine.poll_failed", error=str(e))
            return
        self._pricing.update_liquidity()

    async def _iteration(self) -> None:
        """Refresh, replan, run the circuit breakers and republish limits."""
        self._iterations += 1
        try:
            snapshot = await self._tracker.refresh()
            if not self.algorithm_running:
                return
            plan = await self._planner.plan(self._goal_fractions, snapshot)
        except TransientFetchFailure as e:
            logger.warning("engine.iteration_fetch_failed", error=str(e), iteration=self._iterations)
            return
        if not self.algorithm_running:
            return

        if not plan.rights_checked:
            logger.warning("engine.iteration_skipped", reason="trading_rights_unknown")
            return
        if not plan.enough_trading_rights:
            self._notifier.notify(
                f"Not enough trading rights: missing {plan.missing_trading_rights} "
                f"for {plan.needed_intents} intents. Stopped rebalancing."
            )
            self.stop_algorithm("insufficient_trading_rights")
            return

        for intent in self._intents:
            if self._rebal.continuous_price_updates and not self._publish_price(intent):
                return
            self._apply_limit(intent, plan)

        liquidity = self._pricing.update_liquidity()
        logger.debug(
            "engine.iteration_complete",
            iteration=self._iterations,
            liquidity={f"{m}/{t}": v for (m, t), v in liquidity.items()},
        )

    def _publish_price(self, intent: Intent) -> bool:
        """Check and publish the live price. Returns False if the run was halted."""
        price = self._live_price(intent)
        if price is None:
            return True
        intent.price = price
        try:
            self._monitor.check(intent.pair, price)
        except PriceDriftDetected as e:
            maker, taker = self._symbols(intent)
            if e.kind == "relative":
                message = (
                    f"Token price of {maker} for {taker} has jumped too far from "
                    f"initial value. Stopped rebalancing."
                )
            else:
                message = (
                    f"Price of {maker} for {taker} jumped too quick away from the "
                    f"average price. Stopped rebalancing."
                )
            self._decision_log.warning(
                "safety.drift_detected",
                pair=f"{maker}/{taker}",
                kind=e.kind,
                ratio=round(e.ratio, 6),
                limit=e.limit,
            )
            self._notifier.notify(message)
            self.stop_algorithm(f"price_drift_{e.kind}")
            return False

        self._pricing.set_price(intent.maker_token, intent.taker_token, price)
        return True

    def _apply_limit(self, intent: Intent, plan: RebalancePlan) -> None:
        limit = limit_amount_for(
            intent,
            plan,
            self._eth,
            self._weth,
            self._pricing.get_price(intent.maker_token, intent.taker_token),
        )
        if limit is not None:
            self._pricing.set_limit_amount(intent.maker_token, intent.taker_token, limit)

    async def _on_order_expired(self) -> None:
        if self.algorithm_running:
            await self._run_task.trigger()

    # -- helpers ------------------------------------------------------------

    def _live_price(self, intent: Intent) -> Optional[float]:
        price = self._tracker.pair_price(intent.maker_token, intent.taker_token)
        if price is None:
            return None
        return price * self._rebal.price_modifier

    def _set_state(self, state: EngineState) -> None:
        previous, self._state = self._state, state
        self._decision_log.info("engine.state_changed", previous=previous.value, state=state.value)

    def _symbols(self, intent: Intent) -> tuple[str, str]:
        maker = self._tracker.token_props(intent.maker_token)
        taker = self._tracker.token_props(intent.taker_token)
        return (
            maker.symbol if maker else intent.maker_token,
            taker.symbol if taker else intent.taker_token,
        )

    def _describe(self, intent: Intent) -> str:
        maker, taker = self._symbols(intent)
        return f"{intent.side.value}:{maker}/{taker}"

    def _register_signal_handlers(self) -> None:
        """Register SIGINT/SIGTERM handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for sig in (signal_mod.SIGINT, signal_mod.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown)

    def _shutdown(self) -> None:
        """Graceful shutdown: drop quotes, disarm timers, log final stats."""
        logger.info("tokenbalancer.shutting_down")
        if self._shutdown_event is not None:
            self._shutdown_event.set()
        self.stop_algorithm("shutdown")
        self._poller.cancel()
        logger.info(
            "tokenbalancer.final_stats",
            iterations=self._iterations,
            open_orders=len(self._pricing.open_orders),
        )
        logger.info("tokenbalancer.stopped")
