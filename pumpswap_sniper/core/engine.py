from __future__ import annotations

import asyncio
import logging

from solders.keypair import Keypair  # type: ignore

from pumpswap_sniper.config import RiskConfig, Settings
from pumpswap_sniper.core.blacklist import CreatorDenyList
from pumpswap_sniper.core.decision import DecisionService, OpenAIDecisionService
from pumpswap_sniper.core.execution import ExecutionPipeline
from pumpswap_sniper.core.lifecycle import Notifier, PositionLifecycleManager
from pumpswap_sniper.core.market_cache import MarketCache
from pumpswap_sniper.core.models import NewPoolEvent, PipelineOutcome, PipelineState, Position
from pumpswap_sniper.core.momentum import MomentumMonitor
from pumpswap_sniper.core.network import NetworkClient, SolanaNetworkClient
from pumpswap_sniper.core.pool_listener import PoolListener
from pumpswap_sniper.core.position_store import PositionStore
from pumpswap_sniper.core.price_feed import PriceFeedManager
from pumpswap_sniper.core.risk_gate import RiskGate
from pumpswap_sniper.core.scheduler import AdaptiveInterval
from pumpswap_sniper.core.sol_price import SolPriceOracle
from pumpswap_sniper.core.telegram_notifier import TelegramNotifier
from pumpswap_sniper.core.wallet import load_keypair
from pumpswap_sniper.exceptions import StreamDisconnected


class TradingEngine:
    """Wires discovery, execution, lifecycle and the price feed together.

    Shutdown is two-stage: the first request stops new entries, closes the
    streams and waits for in-flight exits; a second request cancels
    everything and records still-open positions as abandoned.
    """

    def __init__(
        self,
        settings: Settings,
        risk_config: RiskConfig,
        network: NetworkClient,
        wallet: Keypair,
        decision_service: DecisionService,
        notifier: Notifier,
        store: PositionStore,
        cache: MarketCache | None = None,
        price_feed: PriceFeedManager | None = None,
        deny_list: CreatorDenyList | None = None,
        sol_price: SolPriceOracle | None = None,
    ) -> None:
        self.settings = settings
        self.risk_config = risk_config
        self.network = network
        self.wallet = wallet
        self.decision_service = decision_service
        self.notifier = notifier
        self.store = store
        self.cache = cache or MarketCache()
        self.logger = logging.getLogger("pumpswap_sniper.engine")

        self.risk_gate = RiskGate(risk_config.entry_filters, deny_list or CreatorDenyList())
        self.pipeline = ExecutionPipeline(settings, network, wallet, self.risk_gate,
                                          decision_service, risk_config.position_limits)
        self.lifecycle = PositionLifecycleManager(store, self.pipeline, notifier, self.cache,
                                                  risk_config.exit_rules)
        self.lifecycle.on_closed = self._on_position_closed
        self.price_feed = price_feed or PriceFeedManager(
            settings.PRICE_FEED_URL,
            self.cache,
            max_reconnects=settings.PRICE_FEED_MAX_RECONNECTS,
            reconnect_delay=settings.PRICE_FEED_RECONNECT_DELAY_SEC,
            ping_interval=settings.PRICE_FEED_PING_SEC,
            update_interval_ms=settings.PRICE_FEED_INTERVAL_MS,
        )
        self.price_feed.on_fatal = self._on_feed_fatal
        self.momentum = MomentumMonitor(
            self.lifecycle,
            self.cache,
            risk_config.exit_rules,
            AdaptiveInterval(
                self.cache,
                base=settings.MOMENTUM_BASE_INTERVAL_SEC,
                fast=settings.MOMENTUM_FAST_INTERVAL_SEC,
                slow=settings.MOMENTUM_SLOW_INTERVAL_SEC,
                volatility_pct=settings.MOMENTUM_VOLATILITY_PCT,
                calm_sec=settings.MOMENTUM_CALM_SEC,
            ),
        )
        self.sol_price = sol_price
        self.pool_listener: PoolListener | None = None
        if sol_price is not None:
            self.pool_listener = PoolListener(
                settings.WSS_URL, network, sol_price, self.cache, self.handle_candidate,
                buyer_window_sec=risk_config.exit_rules.momentum_window_sec,
            )

        self.shutdown_event = asyncio.Event()
        self._finished = asyncio.Event()
        self._accepting = True
        self._entries_in_progress = 0
        self._shutdown_requests = 0
        self._tasks: list[asyncio.Task] = []
        self._shutdown_task: asyncio.Task | None = None

    # =====================================================================
    # ENTRY
    # =====================================================================

    def _skip(self, event: NewPoolEvent, reason: str) -> PipelineOutcome:
        self.logger.info("⏭️ Skipping %s: %s", event.pool.pool[:8], reason)
        return PipelineOutcome(pool=event.pool, state=PipelineState.REJECTED, reason=reason,
                               history=[PipelineState.CANDIDATE, PipelineState.REJECTED])

    async def handle_candidate(self, event: NewPoolEvent) -> PipelineOutcome:
        if not self._accepting:
            return self._skip(event, "engine is not accepting new entries")
        if not self.risk_config.trading_enabled:
            return self._skip(event, "trading disabled")
        if event.is_pumpfun_pool:
            return self._skip(event, "pump.fun migration pools are not traded")
        limit = self.risk_config.position_limits.max_open_positions
        if len(self.store.list_open()) + self._entries_in_progress >= limit:
            return self._skip(event, f"open position limit reached ({limit})")

        self._entries_in_progress += 1
        try:
            outcome = await self.pipeline.process(event)
        finally:
            self._entries_in_progress -= 1

        if outcome.state == PipelineState.VERIFIED:
            outcome.position = await self.lifecycle.open_position(event.pool, outcome.fill, outcome.decision)
            await self.price_feed.subscribe(event.pool.base_mint, self.lifecycle.on_price_update)
        elif outcome.state == PipelineState.VERIFICATION_FAILED:
            await self.notifier.send_message(
                f"🚨 BUY needs manual review\nPool: `{event.pool.pool}`\n"
                f"Tx: `{outcome.signature}`\n{outcome.reason}"
            )
        elif outcome.state == PipelineState.FAILED:
            await self.notifier.send_message(f"❌ BUY failed for `{event.pool.pool}`: {outcome.reason}")
        return outcome

    async def _on_position_closed(self, position: Position) -> None:
        mint = position.pool.base_mint
        if mint in self.lifecycle.open_assets():
            return
        await self.price_feed.unsubscribe(mint)
        self.cache.forget(mint)

    # =====================================================================
    # RUN
    # =====================================================================

    async def restore_positions(self) -> int:
        """Resubscribe the price feed for positions left open by a previous run."""
        open_positions = self.store.list_open()
        for position in open_positions:
            await self.price_feed.subscribe(position.pool.base_mint, self.lifecycle.on_price_update)
        if open_positions:
            self.logger.info("♻️ Restored %d open positions", len(open_positions))
        return len(open_positions)

    async def run(self) -> None:
        await self.restore_positions()
        self._tasks = [
            asyncio.create_task(self.price_feed.run(), name="price_feed"),
            asyncio.create_task(self.momentum.as_task(self.shutdown_event).run(), name="momentum"),
        ]
        if self.pool_listener is not None:
            self._tasks.append(asyncio.create_task(self.pool_listener.run(), name="pool_listener"))

        self.logger.info("🚀 Engine running | wallet=%s", self.wallet.pubkey())
        await self.notifier.send_message("🚀 PumpSwap sniper started")
        await self._finished.wait()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    def request_shutdown(self) -> None:
        """Signal handler entry point. Second call forces termination."""
        self._shutdown_requests += 1
        if self._shutdown_requests == 1:
            self.logger.info("🛑 Shutdown requested, finishing in-flight exits (repeat to force)")
            self._shutdown_task = asyncio.create_task(self.graceful_shutdown())
        else:
            self.logger.warning("🛑 Second shutdown request, forcing exit")
            self._shutdown_task = asyncio.create_task(self.force_shutdown())

    async def graceful_shutdown(self) -> None:
        self._accepting = False
        self.shutdown_event.set()
        await self.notifier.send_message("🛑 Shutting down")
        if self.pool_listener is not None:
            await self.pool_listener.stop()
        await self.price_feed.stop()

        if self.store.list_open() and self.lifecycle.exits_in_flight:
            self.logger.info("Waiting for %d in-flight exits...", self.lifecycle.exits_in_flight)
            await self.lifecycle.wait_for_exits()
        remaining = self.store.list_open()
        if remaining:
            self.logger.info("%d positions remain open and will be restored on next start", len(remaining))
        self._finished.set()

    async def force_shutdown(self) -> None:
        self._accepting = False
        self.shutdown_event.set()
        self.lifecycle.stop_accepting_exits()
        self.lifecycle.cancel_exits()
        await self.lifecycle.abandon_open_positions()
        self._finished.set()

    async def close(self) -> None:
        for resource in (self.network, self.notifier, self.decision_service, self.sol_price):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()

    def _on_feed_fatal(self, error: StreamDisconnected) -> None:
        self._accepting = False
        self.logger.critical("Price feed is down for good, new entries disabled: %s", error)
        asyncio.create_task(self.notifier.send_message(f"🚨 Price feed lost: {error}. New entries disabled."))


def create_engine(settings: Settings, risk_config: RiskConfig) -> TradingEngine:
    """Build an engine with the real network, decision, notification and store components."""
    deny_list = CreatorDenyList.from_file(settings.DENY_LIST_PATH)
    network = SolanaNetworkClient(settings.RPC_URL, timeout=settings.API_TIMEOUT_SEC)
    return TradingEngine(
        settings=settings,
        risk_config=risk_config,
        network=network,
        wallet=load_keypair(settings.TRADER_PRIVATE_KEY),
        decision_service=OpenAIDecisionService(
            api_key=settings.DECISION_API_KEY,
            model=settings.DECISION_MODEL,
            base_url=settings.DECISION_BASE_URL,
            timeout=settings.DECISION_TIMEOUT_SEC,
        ),
        notifier=TelegramNotifier(settings),
        store=PositionStore(settings.POSITIONS_PATH),
        deny_list=deny_list,
        sol_price=SolPriceOracle(settings.SOL_PRICE_URL, settings.SOL_PRICE_CACHE_SEC,
                                 timeout=settings.API_TIMEOUT_SEC),
    )
