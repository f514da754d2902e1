"""
Position lifecycle.

A position is OPEN from a verified BUY until a SELL lands, then CLOSED.
Exit triggers (take-profit, stop-loss, buyer momentum, manual) may fire from
the price feed and the momentum poll at the same time; a per-position claim
taken synchronously in ``request_exit`` keeps exactly one exit in flight.
After a failed SELL, automatic triggers for that position wait out a short
cooldown.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Protocol

from pumpswap_sniper.config import ExitRules
from pumpswap_sniper.constants import QUOTE_DECIMALS
from pumpswap_sniper.core.market_cache import MarketCache
from pumpswap_sniper.core.models import (
    ExitReason,
    PoolReference,
    Position,
    PositionStatus,
    PriceUpdate,
    SellResult,
    TradeDecision,
    VerifiedFill,
)
from pumpswap_sniper.core.position_store import PositionStore
from pumpswap_sniper.exceptions import BotException
from pumpswap_sniper.logger import trade_logger


class ExitExecutor(Protocol):
    async def execute_sell(self, position: Position, trigger_price: float) -> SellResult: ...


class Notifier(Protocol):
    async def send_message(self, text: str) -> None: ...

    async def notify_open(self, position: Position) -> None: ...

    async def notify_close(self, position: Position) -> None: ...


def evaluate_exit(position: Position, price: float) -> ExitReason | None:
    """Take-profit when the change reaches +tp%, stop-loss when it reaches -sl%."""
    if position.entry_price <= 0:
        return None
    change = (price - position.entry_price) / position.entry_price
    if change >= position.take_profit_pct / 100:
        return ExitReason.TAKE_PROFIT
    if change <= -abs(position.stop_loss_pct) / 100:
        return ExitReason.STOP_LOSS
    return None


def realized_pnl(position: Position, close_price: float, quote_decimals: int = QUOTE_DECIMALS) -> float:
    """P&L in quote units: relative price change times the quote amount committed."""
    change = (close_price - position.entry_price) / position.entry_price
    return change * position.entry_quote_amount / 10 ** quote_decimals


class PositionLifecycleManager:
    def __init__(
        self,
        store: PositionStore,
        executor: ExitExecutor,
        notifier: Notifier,
        cache: MarketCache,
        rules: ExitRules,
    ) -> None:
        self.store = store
        self.executor = executor
        self.notifier = notifier
        self.cache = cache
        self.rules = rules
        self.logger = logging.getLogger("pumpswap_sniper.lifecycle")
        self._in_flight: dict[str, asyncio.Task] = {}
        self._retry_after: dict[str, float] = {}
        self._accepting_exits = True
        self.on_closed: Callable[[Position], Awaitable[None]] | None = None

    # =====================================================================
    # OPEN
    # =====================================================================

    async def open_position(self, pool: PoolReference, fill: VerifiedFill, decision: TradeDecision) -> Position:
        position_id = f"{pool.pool}-{int(time.time() * 1000)}"
        suffix = 1
        while self.store.contains(position_id):
            position_id = f"{pool.pool}-{int(time.time() * 1000)}-{suffix}"
            suffix += 1

        position = Position(
            id=position_id,
            pool=pool,
            entry_signature=fill.signature,
            entry_price=fill.entry_price,
            entry_amount=fill.base_received,
            entry_quote_amount=fill.quote_spent,
            take_profit_pct=decision.take_profit_pct,
            stop_loss_pct=decision.stop_loss_pct,
            opened_at=time.time(),
        )
        await self.store.save(position)
        self.logger.info("📈 OPEN %s | entry=%.12f amount=%d tp=+%.0f%% sl=-%.0f%%",
                         position.id, position.entry_price, position.entry_amount,
                         position.take_profit_pct, position.stop_loss_pct)
        await self.notifier.notify_open(position)
        return position

    def list_open(self, pool: str | None = None) -> list[Position]:
        return self.store.list_open(pool)

    def open_assets(self) -> set[str]:
        return {p.pool.base_mint for p in self.store.list_open()}

    # =====================================================================
    # EXIT TRIGGERS
    # =====================================================================

    def on_price_update(self, update: PriceUpdate) -> list[asyncio.Task]:
        """Price feed callback. Evaluates every open position on the asset without awaiting."""
        tasks = []
        for position in self.store.list_open():
            if position.pool.base_mint != update.asset_id:
                continue
            reason = evaluate_exit(position, update.price)
            if reason is None:
                continue
            task = self.request_exit(position.id, reason, update.price)
            if task is not None:
                tasks.append(task)
        return tasks

    def on_momentum_sample(self, asset_id: str, buyers: int, now: float | None = None) -> list[asyncio.Task]:
        """Exit positions whose trailing buyer count fell below the floor.

        Positions younger than the window are skipped; there is nothing to count yet.
        """
        if not self.rules.momentum_exit_enabled or buyers >= self.rules.momentum_min_buyers:
            return []
        now = time.time() if now is None else now
        tasks = []
        for position in self.store.list_open():
            if position.pool.base_mint != asset_id:
                continue
            if now - position.opened_at < self.rules.momentum_window_sec:
                continue
            cached = self.cache.get_price(asset_id)
            price = cached.price if cached else position.entry_price
            self.logger.info("📉 %s momentum lost: %d buyers in %.0fs (min %d)",
                             position.id, buyers, self.rules.momentum_window_sec,
                             self.rules.momentum_min_buyers)
            task = self.request_exit(position.id, ExitReason.MOMENTUM, price)
            if task is not None:
                tasks.append(task)
        return tasks

    def request_exit(self, position_id: str, reason: ExitReason, price: float) -> asyncio.Task | None:
        """Claim the position and start its SELL. Returns None when the claim is refused."""
        if not self._accepting_exits:
            return None
        position = self.store.get(position_id)
        if position is None or position.status != PositionStatus.OPEN:
            return None
        if position_id in self._in_flight:
            self.logger.debug("Exit already in flight for %s, ignoring %s", position_id, reason.value)
            return None
        retry_at = self._retry_after.get(position_id)
        if retry_at is not None and reason != ExitReason.MANUAL and time.monotonic() < retry_at:
            self.logger.debug("%s is cooling down after a failed SELL, ignoring %s", position_id, reason.value)
            return None

        task = asyncio.create_task(self._run_exit(position, reason, price))
        self._in_flight[position_id] = task
        return task

    async def _run_exit(self, position: Position, reason: ExitReason, price: float) -> Position | None:
        self.logger.info("🎯 EXIT %s | reason=%s price=%.12f", position.id, reason.value, price)
        try:
            result = await self.executor.execute_sell(position, price)
        except BotException as e:
            self._in_flight.pop(position.id, None)
            self._retry_after[position.id] = time.monotonic() + self.rules.exit_retry_cooldown_sec
            self.logger.error("❌ SELL failed for %s, position stays open: %s", position.id, e)
            await self.notifier.send_message(f"⚠️ SELL failed for `{position.id}`: {e.message}")
            return None
        except BaseException:
            self._in_flight.pop(position.id, None)
            raise

        # Status flips before the claim is released
        position.status = PositionStatus.CLOSED
        position.close_signature = result.signature
        position.close_price = result.close_price
        position.closed_at = time.time()
        position.exit_reason = reason
        position.realized_pnl = realized_pnl(position, result.close_price)
        self._in_flight.pop(position.id, None)
        self._retry_after.pop(position.id, None)
        await self.store.save(position)

        self.logger.info("📕 CLOSED %s | reason=%s pnl=%+.6f", position.id, reason.value, position.realized_pnl)
        trade_logger.log_sell(
            pool=position.pool.pool,
            mint=position.pool.base_mint,
            signature=result.signature,
            reason=reason.value,
            close_price=result.close_price,
            realized_pnl=position.realized_pnl,
            hold_time_seconds=position.closed_at - position.opened_at,
            token_amount=position.entry_amount,
        )
        if self.on_closed is not None:
            await self.on_closed(position)
        await self.notifier.notify_close(position)
        return position

    # =====================================================================
    # SHUTDOWN
    # =====================================================================

    @property
    def exits_in_flight(self) -> int:
        return len(self._in_flight)

    def stop_accepting_exits(self) -> None:
        self._accepting_exits = False

    async def wait_for_exits(self) -> None:
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)
            for position_id, task in list(self._in_flight.items()):
                if task.done():
                    self._in_flight.pop(position_id, None)

    def cancel_exits(self) -> None:
        for task in list(self._in_flight.values()):
            task.cancel()

    async def abandon_open_positions(self) -> list[Position]:
        """Mark every still-open position as abandoned so it is visible after restart."""
        now = time.time()
        abandoned = []
        for position in self.store.list_open():
            position.abandoned_at = now
            await self.store.save(position)
            abandoned.append(position)
            self.logger.warning("🚧 ABANDONED %s | entry=%.12f amount=%d (left open at shutdown)",
                                position.id, position.entry_price, position.entry_amount)
        if abandoned:
            ids = "\n".join(f"`{p.id}`" for p in abandoned)
            await self.notifier.send_message(f"🚧 Forced shutdown left {len(abandoned)} position(s) open:\n{ids}")
        return abandoned
