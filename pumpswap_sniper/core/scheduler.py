"""Periodic tasks that share one shutdown event."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable

from pumpswap_sniper.core.market_cache import MarketCache
from pumpswap_sniper.exceptions import BotException


class AdaptiveInterval:
    """Poll faster while prices move, slower once they have been flat for a while.

    - any tracked asset moved more than ``volatility_pct`` since its reference: ``fast``
    - every tracked asset flat for at least ``calm_sec``: ``slow``
    - otherwise: ``base``
    """

    def __init__(self, cache: MarketCache, base: float = 1.5, fast: float = 0.5, slow: float = 2.0,
                 volatility_pct: float = 1.0, calm_sec: float = 5.0) -> None:
        self.cache = cache
        self.base = base
        self.fast = fast
        self.slow = slow
        self.volatility_pct = volatility_pct
        self.calm_sec = calm_sec
        self.current = base

    def next_interval(self, assets: Iterable[str], now: float | None = None) -> float:
        now = time.time() if now is None else now
        assets = list(assets)
        if not assets:
            self.current = self.base
            return self.current
        moved = [self.cache.price_moved(a, self.volatility_pct, now) for a in assets]
        if any(moved):
            self.current = self.fast
        elif all(self.cache.seconds_since_move(a, now) >= self.calm_sec for a in assets):
            self.current = self.slow
        else:
            self.current = self.base
        return self.current


class ScheduledTask:
    """Runs ``step`` repeatedly until ``shutdown`` is set.

    ``interval`` is asked for the next delay after every step, so it can change
    between iterations. Setting ``shutdown`` wakes the task immediately.
    """

    def __init__(self, name: str, step: Callable[[], Awaitable[None]],
                 interval: Callable[[], float], shutdown: asyncio.Event) -> None:
        self.name = name
        self.step = step
        self.interval = interval
        self.shutdown = shutdown
        self.logger = logging.getLogger(f"pumpswap_sniper.scheduler.{name}")

    async def run(self) -> None:
        self.logger.debug("Scheduled task %s started", self.name)
        while not self.shutdown.is_set():
            try:
                await self.step()
            except BotException as e:
                self.logger.error("Scheduled task %s step failed: %s", self.name, e)
            try:
                await asyncio.wait_for(self.shutdown.wait(), timeout=self.interval())
            except asyncio.TimeoutError:
                continue
        self.logger.debug("Scheduled task %s stopped", self.name)
