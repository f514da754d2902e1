"""Buyer-momentum poll over open positions."""
from __future__ import annotations

import asyncio
import logging

from pumpswap_sniper.config import ExitRules
from pumpswap_sniper.core.lifecycle import PositionLifecycleManager
from pumpswap_sniper.core.market_cache import MarketCache
from pumpswap_sniper.core.scheduler import AdaptiveInterval, ScheduledTask


class MomentumMonitor:
    """Counts distinct recent buyers per open asset and reports them to the lifecycle manager."""

    def __init__(self, lifecycle: PositionLifecycleManager, cache: MarketCache,
                 rules: ExitRules, interval: AdaptiveInterval) -> None:
        self.lifecycle = lifecycle
        self.cache = cache
        self.rules = rules
        self.interval = interval
        self.logger = logging.getLogger("pumpswap_sniper.momentum")

    async def poll_once(self) -> None:
        for asset_id in self.lifecycle.open_assets():
            buyers = self.cache.count_recent_buyers(asset_id, self.rules.momentum_window_sec)
            self.logger.debug("%s: %d buyers in last %.0fs", asset_id[:8], buyers, self.rules.momentum_window_sec)
            self.lifecycle.on_momentum_sample(asset_id, buyers)

    def next_interval(self) -> float:
        return self.interval.next_interval(self.lifecycle.open_assets())

    def as_task(self, shutdown: asyncio.Event) -> ScheduledTask:
        return ScheduledTask("momentum", self.poll_once, self.next_interval, shutdown)
