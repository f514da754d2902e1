"""Pre-trade risk gate. Pure checks, no network access."""
from __future__ import annotations

import logging

from pumpswap_sniper.config.risk_config import EntryFilters
from pumpswap_sniper.core.blacklist import CreatorDenyList
from pumpswap_sniper.core.models import NewPoolEvent, RiskDecision, RiskReason


class RiskGate:
    """Rejects candidates that fail the entry filters.

    Checks run in a fixed order and the first failure wins: creator
    deny-list, liquidity, recent buyers, age window, decimals.
    """

    def __init__(self, filters: EntryFilters, deny_list: CreatorDenyList) -> None:
        self.filters = filters
        self.deny_list = deny_list
        self.logger = logging.getLogger("pumpswap_sniper.risk")

    def evaluate(self, event: NewPoolEvent) -> RiskDecision:
        reason = self._first_failure(event)
        if reason is None:
            return RiskDecision(approved=True)
        self.logger.info("⛔ %s rejected: %s (liq=$%.0f buyers=%d age=%dms dec=%d)",
                         event.pool.pool[:8], reason.value, event.liquidity_usd,
                         event.recent_buyers, event.age_ms, event.decimals)
        return RiskDecision(approved=False, reason=reason)

    def _first_failure(self, event: NewPoolEvent) -> RiskReason | None:
        f = self.filters
        if event.pool.creator and self.deny_list.is_denied(event.pool.creator):
            return RiskReason.BLACKLIST_CREATOR
        if event.liquidity_usd < f.min_liquidity_usd:
            return RiskReason.LOW_LIQUIDITY
        if event.recent_buyers < f.min_recent_buyers:
            return RiskReason.NO_BUYER_SUPPORT
        if event.age_ms < f.min_age_ms:
            return RiskReason.TOO_EARLY
        if event.age_ms > f.max_age_ms:
            return RiskReason.TOO_LATE
        if event.decimals != f.required_decimals:
            return RiskReason.INVALID_DECIMALS
        return None
