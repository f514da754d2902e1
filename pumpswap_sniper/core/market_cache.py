"""Last prices and buyer observations, shared by the feed, lifecycle and momentum poll."""
from __future__ import annotations

import time
from collections import deque

from pumpswap_sniper.core.models import BuyerObservation, PriceUpdate


class MarketCache:
    """Owned cache passed to the components that need it.

    Only the latest price per asset is kept. Buyer observations are kept for
    ``retention_sec`` and counted over any trailing window inside it.
    """

    def __init__(self, retention_sec: float = 120.0) -> None:
        self.retention_sec = retention_sec
        self._prices: dict[str, PriceUpdate] = {}
        self._buyers: dict[str, deque[BuyerObservation]] = {}
        # asset -> (reference price, time it was set) for volatility tracking
        self._reference: dict[str, tuple[float, float]] = {}

    def update_price(self, update: PriceUpdate) -> None:
        current = self._prices.get(update.asset_id)
        if current is not None and current.timestamp > update.timestamp:
            return
        self._prices[update.asset_id] = update

    def get_price(self, asset_id: str) -> PriceUpdate | None:
        return self._prices.get(asset_id)

    def forget(self, asset_id: str) -> None:
        self._prices.pop(asset_id, None)
        self._buyers.pop(asset_id, None)
        self._reference.pop(asset_id, None)

    def record_buyer(self, observation: BuyerObservation) -> None:
        bucket = self._buyers.setdefault(observation.asset_id, deque())
        bucket.append(observation)
        self._prune(bucket, observation.timestamp)

    def count_recent_buyers(self, asset_id: str, window_sec: float, now: float | None = None) -> int:
        """Distinct buyers of ``asset_id`` seen in the trailing window."""
        now = time.time() if now is None else now
        bucket = self._buyers.get(asset_id)
        if not bucket:
            return 0
        self._prune(bucket, now)
        cutoff = now - window_sec
        return len({obs.buyer for obs in bucket if obs.timestamp >= cutoff})

    def price_moved(self, asset_id: str, threshold_pct: float, now: float | None = None) -> bool:
        """True when the price moved more than ``threshold_pct`` since the last reference.

        The reference resets to the current price whenever a move is reported.
        """
        now = time.time() if now is None else now
        update = self._prices.get(asset_id)
        if update is None or update.price <= 0:
            return False
        reference = self._reference.get(asset_id)
        if reference is None:
            self._reference[asset_id] = (update.price, now)
            return False
        ref_price, _ = reference
        moved = abs(update.price - ref_price) / ref_price * 100 > threshold_pct
        if moved:
            self._reference[asset_id] = (update.price, now)
        return moved

    def seconds_since_move(self, asset_id: str, now: float | None = None) -> float:
        now = time.time() if now is None else now
        reference = self._reference.get(asset_id)
        if reference is None:
            return 0.0
        return now - reference[1]

    def _prune(self, bucket: deque[BuyerObservation], now: float) -> None:
        cutoff = now - self.retention_sec
        while bucket and bucket[0].timestamp < cutoff:
            bucket.popleft()
