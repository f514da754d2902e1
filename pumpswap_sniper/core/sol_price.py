from __future__ import annotations

import logging
import time

import httpx


class SolPriceOracle:
    """SOL/USD from a CoinGecko-style simple price endpoint, cached for a few seconds."""

    def __init__(self, url: str, cache_ttl: float = 5.0, client: httpx.AsyncClient | None = None,
                 timeout: float = 10.0) -> None:
        self.url = url
        self.cache_ttl = cache_ttl
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.logger = logging.getLogger("pumpswap_sniper.sol_price")
        self._price: float | None = None
        self._fetched_at = 0.0

    async def close(self) -> None:
        await self.client.aclose()

    async def get_sol_price_usd(self) -> float | None:
        now = time.time()
        if self._price is not None and now - self._fetched_at < self.cache_ttl:
            return self._price
        try:
            response = await self.client.get(self.url)
            response.raise_for_status()
            price = float(response.json()["solana"]["usd"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            self.logger.warning("SOL price fetch failed, using last known %s: %s", self._price, e)
            return self._price
        self._price = price
        self._fetched_at = now
        return price
