"""Live price stream over a single WebSocket connection."""
from __future__ import annotations

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from pumpswap_sniper.core.market_cache import MarketCache
from pumpswap_sniper.core.models import BuyerObservation, PriceUpdate
from pumpswap_sniper.exceptions import StreamDisconnected

PriceCallback = Callable[[PriceUpdate], Any]


class FeedState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"


def _to_seconds(ts: Any) -> float:
    try:
        value = float(ts)
    except (TypeError, ValueError):
        return time.time()
    # Millisecond epoch timestamps
    return value / 1000 if value > 1e11 else value


class PriceFeedManager:
    """Subscribes assets on a price WebSocket and fans updates out to callbacks.

    Every subscription is re-sent after a reconnect. Reconnects use a fixed
    delay; once ``max_reconnects`` consecutive attempts fail the manager stays
    DISCONNECTED, marks itself unhealthy and calls ``on_fatal``.
    """

    def __init__(
        self,
        url: str,
        cache: MarketCache,
        max_reconnects: int = 10,
        reconnect_delay: float = 5.0,
        ping_interval: float = 30.0,
        update_interval_ms: int = 200,
        connector: Callable[[str], Any] = websockets.connect,
        on_fatal: Callable[[StreamDisconnected], Any] | None = None,
    ) -> None:
        self.url = url
        self.cache = cache
        self.max_reconnects = max_reconnects
        self.reconnect_delay = reconnect_delay
        self.ping_interval = ping_interval
        self.update_interval_ms = update_interval_ms
        self.connector = connector
        self.on_fatal = on_fatal
        self.logger = logging.getLogger("pumpswap_sniper.price_feed")

        self.state = FeedState.DISCONNECTED
        self.healthy = True
        self._ws = None
        self._running = False
        self._stopped = asyncio.Event()
        self._failed_attempts = 0
        # asset -> callbacks in registration order
        self._subscriptions: dict[str, list[PriceCallback]] = {}

    # =====================================================================
    # SUBSCRIPTIONS
    # =====================================================================

    async def subscribe(self, asset_id: str, callback: PriceCallback | None = None) -> None:
        is_new = asset_id not in self._subscriptions
        callbacks = self._subscriptions.setdefault(asset_id, [])
        if callback is not None and callback not in callbacks:
            callbacks.append(callback)
        if is_new:
            if self.state == FeedState.CONNECTED:
                await self._send_subscribe(asset_id)
            else:
                self.logger.info("Price feed not connected, %s will subscribe on connect", asset_id[:8])

    async def unsubscribe(self, asset_id: str) -> None:
        if self._subscriptions.pop(asset_id, None) is None:
            return
        if self.state == FeedState.CONNECTED and self._ws is not None:
            try:
                await self._ws.send(json.dumps({"action": "unsubscribe", "token": asset_id}))
            except ConnectionClosed:
                pass
        self.logger.info("Unsubscribed %s", asset_id[:8])

    @property
    def subscribed_assets(self) -> list[str]:
        return list(self._subscriptions)

    def get_current_price(self, asset_id: str) -> float | None:
        update = self.cache.get_price(asset_id)
        return update.price if update else None

    # =====================================================================
    # CONNECTION LOOP
    # =====================================================================

    async def run(self) -> None:
        self._running = True
        self._stopped.clear()
        self.logger.info("Price feed starting (%s)", self.url)

        while self._running:
            self.state = FeedState.CONNECTING
            try:
                async with self.connector(self.url) as ws:
                    self._ws = ws
                    self.state = FeedState.CONNECTED
                    self._failed_attempts = 0
                    self.logger.info("✅ Price feed connected")
                    await self._resubscribe_all()
                    ping_task = asyncio.create_task(self._ping_loop(ws))
                    try:
                        async for message in ws:
                            self.handle_message(message)
                    finally:
                        ping_task.cancel()
            except ConnectionClosed as e:
                self.logger.warning("Price feed closed: %s", e)
            except (WebSocketException, OSError, asyncio.TimeoutError) as e:
                self.logger.warning("Price feed connection error: %s", e)
            finally:
                self._ws = None
                self.state = FeedState.DISCONNECTED

            if not self._running:
                break

            self._failed_attempts += 1
            if self._failed_attempts > self.max_reconnects:
                self._go_fatal()
                break

            self.logger.info("Price feed reconnecting in %.1fs (attempt %d/%d)",
                             self.reconnect_delay, self._failed_attempts, self.max_reconnects)
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.reconnect_delay)
            except asyncio.TimeoutError:
                pass

        self.logger.info("Price feed stopped")

    async def stop(self) -> None:
        self._running = False
        self._stopped.set()
        ws = self._ws
        if ws is not None:
            await ws.close()

    def _go_fatal(self) -> None:
        self.healthy = False
        error = StreamDisconnected("Price feed reconnect budget exhausted", attempts=self.max_reconnects)
        self.logger.critical("🚨 %s", error)
        if self.on_fatal is not None:
            self.on_fatal(error)

    async def _resubscribe_all(self) -> None:
        for asset_id in list(self._subscriptions):
            await self._send_subscribe(asset_id)
        if self._subscriptions:
            self.logger.info("Subscribed %d assets", len(self._subscriptions))

    async def _send_subscribe(self, asset_id: str) -> None:
        if self._ws is None:
            return
        await self._ws.send(json.dumps({
            "action": "subscribe",
            "token": asset_id,
            "interval": self.update_interval_ms,
        }))

    async def _ping_loop(self, ws) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            try:
                await ws.send(json.dumps({"type": "ping", "timestamp": int(time.time() * 1000)}))
            except ConnectionClosed:
                return

    # =====================================================================
    # INBOUND
    # =====================================================================

    def handle_message(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except ValueError:
            self.logger.debug("Ignoring non-JSON frame")
            return
        if not isinstance(data, dict):
            return

        kind = data.get("type")
        if kind == "price_update":
            self._handle_price(data)
        elif kind == "trade":
            self._handle_trade(data)
        elif kind in ("pong", "heartbeat"):
            return
        else:
            self.logger.debug("Ignoring frame type %s", kind)

    def _handle_price(self, data: dict[str, Any]) -> None:
        asset_id = data.get("token") or data.get("assetId")
        try:
            price = float(data.get("price"))
        except (TypeError, ValueError):
            return
        if not asset_id or price <= 0:
            return
        liquidity = data.get("liquidity")
        update = PriceUpdate(
            asset_id=str(asset_id),
            price=price,
            timestamp=_to_seconds(data.get("timestamp")),
            liquidity=float(liquidity) if isinstance(liquidity, (int, float)) else None,
        )
        self.cache.update_price(update)

        for callback in list(self._subscriptions.get(update.asset_id, ())):
            try:
                callback(update)
            except Exception as e:
                self.logger.error("Price callback error for %s: %s", update.asset_id[:8], e)

    def _handle_trade(self, data: dict[str, Any]) -> None:
        asset_id = data.get("token") or data.get("assetId")
        side = str(data.get("side") or data.get("txType") or "").lower()
        buyer = data.get("trader") or data.get("traderPublicKey")
        if not asset_id or side != "buy" or not buyer:
            return
        self.cache.record_buyer(BuyerObservation(
            asset_id=str(asset_id),
            buyer=str(buyer),
            timestamp=_to_seconds(data.get("timestamp")),
        ))
