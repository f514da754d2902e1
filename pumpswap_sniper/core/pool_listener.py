"""
New-pool discovery.

Subscribes to the AMM program's logs over the RPC WebSocket, fetches the
parsed transaction for anything that looks like a pool creation, and turns the
``create_pool`` instruction into a NewPoolEvent candidate.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable

import base58
import websockets
from solders.pubkey import Pubkey  # type: ignore
from websockets.exceptions import ConnectionClosed, WebSocketException

from pumpswap_sniper.constants import (
    CREATE_POOL_DISC,
    LAMPORTS_PER_SOL,
    MINT_DECIMALS_OFFSET,
    POOL_CREATION_LOG_KEYWORDS,
    PUMP_AMM_PROGRAM,
)
from pumpswap_sniper.core.addresses import canonical_pumpfun_pool_pda
from pumpswap_sniper.core.market_cache import MarketCache
from pumpswap_sniper.core.models import NewPoolEvent, PoolReference
from pumpswap_sniper.core.network import NetworkClient
from pumpswap_sniper.core.sol_price import SolPriceOracle
from pumpswap_sniper.exceptions import BotException

# create_pool account positions
POOL_INDEX = 0
CREATOR_INDEX = 2
BASE_MINT_INDEX = 3
QUOTE_MINT_INDEX = 4


def mentions_pool_creation(logs: list[str]) -> bool:
    return any(keyword in line for line in logs for keyword in POOL_CREATION_LOG_KEYWORDS)


def _iter_instructions(tx: dict[str, Any]):
    message = (tx.get("transaction") or {}).get("message") or {}
    yield from message.get("instructions") or []
    for inner in (tx.get("meta") or {}).get("innerInstructions") or []:
        yield from inner.get("instructions") or []


def find_create_pool(tx: dict[str, Any]) -> list[str] | None:
    """Account list of the first create_pool instruction, top-level or inner."""
    program = str(PUMP_AMM_PROGRAM)
    for ix in _iter_instructions(tx):
        if ix.get("programId") != program or "data" not in ix:
            continue
        try:
            data = base58.b58decode(ix["data"])
        except ValueError:
            continue
        accounts = ix.get("accounts") or []
        if data[:8] == CREATE_POOL_DISC and len(accounts) > QUOTE_MINT_INDEX:
            return [str(a) for a in accounts]
    return None


def sol_deposited(tx: dict[str, Any]) -> float:
    """SOL that left the fee payer in this transaction."""
    meta = tx.get("meta") or {}
    pre = meta.get("preBalances") or []
    post = meta.get("postBalances") or []
    if not pre or not post:
        return 0.0
    return max(pre[0] - post[0], 0) / LAMPORTS_PER_SOL


class PoolListener:
    def __init__(
        self,
        wss_url: str,
        network: NetworkClient,
        sol_price: SolPriceOracle,
        cache: MarketCache,
        on_pool: Callable[[NewPoolEvent], Awaitable[None]],
        buyer_window_sec: float = 10.0,
        connector: Callable[[str], Any] = websockets.connect,
    ) -> None:
        self.wss_url = wss_url
        self.network = network
        self.sol_price = sol_price
        self.cache = cache
        self.on_pool = on_pool
        self.buyer_window_sec = buyer_window_sec
        self.connector = connector
        self.logger = logging.getLogger("pumpswap_sniper.pool_listener")
        self.fetch_attempts = 3
        self.fetch_delay = 0.5
        self._running = False
        self._ws = None
        self._reconnect_delay = 1.0
        self.seen_limit = 10_000
        self._seen: set[str] = set()
        self._seen_order: deque[str] = deque()
        self._tasks: set[asyncio.Task] = set()

    async def run(self) -> None:
        self._running = True
        self.logger.info("Pool listener starting...")
        while self._running:
            try:
                async with self.connector(self.wss_url) as ws:
                    self._ws = ws
                    self._reconnect_delay = 1.0
                    await ws.send(json.dumps({
                        "jsonrpc": "2.0",
                        "id": 1,
                        "method": "logsSubscribe",
                        "params": [{"mentions": [str(PUMP_AMM_PROGRAM)]}, {"commitment": "confirmed"}],
                    }))
                    self.logger.info("✅ Subscribed to PumpSwap program logs")
                    async for message in ws:
                        self.handle_message(message)
            except ConnectionClosed as e:
                self.logger.warning("Logs WebSocket closed: %s", e)
            except (WebSocketException, OSError, asyncio.TimeoutError) as e:
                self.logger.error("Logs WebSocket error: %s", e)
            finally:
                self._ws = None

            if self._running:
                self.logger.info("Pool listener reconnecting in %.1fs...", self._reconnect_delay)
                await asyncio.sleep(self._reconnect_delay)
                self._reconnect_delay = min(self._reconnect_delay * 2, 30.0)

    async def stop(self) -> None:
        self._running = False
        if self._ws is not None:
            await self._ws.close()
        for task in list(self._tasks):
            task.cancel()
        self.logger.info("Pool listener stopped")

    def handle_message(self, raw: str | bytes) -> asyncio.Task | None:
        try:
            data = json.loads(raw)
        except ValueError:
            return None
        if data.get("method") != "logsNotification":
            return None
        value = ((data.get("params") or {}).get("result") or {}).get("value") or {}
        signature = value.get("signature")
        if not signature or value.get("err") is not None:
            return None
        if signature in self._seen or not mentions_pool_creation(value.get("logs") or []):
            return None
        self._remember(signature)

        task = asyncio.create_task(self.process_signature(signature))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _remember(self, signature: str) -> None:
        self._seen.add(signature)
        self._seen_order.append(signature)
        while len(self._seen_order) > self.seen_limit:
            self._seen.discard(self._seen_order.popleft())

    async def process_signature(self, signature: str) -> NewPoolEvent | None:
        tx = None
        for attempt in range(self.fetch_attempts):
            try:
                tx = await self.network.get_parsed_transaction(signature)
            except BotException as e:
                self.logger.debug("Transaction fetch failed for %s: %s", signature[:16], e)
            if tx is not None:
                break
            if attempt + 1 < self.fetch_attempts:
                await asyncio.sleep(self.fetch_delay)
        if tx is None:
            self.logger.warning("Could not fetch creation transaction %s", signature[:16])
            return None

        event = await self.build_event(tx, signature)
        if event is None:
            return None
        if event.is_pumpfun_pool:
            self.logger.info("⏭️ Skipping pump.fun migration pool %s", event.pool.pool[:8])
            return event

        self.logger.info("🆕 New pool %s | mint=%s liq=$%.0f age=%dms",
                         event.pool.pool[:8], event.pool.base_mint[:8], event.liquidity_usd, event.age_ms)
        await self.on_pool(event)
        return event

    async def build_event(self, tx: dict[str, Any], signature: str, now: float | None = None) -> NewPoolEvent | None:
        accounts = find_create_pool(tx)
        if accounts is None:
            return None
        pool = PoolReference(
            pool=accounts[POOL_INDEX],
            base_mint=accounts[BASE_MINT_INDEX],
            quote_mint=accounts[QUOTE_MINT_INDEX],
            creator=accounts[CREATOR_INDEX],
        )

        sol_price = await self.sol_price.get_sol_price_usd() or 0.0
        liquidity_usd = 2 * sol_deposited(tx) * sol_price

        now = time.time() if now is None else now
        block_time = tx.get("blockTime")
        age_ms = max(int((now - block_time) * 1000), 0) if block_time else 0

        base_mint = Pubkey.from_string(pool.base_mint)
        quote_mint = Pubkey.from_string(pool.quote_mint)
        is_pumpfun = canonical_pumpfun_pool_pda(base_mint, quote_mint) == Pubkey.from_string(pool.pool)

        return NewPoolEvent(
            pool=pool,
            liquidity_usd=liquidity_usd,
            recent_buyers=self.cache.count_recent_buyers(pool.base_mint, self.buyer_window_sec, now),
            age_ms=age_ms,
            decimals=await self._mint_decimals(base_mint),
            signature=signature,
            is_pumpfun_pool=is_pumpfun,
        )

    async def _mint_decimals(self, mint: Pubkey) -> int:
        """Decimals byte of the SPL mint record, -1 when unreadable."""
        try:
            data = await self.network.get_account(mint)
        except BotException as e:
            self.logger.debug("Mint read failed for %s: %s", mint, e)
            return -1
        if data is None or len(data) <= MINT_DECIMALS_OFFSET:
            return -1
        return data[MINT_DECIMALS_OFFSET]
