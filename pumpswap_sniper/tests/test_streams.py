"""
Unit tests for the two WebSocket consumers: the price feed and pool discovery.
"""

import pytest
import asyncio
import json
import sys
import os

# Add repository root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

import base58

from pumpswap_sniper.constants import CREATE_POOL_DISC, PUMP_AMM_PROGRAM, WSOL_MINT
from pumpswap_sniper.core.addresses import canonical_pumpfun_pool_pda
from pumpswap_sniper.core.market_cache import MarketCache
from pumpswap_sniper.core.network import token_balance_delta
from pumpswap_sniper.core.pool_listener import PoolListener, find_create_pool, sol_deposited
from pumpswap_sniper.core.price_feed import FeedState, PriceFeedManager
from pumpswap_sniper.exceptions import StreamDisconnected
from pumpswap_sniper.tests.fakes import (
    FakeConnection,
    FakeNetwork,
    FakeSolPrice,
    ScriptedConnector,
    random_key,
)


def price_frame(asset, price, ts):
    return json.dumps({"type": "price_update", "token": asset, "price": price, "timestamp": ts})


class TestPriceFeed:
    """Reconnect, resubscribe and fatal health signal"""

    def test_resubscribes_after_reconnect_then_goes_fatal(self):
        conn1 = FakeConnection([price_frame("MINT", 1.0, 1_700_000_000_000)])
        conn2 = FakeConnection([price_frame("MINT", 1.2, 1_700_000_001_000)])
        connector = ScriptedConnector([conn1, conn2, OSError("refused")])
        received = []
        fatal = []

        def on_price(update):
            received.append(update.price)

        async def run():
            feed = PriceFeedManager("wss://feed", MarketCache(), max_reconnects=1, reconnect_delay=0,
                                    connector=connector, on_fatal=fatal.append)
            await feed.subscribe("MINT", on_price)
            await feed.subscribe("MINT", on_price)
            await feed.run()
            return feed

        feed = asyncio.run(run())
        assert connector.calls == 3
        assert [json.loads(m)["token"] for m in conn1.sent] == ["MINT"]
        assert [json.loads(m)["token"] for m in conn2.sent] == ["MINT"]
        assert received == [1.0, 1.2]
        assert feed.state == FeedState.DISCONNECTED
        assert not feed.healthy
        assert len(fatal) == 1
        assert isinstance(fatal[0], StreamDisconnected)
        assert feed.get_current_price("MINT") == 1.2

    def test_stop_ends_run(self):
        async def run():
            connector = ScriptedConnector([OSError("refused")] * 5)
            feed = PriceFeedManager("wss://feed", MarketCache(), max_reconnects=5, reconnect_delay=30,
                                    connector=connector)
            task = asyncio.create_task(feed.run())
            await asyncio.sleep(0.01)
            await feed.stop()
            await asyncio.wait_for(task, timeout=1)
            return feed, connector

        feed, connector = asyncio.run(run())
        assert connector.calls == 1
        assert feed.healthy

    def test_trade_frames_record_buyers(self):
        cache = MarketCache()
        feed = PriceFeedManager("wss://feed", cache)
        now_ms = 1_700_000_000_000
        for trader in ("a", "b", "a"):
            feed.handle_message(json.dumps({"type": "trade", "token": "MINT", "side": "buy",
                                            "trader": trader, "timestamp": now_ms}))
        feed.handle_message(json.dumps({"type": "trade", "token": "MINT", "side": "sell",
                                        "trader": "c", "timestamp": now_ms}))
        assert cache.count_recent_buyers("MINT", 10, now=now_ms / 1000) == 2

    def test_callback_error_does_not_stop_others(self):
        feed = PriceFeedManager("wss://feed", MarketCache())
        seen = []

        def broken(update):
            raise RuntimeError("boom")

        async def run():
            await feed.subscribe("MINT", broken)
            await feed.subscribe("MINT", lambda u: seen.append(u.price))
            feed.handle_message(price_frame("MINT", 2.0, 1_700_000_000_000))
            feed.handle_message(json.dumps({"type": "pong"}))
            feed.handle_message("garbage")

        asyncio.run(run())
        assert seen == [2.0]

    def test_unsubscribe_drops_callbacks(self):
        feed = PriceFeedManager("wss://feed", MarketCache())
        seen = []

        async def run():
            await feed.subscribe("MINT", seen.append)
            await feed.unsubscribe("MINT")
            feed.handle_message(price_frame("MINT", 2.0, 1_700_000_000_000))

        asyncio.run(run())
        assert seen == []
        assert feed.subscribed_assets == []


def creation_tx(pool, creator, base_mint, quote_mint, block_time=1_700_000_000):
    return {
        "blockTime": block_time,
        "meta": {
            "err": None,
            "preBalances": [10_000_000_000, 0],
            "postBalances": [9_000_000_000, 0],
            "innerInstructions": [],
        },
        "transaction": {
            "message": {
                "instructions": [
                    {"programId": "ComputeBudget111111111111111111111111111111", "data": "3"},
                    {
                        "programId": str(PUMP_AMM_PROGRAM),
                        "data": base58.b58encode(CREATE_POOL_DISC + bytes(18)).decode(),
                        "accounts": [str(pool), str(random_key()), str(creator), str(base_mint),
                                     str(quote_mint), str(random_key())],
                    },
                ],
            },
        },
    }


def logs_frame(signature, logs, err=None):
    return json.dumps({
        "jsonrpc": "2.0",
        "method": "logsNotification",
        "params": {"result": {"value": {"signature": signature, "err": err, "logs": logs}}},
    })


class TestPoolListener:
    """Creation transaction parsing"""

    def _listener(self, network, on_pool=None):
        async def ignore(event):
            return None

        listener = PoolListener("wss://rpc", network, FakeSolPrice(150.0), MarketCache(), on_pool or ignore)
        listener.fetch_attempts = 1
        return listener

    def test_find_create_pool(self):
        pool, creator, base, quote = random_key(), random_key(), random_key(), WSOL_MINT
        accounts = find_create_pool(creation_tx(pool, creator, base, quote))
        assert accounts[0] == str(pool)
        assert accounts[3] == str(base)

    def test_find_create_pool_in_inner_instructions(self):
        tx = creation_tx(random_key(), random_key(), random_key(), WSOL_MINT)
        ix = tx["transaction"]["message"]["instructions"].pop()
        tx["meta"]["innerInstructions"] = [{"index": 0, "instructions": [ix]}]
        assert find_create_pool(tx) is not None

    def test_other_instruction_ignored(self):
        tx = creation_tx(random_key(), random_key(), random_key(), WSOL_MINT)
        tx["transaction"]["message"]["instructions"][1]["data"] = base58.b58encode(bytes(26)).decode()
        assert find_create_pool(tx) is None

    def test_sol_deposited(self):
        tx = creation_tx(random_key(), random_key(), random_key(), WSOL_MINT)
        assert sol_deposited(tx) == pytest.approx(1.0)

    def test_build_event(self):
        network = FakeNetwork()
        pool, creator, base = random_key(), random_key(), random_key()
        network.accounts[base] = bytes(44) + bytes([9]) + bytes(37)
        tx = creation_tx(pool, creator, base, WSOL_MINT)

        event = asyncio.run(self._listener(network).build_event(tx, "S", now=1_700_000_001.0))
        assert event.pool.pool == str(pool)
        assert event.pool.creator == str(creator)
        assert event.pool.quote_mint == str(WSOL_MINT)
        assert event.liquidity_usd == pytest.approx(300.0)
        assert event.age_ms == 1_000
        assert event.decimals == 9
        assert not event.is_pumpfun_pool

    def test_unreadable_mint_gives_invalid_decimals(self):
        network = FakeNetwork()
        tx = creation_tx(random_key(), random_key(), random_key(), WSOL_MINT)
        event = asyncio.run(self._listener(network).build_event(tx, "S", now=1_700_000_001.0))
        assert event.decimals == -1

    def test_pumpfun_pool_skipped(self):
        network = FakeNetwork()
        base = random_key()
        network.accounts[base] = bytes(44) + bytes([6]) + bytes(37)
        pool = canonical_pumpfun_pool_pda(base, WSOL_MINT)
        network.parsed["S"] = creation_tx(pool, random_key(), base, WSOL_MINT)
        delivered = []

        async def on_pool(event):
            delivered.append(event)

        event = asyncio.run(self._listener(network, on_pool).process_signature("S"))
        assert event.is_pumpfun_pool
        assert delivered == []

    def test_new_pool_delivered(self):
        network = FakeNetwork()
        network.parsed["S"] = creation_tx(random_key(), random_key(), random_key(), WSOL_MINT)
        delivered = []

        async def on_pool(event):
            delivered.append(event)

        asyncio.run(self._listener(network, on_pool).process_signature("S"))
        assert len(delivered) == 1
        assert delivered[0].signature == "S"

    def test_log_filter_and_dedupe(self):
        network = FakeNetwork()

        async def run():
            listener = self._listener(network)
            first = listener.handle_message(logs_frame("S1", ["Program log: Instruction: CreatePool"]))
            again = listener.handle_message(logs_frame("S1", ["Program log: Instruction: CreatePool"]))
            swap = listener.handle_message(logs_frame("S2", ["Program log: Instruction: Buy"]))
            failed = listener.handle_message(logs_frame("S3", ["create_pool"], err={"InstructionError": []}))
            await first
            return first, again, swap, failed

        first, again, swap, failed = asyncio.run(run())
        assert first is not None
        assert again is None
        assert swap is None
        assert failed is None

    def test_seen_signatures_are_bounded(self):
        network = FakeNetwork()
        logs = ["Program log: Instruction: CreatePool"]

        async def run():
            listener = self._listener(network)
            listener.seen_limit = 2
            tasks = [listener.handle_message(logs_frame(sig, logs)) for sig in ("S1", "S2", "S3")]
            recent = listener.handle_message(logs_frame("S3", logs))
            evicted = listener.handle_message(logs_frame("S1", logs))
            await asyncio.gather(*tasks, evicted, return_exceptions=True)
            return listener, recent, evicted

        listener, recent, evicted = asyncio.run(run())
        assert recent is None
        assert evicted is not None
        assert len(listener._seen) == 2


class TestTokenBalanceDelta:
    """jsonParsed pre/post token balances"""

    def _entry(self, index, owner, mint, amount):
        return {"accountIndex": index, "owner": owner, "mint": mint, "uiTokenAmount": {"amount": str(amount)}}

    def test_sums_wallet_accounts(self):
        tx = {"meta": {
            "preTokenBalances": [self._entry(1, "me", "M", 100), self._entry(4, "pool", "M", 900)],
            "postTokenBalances": [self._entry(1, "me", "M", 250), self._entry(2, "me", "M", 50),
                                  self._entry(4, "pool", "M", 700)],
        }}
        assert token_balance_delta(tx, "me", "M") == 200

    def test_closed_account_counts_as_spent(self):
        tx = {"meta": {
            "preTokenBalances": [self._entry(3, "me", "WSOL", 30)],
            "postTokenBalances": [],
        }}
        assert token_balance_delta(tx, "me", "WSOL") == -30

    def test_other_mint_ignored(self):
        tx = {"meta": {"preTokenBalances": [], "postTokenBalances": [self._entry(1, "me", "X", 5)]}}
        assert token_balance_delta(tx, "me", "M") == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
