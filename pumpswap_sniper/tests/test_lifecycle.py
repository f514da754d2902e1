"""
Unit tests for the position lifecycle.

Tests core functionality:
1. Take-profit / stop-loss thresholds
2. Exactly one SELL per position under concurrent triggers
3. Momentum exits and their grace period
4. Persistence and P&L summary
"""

import pytest
import asyncio
import json
import time
import sys
import os

# Add repository root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from pumpswap_sniper.config import ExitRules
from pumpswap_sniper.core.lifecycle import (
    PositionLifecycleManager,
    evaluate_exit,
    realized_pnl,
)
from pumpswap_sniper.core.market_cache import MarketCache
from pumpswap_sniper.core.models import (
    BuyerObservation,
    ExitReason,
    PoolReference,
    Position,
    PositionStatus,
    PriceUpdate,
    TradeAction,
    TradeDecision,
    VerifiedFill,
)
from pumpswap_sniper.core.position_store import PositionStore
from pumpswap_sniper.core.scheduler import AdaptiveInterval
from pumpswap_sniper.exceptions import ConfigurationError, SubmissionFailure
from pumpswap_sniper.tests.fakes import FakeExecutor, FakeNotifier

POOL = PoolReference(pool="Pool1111", base_mint="Mint1111", quote_mint="Quote111", creator="Creator1")


def make_position(position_id="p1", entry_price=1.0, tp=200.0, sl=50.0, opened_at=None, **overrides):
    values = dict(
        id=position_id, pool=POOL, entry_signature="sig0", entry_price=entry_price,
        entry_amount=1_000, entry_quote_amount=1_000_000_000,
        take_profit_pct=tp, stop_loss_pct=sl,
        opened_at=time.time() if opened_at is None else opened_at,
    )
    values.update(overrides)
    return Position(**values)


def make_manager(tmp_path, executor=None, rules=None):
    store = PositionStore(str(tmp_path / "positions.json"))
    notifier = FakeNotifier()
    manager = PositionLifecycleManager(store, executor or FakeExecutor(), notifier, MarketCache(),
                                       rules or ExitRules())
    return manager, store, notifier


class TestExitThresholds:
    """evaluate_exit"""

    def test_take_profit_at_threshold(self):
        assert evaluate_exit(make_position(), 3.0) == ExitReason.TAKE_PROFIT

    def test_no_exit_just_below_take_profit(self):
        assert evaluate_exit(make_position(), 2.99) is None

    def test_stop_loss_at_threshold(self):
        assert evaluate_exit(make_position(), 0.5) == ExitReason.STOP_LOSS

    def test_no_exit_just_above_stop_loss(self):
        assert evaluate_exit(make_position(), 0.51) is None

    def test_realized_pnl_in_quote_units(self):
        # +200% on 1 SOL committed
        assert realized_pnl(make_position(), 3.0) == pytest.approx(2.0)
        assert realized_pnl(make_position(), 0.5) == pytest.approx(-0.5)


class TestOpenPosition:
    """open_position"""

    def test_creates_open_position(self, tmp_path):
        async def run():
            manager, store, notifier = make_manager(tmp_path)
            decision = TradeDecision(action=TradeAction.BUY, amount_in=10, take_profit_pct=150, stop_loss_pct=25)
            fill = VerifiedFill(signature="sigA", base_received=400, quote_spent=100)
            position = await manager.open_position(POOL, fill, decision)
            return position, store, notifier

        position, store, notifier = asyncio.run(run())
        assert position.status == PositionStatus.OPEN
        assert position.entry_price == pytest.approx(0.25)
        assert position.entry_amount == 400
        assert position.take_profit_pct == 150
        assert store.get(position.id) is position
        assert notifier.opened == [position]

    def test_ids_unique_for_same_pool(self, tmp_path):
        async def run():
            manager, _, _ = make_manager(tmp_path)
            decision = TradeDecision(action=TradeAction.BUY, amount_in=10, take_profit_pct=150, stop_loss_pct=25)
            fill = VerifiedFill(signature="sigA", base_received=400, quote_spent=100)
            a = await manager.open_position(POOL, fill, decision)
            b = await manager.open_position(POOL, fill, decision)
            return a, b

        a, b = asyncio.run(run())
        assert a.id != b.id


class TestSingleExit:
    """At most one SELL per position"""

    def test_concurrent_triggers_sell_once(self, tmp_path):
        async def run():
            executor = FakeExecutor()
            executor.gate.clear()
            manager, store, notifier = make_manager(tmp_path, executor)
            await store.save(make_position())

            update = PriceUpdate(asset_id=POOL.base_mint, price=3.0, timestamp=time.time())
            first = manager.on_price_update(update)
            second = manager.on_price_update(update)
            manual = manager.request_exit("p1", ExitReason.MANUAL, 3.0)
            assert len(first) == 1
            assert second == []
            assert manual is None
            assert manager.exits_in_flight == 1

            executor.gate.set()
            await asyncio.gather(*first)
            return executor, store, notifier, manager

        executor, store, notifier, manager = asyncio.run(run())
        assert len(executor.calls) == 1
        position = store.get("p1")
        assert position.status == PositionStatus.CLOSED
        assert position.exit_reason == ExitReason.TAKE_PROFIT
        assert position.close_signature == "sell1"
        assert position.realized_pnl == pytest.approx(2.0)
        assert notifier.closed == [position]
        assert manager.exits_in_flight == 0

    def test_closed_position_ignores_later_triggers(self, tmp_path):
        async def run():
            executor = FakeExecutor()
            manager, store, _ = make_manager(tmp_path, executor)
            await store.save(make_position())
            await manager.request_exit("p1", ExitReason.MANUAL, 1.0)
            late = manager.on_price_update(PriceUpdate(asset_id=POOL.base_mint, price=0.1, timestamp=time.time()))
            return executor, late

        executor, late = asyncio.run(run())
        assert late == []
        assert len(executor.calls) == 1

    def test_failed_sell_stays_open_and_can_retry(self, tmp_path):
        async def run():
            executor = FakeExecutor(error=SubmissionFailure("rpc down"))
            manager, store, notifier = make_manager(tmp_path, executor, ExitRules(exit_retry_cooldown_sec=0))
            await store.save(make_position())
            result = await manager.request_exit("p1", ExitReason.STOP_LOSS, 0.4)
            retry = manager.request_exit("p1", ExitReason.STOP_LOSS, 0.4)
            executor.error = None
            await retry
            return result, store, notifier, executor

        result, store, notifier, executor = asyncio.run(run())
        assert result is None
        assert len(executor.calls) == 2
        assert store.get("p1").status == PositionStatus.CLOSED
        assert any("SELL failed" in m for m in notifier.messages)

    def test_failed_sell_cools_down_before_next_trigger(self, tmp_path):
        async def run():
            executor = FakeExecutor(error=SubmissionFailure("rpc down"))
            manager, store, notifier = make_manager(tmp_path, executor, ExitRules(exit_retry_cooldown_sec=60))
            await store.save(make_position())
            await manager.request_exit("p1", ExitReason.STOP_LOSS, 0.4)
            ticks = [
                manager.on_price_update(PriceUpdate(asset_id=POOL.base_mint, price=0.3, timestamp=time.time()))
                for _ in range(5)
            ]
            return ticks, executor, notifier

        ticks, executor, notifier = asyncio.run(run())
        assert all(t == [] for t in ticks)
        assert len(executor.calls) == 1
        assert sum("SELL failed" in m for m in notifier.messages) == 1

    def test_trigger_accepted_after_cooldown(self, tmp_path):
        async def run():
            executor = FakeExecutor(error=SubmissionFailure("rpc down"))
            manager, store, _ = make_manager(tmp_path, executor, ExitRules(exit_retry_cooldown_sec=0.05))
            await store.save(make_position())
            await manager.request_exit("p1", ExitReason.STOP_LOSS, 0.4)
            executor.error = None
            await asyncio.sleep(0.1)
            await asyncio.gather(*manager.on_price_update(
                PriceUpdate(asset_id=POOL.base_mint, price=0.3, timestamp=time.time())))
            return store, executor

        store, executor = asyncio.run(run())
        assert len(executor.calls) == 2
        assert store.get("p1").status == PositionStatus.CLOSED

    def test_manual_exit_ignores_cooldown(self, tmp_path):
        async def run():
            executor = FakeExecutor(error=SubmissionFailure("rpc down"))
            manager, store, _ = make_manager(tmp_path, executor, ExitRules(exit_retry_cooldown_sec=60))
            await store.save(make_position())
            await manager.request_exit("p1", ExitReason.STOP_LOSS, 0.4)
            executor.error = None
            task = manager.request_exit("p1", ExitReason.MANUAL, 0.4)
            await task
            return task, store

        task, store = asyncio.run(run())
        assert task is not None
        assert store.get("p1").exit_reason == ExitReason.MANUAL

    def test_close_hook_receives_closed_position(self, tmp_path):
        closed = []

        async def hook(position):
            closed.append((position.id, position.status))

        async def run():
            manager, store, _ = make_manager(tmp_path)
            manager.on_closed = hook
            await store.save(make_position())
            await manager.request_exit("p1", ExitReason.MANUAL, 1.0)

        asyncio.run(run())
        assert closed == [("p1", PositionStatus.CLOSED)]

    def test_other_assets_not_evaluated(self, tmp_path):
        async def run():
            manager, store, _ = make_manager(tmp_path)
            await store.save(make_position())
            return manager.on_price_update(PriceUpdate(asset_id="Other", price=100.0, timestamp=time.time()))

        assert asyncio.run(run()) == []


class TestMomentumExit:
    """Buyer momentum trigger"""

    def test_low_buyers_exit_after_window(self, tmp_path):
        async def run():
            manager, store, _ = make_manager(tmp_path)
            now = time.time()
            await store.save(make_position(opened_at=now - 60))
            tasks = manager.on_momentum_sample(POOL.base_mint, buyers=1, now=now)
            await asyncio.gather(*tasks)
            return tasks, store

        tasks, store = asyncio.run(run())
        assert len(tasks) == 1
        assert store.get("p1").exit_reason == ExitReason.MOMENTUM

    def test_young_position_skipped(self, tmp_path):
        async def run():
            manager, store, _ = make_manager(tmp_path)
            now = time.time()
            await store.save(make_position(opened_at=now - 2))
            return manager.on_momentum_sample(POOL.base_mint, buyers=0, now=now)

        assert asyncio.run(run()) == []

    def test_enough_buyers_no_exit(self, tmp_path):
        async def run():
            manager, store, _ = make_manager(tmp_path)
            await store.save(make_position(opened_at=0))
            return manager.on_momentum_sample(POOL.base_mint, buyers=5)

        assert asyncio.run(run()) == []

    def test_disabled(self, tmp_path):
        async def run():
            manager, store, _ = make_manager(tmp_path, rules=ExitRules(momentum_exit_enabled=False))
            await store.save(make_position(opened_at=0))
            return manager.on_momentum_sample(POOL.base_mint, buyers=0)

        assert asyncio.run(run()) == []


class TestShutdown:
    """Graceful wait and forced abandonment"""

    def test_wait_for_exits(self, tmp_path):
        async def run():
            executor = FakeExecutor()
            executor.gate.clear()
            manager, store, _ = make_manager(tmp_path, executor)
            await store.save(make_position())
            manager.request_exit("p1", ExitReason.MANUAL, 1.0)
            asyncio.get_running_loop().call_later(0.01, executor.gate.set)
            await manager.wait_for_exits()
            return store, manager

        store, manager = asyncio.run(run())
        assert store.get("p1").status == PositionStatus.CLOSED
        assert manager.exits_in_flight == 0

    def test_force_marks_abandoned(self, tmp_path):
        async def run():
            executor = FakeExecutor()
            executor.gate.clear()
            manager, store, notifier = make_manager(tmp_path, executor)
            await store.save(make_position())
            await store.save(make_position("p2"))
            task = manager.request_exit("p1", ExitReason.MANUAL, 1.0)
            await asyncio.sleep(0)
            manager.stop_accepting_exits()
            manager.cancel_exits()
            await asyncio.gather(task, return_exceptions=True)
            abandoned = await manager.abandon_open_positions()
            refused = manager.request_exit("p2", ExitReason.MANUAL, 1.0)
            return abandoned, refused, notifier

        abandoned, refused, notifier = asyncio.run(run())
        assert {p.id for p in abandoned} == {"p1", "p2"}
        assert all(p.abandoned_at is not None for p in abandoned)
        assert all(p.status == PositionStatus.OPEN for p in abandoned)
        assert refused is None
        assert any("Forced shutdown" in m for m in notifier.messages)


class TestPositionStore:
    """JSON persistence"""

    def test_reload_round_trip(self, tmp_path):
        path = str(tmp_path / "positions.json")

        async def run():
            store = PositionStore(path)
            await store.save(make_position("a"))
            await store.save(make_position("b", status=PositionStatus.CLOSED, realized_pnl=0.3,
                                           exit_reason=ExitReason.TAKE_PROFIT))

        asyncio.run(run())
        reloaded = PositionStore(path)
        assert [p.id for p in reloaded.list_open()] == ["a"]
        assert reloaded.get("b").exit_reason == ExitReason.TAKE_PROFIT
        assert not os.path.exists(path + ".tmp")

    def test_pnl_summary_counts_closed_only(self, tmp_path):
        async def run():
            store = PositionStore(str(tmp_path / "positions.json"))
            await store.save(make_position("open"))
            await store.save(make_position("win", status=PositionStatus.CLOSED, realized_pnl=0.5))
            await store.save(make_position("loss", status=PositionStatus.CLOSED, realized_pnl=-0.2))
            return store.pnl_summary()

        summary = asyncio.run(run())
        assert summary["total_realized_pnl"] == pytest.approx(0.3)
        assert summary["closed_count"] == 2
        assert summary["open_count"] == 1
        assert summary["wins"] == 1
        assert summary["losses"] == 1

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "positions.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError):
            PositionStore(str(path))

    def test_list_open_by_pool(self, tmp_path):
        async def run():
            store = PositionStore(str(tmp_path / "positions.json"))
            await store.save(make_position("a"))
            other = PoolReference(pool="Pool2222", base_mint="Mint2222", quote_mint="Quote111")
            await store.save(make_position("b", pool=other))
            return store

        store = asyncio.run(run())
        assert [p.id for p in store.list_open("Pool2222")] == ["b"]
        assert json.loads((tmp_path / "positions.json").read_text())[0]["status"] == "OPEN"


class TestMarketCache:
    """Buyer window and adaptive poll interval"""

    def test_distinct_buyers_in_window(self):
        cache = MarketCache()
        for buyer, ts in (("a", 100.0), ("b", 105.0), ("a", 108.0), ("c", 80.0)):
            cache.record_buyer(BuyerObservation(asset_id="M", buyer=buyer, timestamp=ts))
        assert cache.count_recent_buyers("M", 10, now=110.0) == 2

    def test_older_price_ignored(self):
        cache = MarketCache()
        cache.update_price(PriceUpdate(asset_id="M", price=2.0, timestamp=10.0))
        cache.update_price(PriceUpdate(asset_id="M", price=1.0, timestamp=5.0))
        assert cache.get_price("M").price == 2.0

    def test_interval_adapts(self):
        cache = MarketCache()
        interval = AdaptiveInterval(cache, base=1.5, fast=0.5, slow=2.0, volatility_pct=1.0, calm_sec=5.0)
        assert interval.next_interval([], now=0.0) == 1.5

        cache.update_price(PriceUpdate(asset_id="M", price=1.0, timestamp=0.0))
        assert interval.next_interval(["M"], now=0.0) == 1.5

        cache.update_price(PriceUpdate(asset_id="M", price=1.1, timestamp=1.0))
        assert interval.next_interval(["M"], now=1.0) == 0.5

        assert interval.next_interval(["M"], now=10.0) == 2.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
