"""
Tests for ReconciliationLoop - the polling state machine.

Each test drives ticks by hand (start(run_timer=False) then tick()) against
the in-memory MockExchange from conftest.

Tests cover:
- Initial placement and tracking
- Fill detection and ladder refresh (mono and both-side)
- Drift threshold
- Degraded ladders and adopted orders
- Cancel races and draining
- Tick reentrancy guard
- Error containment (NoLiquidity, LadderFailed, InsufficientBalance)
- Shutdown cancellation and run_reconciliation
"""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from ladderbot.core.errors import BelowMinimum, CancelError, NoLiquidity
from ladderbot.core.json_utils import loads
from ladderbot.core.types import PriceReference, QuoteMode, Side
from ladderbot.orchestrator.quoting_state import SideState
from ladderbot.orchestrator.reconciliation_loop import ReconciliationLoop, run_reconciliation

from conftest import MockExchange, build_config


async def _started(exchange, **overrides):
    loop = ReconciliationLoop(build_config(**overrides), exchange)
    await loop.start(run_timer=False)
    return loop


class TestPlacement:

    @pytest.mark.asyncio
    async def test_initial_tick_places_ladder(self, exchange):
        loop = await _started(exchange)
        obs = await loop.tick()

        assert obs.action == "place"
        assert obs.error is None
        assert [o.price for o in exchange.placed] == [102.5, 107.5]
        assert [o.amount for o in exchange.placed] == [0.0488, 0.0465]
        assert obs.state is SideState.QUOTED
        assert obs.tracked_counts == {"ask": 2}

    @pytest.mark.asyncio
    async def test_tracked_ids_match_exchange(self, exchange):
        loop = await _started(exchange)
        await loop.tick()

        assert loop.state.book(Side.ASK).active_ids == set(exchange.open)
        assert loop.state.book(Side.ASK).expected_count == 2

    @pytest.mark.asyncio
    async def test_side_quoted_log_reports_price_band(self, exchange, caplog):
        loop = await _started(exchange)
        with caplog.at_level(logging.INFO, logger="ladderbot"):
            await loop.tick()

        events = [loads(r.getMessage()) for r in caplog.records if r.getMessage().startswith("{")]
        quoted = [e for e in events if e["event"] == "side_quoted"]
        assert len(quoted) == 1
        assert quoted[0]["band"] == [pytest.approx(102.5), pytest.approx(107.5)]

    @pytest.mark.asyncio
    async def test_quiet_tick_holds(self, exchange):
        loop = await _started(exchange)
        await loop.tick()
        obs = await loop.tick()

        assert obs.action == "hold"
        assert len(exchange.placed) == 2
        assert exchange.cancel_calls == []

    @pytest.mark.asyncio
    async def test_start_without_liquidity_raises(self):
        exchange = MockExchange(bid=None, ask=None, last=None)
        loop = ReconciliationLoop(build_config(), exchange)
        with pytest.raises(NoLiquidity):
            await loop.start(run_timer=False)


class TestFills:

    @pytest.mark.asyncio
    async def test_single_fill_rebuilds_side(self, exchange):
        loop = await _started(exchange, orders_per_side=20)
        await loop.tick()
        assert len(exchange.placed) == 20

        exchange.fill(exchange.placed[0].id)
        obs = await loop.tick()

        assert obs.action == "fill"
        assert len(exchange.cancel_calls) == 19
        assert len(exchange.placed) == 40
        assert len(exchange.open) == 20
        assert loop.state.book(Side.ASK).active_ids == set(exchange.open)

    @pytest.mark.asyncio
    async def test_both_mode_fill_rebuilds_both_sides(self, exchange):
        loop = await _started(exchange, mode=QuoteMode.BOTH, price_reference=PriceReference.BEST)
        await loop.tick()

        bids = [o for o in exchange.placed if o.side is Side.BID]
        asks = [o for o in exchange.placed if o.side is Side.ASK]
        assert len(bids) == 2 and len(asks) == 2
        assert all(o.price < 99.0 for o in bids)
        assert all(o.price > 100.0 for o in asks)

        exchange.fill(bids[0].id)
        obs = await loop.tick()

        assert obs.action == "fill"
        assert len(exchange.cancel_calls) == 3
        assert len(exchange.placed) == 8
        assert obs.tracked_counts == {"bid": 2, "ask": 2}

    @pytest.mark.asyncio
    async def test_fill_alert_sent(self, exchange):
        alerts = AsyncMock()
        loop = ReconciliationLoop(build_config(), exchange, alerts=alerts)
        await loop.start(run_timer=False)
        await loop.tick()

        filled_id = exchange.placed[0].id
        exchange.fill(filled_id)
        await loop.tick()

        alerts.alert_fill.assert_awaited_once_with("ORBD/USDT", {"ask": [filled_id]})


class TestDrift:

    @pytest.mark.asyncio
    async def test_drift_within_threshold_holds(self, exchange):
        loop = await _started(exchange)
        await loop.tick()

        exchange.set_quote(bid=89.0, ask=89.13, last=89.1)
        obs = await loop.tick()

        assert obs.action == "hold"
        assert obs.drift_percent["ask"] == pytest.approx(15.0, abs=0.01)
        assert len(exchange.placed) == 2

    @pytest.mark.asyncio
    async def test_drift_beyond_threshold_refreshes(self, exchange):
        loop = await _started(exchange)
        await loop.tick()

        exchange.set_quote(bid=81.0, ask=82.0, last=81.5)
        obs = await loop.tick()

        assert obs.action == "drift"
        assert len(exchange.cancel_calls) == 2
        assert [o.price for o in exchange.placed[2:]] == [
            pytest.approx(84.05, abs=0.011),
            pytest.approx(88.15, abs=0.011),
        ]
        assert obs.state is SideState.QUOTED


class TestDegraded:

    @pytest.mark.asyncio
    async def test_adopted_short_ladder_is_rebuilt(self, exchange):
        seeded = exchange.seed(Side.ASK, 102.5, 0.0488)
        loop = await _started(exchange)
        assert loop.state.book(Side.ASK).active_ids == {seeded}

        obs = await loop.tick()

        assert obs.action == "degraded"
        assert exchange.cancel_calls == [seeded]
        assert len(exchange.placed) == 2
        assert seeded not in exchange.open

    @pytest.mark.asyncio
    async def test_lone_empty_side_is_rebuilt(self, exchange):
        exchange.seed(Side.ASK, 102.5, 0.0488)
        exchange.seed(Side.ASK, 107.5, 0.0465)
        loop = await _started(exchange, mode=QuoteMode.BOTH, price_reference=PriceReference.BEST)

        obs = await loop.tick()

        assert obs.action == "degraded"
        assert exchange.cancel_calls == []
        assert [o.side for o in exchange.placed] == [Side.BID, Side.BID]
        assert obs.tracked_counts == {"bid": 2, "ask": 2}


class TestDraining:

    @pytest.mark.asyncio
    async def test_race_drains_before_replacing(self, exchange):
        loop = await _started(exchange)
        await loop.tick()
        first, second = [o.id for o in exchange.placed]

        exchange.sticky_ids.add(second)
        exchange.fill(first)
        obs = await loop.tick()

        assert obs.action == "fill"
        assert obs.state is SideState.DRAINING
        assert loop.state.book(Side.ASK).draining_ids == {second}
        assert len(exchange.placed) == 2

        obs = await loop.tick()
        assert obs.action == "drain"
        assert len(exchange.placed) == 2

        exchange.sticky_ids.clear()
        obs = await loop.tick()
        assert obs.action == "drain"
        assert second not in exchange.open

        obs = await loop.tick()
        assert obs.action == "place"
        assert len(exchange.placed) == 4
        assert obs.state is SideState.QUOTED

    @pytest.mark.asyncio
    async def test_drain_abandoned_after_max_attempts(self, exchange):
        alerts = AsyncMock()
        loop = ReconciliationLoop(build_config(max_drain_attempts=2), exchange, alerts=alerts)
        await loop.start(run_timer=False)
        await loop.tick()
        first, second = [o.id for o in exchange.placed]

        exchange.sticky_ids.add(second)
        exchange.fill(first)
        actions = [(await loop.tick()).action for _ in range(4)]

        assert actions == ["fill", "drain", "drain", "place"]
        assert loop.state.book(Side.ASK).draining_ids == set()
        alerts.alert_drain_abandoned.assert_awaited_once_with("ORBD/USDT", "ask", [second])

    @pytest.mark.asyncio
    async def test_unknown_order_on_side_blocks_new_ladder(self, exchange):
        loop = await _started(exchange)
        await loop.tick()
        first, second = [o.id for o in exchange.placed]

        stray = exchange.seed(Side.ASK, 103.0, 0.05)
        exchange.fill(first)
        obs = await loop.tick()

        assert obs.action == "fill"
        assert obs.state is SideState.DRAINING
        assert second not in exchange.open
        assert loop.state.book(Side.ASK).draining_ids == {stray}
        assert len(exchange.placed) == 2

        assert (await loop.tick()).action == "drain"
        assert stray not in exchange.open
        assert len(exchange.placed) == 2

        obs = await loop.tick()
        assert obs.action == "place"
        assert len(exchange.placed) == 4
        assert set(exchange.open) == loop.state.book(Side.ASK).active_ids

    @pytest.mark.asyncio
    async def test_other_side_orders_do_not_block_refresh(self, exchange):
        loop = await _started(exchange)
        await loop.tick()

        bid = exchange.seed(Side.BID, 95.0, 0.05)
        exchange.fill(exchange.placed[0].id)
        obs = await loop.tick()

        assert obs.action == "fill"
        assert obs.state is SideState.QUOTED
        assert len(exchange.placed) == 4
        assert bid in exchange.open

    @pytest.mark.asyncio
    async def test_interrupted_placement_drains_stray_orders(self, exchange):
        loop = await _started(exchange)
        exchange.place_errors = [None, RuntimeError("connection reset")]

        obs = await loop.tick()
        stray = exchange.placed[0].id

        assert obs.error.startswith("RuntimeError")
        assert loop.state.book(Side.ASK).draining_ids == {stray}
        assert loop.state.book(Side.ASK).orders == {}

        assert (await loop.tick()).action == "drain"
        assert stray not in exchange.open
        assert (await loop.tick()).action == "place"


class TestTickGuard:

    @pytest.mark.asyncio
    async def test_tick_skipped_while_busy(self, exchange):
        loop = await _started(exchange)

        async with loop.state.lock:
            assert await loop.tick() is None

        assert loop.state.skipped_ticks == 1
        assert loop.state.tick_count == 0
        assert exchange.placed == []

    @pytest.mark.asyncio
    async def test_timer_skips_while_slow_tick_in_flight(self, exchange):
        gate = asyncio.Event()
        gate.set()
        fetch = exchange.get_open_orders

        async def slow_fetch(symbol):
            await gate.wait()
            return await fetch(symbol)

        exchange.get_open_orders = slow_fetch
        loop = ReconciliationLoop(build_config(tick_interval_sec=0.01), exchange)
        await loop.start()
        gate.clear()
        try:
            await asyncio.sleep(0.1)

            assert loop.state.tick_count == 1
            assert loop.state.skipped_ticks > 0
            assert len(loop._tick_tasks) == 1
            assert exchange.placed == []

            gate.set()
            await asyncio.sleep(0.05)

            assert loop.state.tick_count > 1
            assert len(exchange.placed) == 2
        finally:
            await loop.stop()

    @pytest.mark.asyncio
    async def test_observer_called_every_tick(self, exchange):
        seen = []
        loop = ReconciliationLoop(build_config(), exchange, observer=seen.append)
        await loop.start(run_timer=False)
        await loop.tick()
        await loop.tick()

        assert [o.tick for o in seen] == [1, 2]
        assert [o.action for o in seen] == ["place", "hold"]

    @pytest.mark.asyncio
    async def test_observer_error_does_not_break_tick(self, exchange):
        def broken(obs):
            raise RuntimeError("observer down")

        loop = ReconciliationLoop(build_config(), exchange, observer=broken)
        await loop.start(run_timer=False)

        obs = await loop.tick()
        assert obs.action == "place"


class TestErrors:

    @pytest.mark.asyncio
    async def test_no_liquidity_tick_recovers(self, exchange):
        loop = await _started(exchange)

        exchange.set_quote()
        obs = await loop.tick()
        assert obs.error.startswith("NoLiquidity")
        assert exchange.placed == []

        exchange.set_quote(bid=99.0, ask=100.0, last=99.5)
        obs = await loop.tick()
        assert obs.error is None
        assert len(exchange.placed) == 2

    @pytest.mark.asyncio
    async def test_ladder_failure_alerts(self, exchange):
        alerts = AsyncMock()
        loop = ReconciliationLoop(build_config(), exchange, alerts=alerts)
        await loop.start(run_timer=False)
        exchange.place_errors = [BelowMinimum("x"), BelowMinimum("y")]

        obs = await loop.tick()

        assert obs.error.startswith("LadderFailed")
        assert obs.state is SideState.EMPTY
        alerts.alert_ladder_failed.assert_awaited_once()
        assert alerts.alert_ladder_failed.await_args.args[1] == "sell"

    @pytest.mark.asyncio
    async def test_budget_capped_to_free_balance(self):
        exchange = MockExchange(balances={"ORBD": 0.05, "USDT": 0.0})
        loop = await _started(exchange)

        await loop.tick()

        notional = sum(o.price * o.amount for o in exchange.placed)
        assert len(exchange.placed) == 2
        assert notional == pytest.approx(5.0, abs=0.05)

    @pytest.mark.asyncio
    async def test_zero_balance_fails_tick(self):
        exchange = MockExchange(balances={"ORBD": 0.0, "USDT": 100.0})
        loop = await _started(exchange)

        obs = await loop.tick()

        assert obs.error.startswith("InsufficientBalance")
        assert exchange.placed == []

    @pytest.mark.asyncio
    async def test_one_failed_side_does_not_block_other(self):
        exchange = MockExchange(balances={"ORBD": 1000.0, "USDT": 0.0})
        loop = await _started(exchange, mode=QuoteMode.BOTH, price_reference=PriceReference.MID)

        obs = await loop.tick()

        assert obs.error.startswith("InsufficientBalance")
        assert [o.side for o in exchange.placed] == [Side.ASK, Side.ASK]


class TestShutdown:

    @pytest.mark.asyncio
    async def test_stop_cancels_everything(self, exchange):
        loop = await _started(exchange)
        await loop.tick()
        ids = sorted(exchange.open)

        result = await loop.stop()

        assert sorted(result.cancelled) == ids
        assert exchange.open == {}
        assert loop.state.all_order_ids() == set()

    @pytest.mark.asyncio
    async def test_stop_keeps_failed_ids_draining(self, exchange):
        loop = await _started(exchange)
        await loop.tick()
        stuck = exchange.placed[1].id
        exchange.cancel_errors[stuck] = CancelError("timeout")

        result = await loop.stop()

        assert result.failed == [stuck]
        assert loop.state.book(Side.ASK).draining_ids == {stuck}

    @pytest.mark.asyncio
    async def test_run_reconciliation_until_cancelled(self, exchange):
        seen = []
        cfg = build_config(tick_interval_sec=0.01)
        task = asyncio.create_task(run_reconciliation(cfg, gateway=exchange, observer=seen.append))

        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert seen
        assert seen[0].action == "place"
        assert exchange.open == {}
        assert not exchange.closed
