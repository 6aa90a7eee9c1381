"""
Tests for SideQuoter - ladder placement and id-scoped cancellation.

Tests cover:
- Sequential placement and confirmation callback
- Rate-limit backoff
- Partial ladders and total failure
- AlreadyGone handling
- Batch cancel and per-id fallback
"""

import time

import pytest

from ladderbot.core.errors import BelowMinimum, CancelError, InsufficientBalance, LadderFailed, RateLimited
from ladderbot.core.types import OrderCandidate, Side
from ladderbot.execution.side_quoter import SideQuoter, SideQuoterConfig

from conftest import MockExchange


def _candidates(n, side=Side.ASK, start=100.0):
    return [
        OrderCandidate(side=side, price=start + i, base_amount=0.1, quote_value=(start + i) * 0.1, index=i)
        for i in range(n)
    ]


def _quoter(exchange, **cfg):
    params = {"order_delay_ms": 0, "rate_limit_backoff_sec": 0.0}
    params.update(cfg)
    return SideQuoter(exchange, "ORBD/USDT", SideQuoterConfig(**params))


class TestQuote:

    @pytest.mark.asyncio
    async def test_places_all_in_order(self, exchange):
        seen = []
        quoter = _quoter(exchange)
        quoter.on_placed = seen.append

        placed = await quoter.quote(_candidates(3), Side.ASK)

        assert [o.price for o in placed] == [100.0, 101.0, 102.0]
        assert [o.id for o in placed] == [o.id for o in exchange.placed]
        assert [o.id for o in seen] == [o.id for o in placed]
        assert all(o.side is Side.ASK for o in exchange.placed)

    @pytest.mark.asyncio
    async def test_rate_limit_backs_off_and_continues(self, exchange):
        exchange.place_errors = [RateLimited("429"), None, None]
        quoter = _quoter(exchange, rate_limit_backoff_sec=0.05)

        t0 = time.monotonic()
        placed = await quoter.quote(_candidates(3), Side.ASK)
        elapsed = time.monotonic() - t0

        assert [o.price for o in placed] == [101.0, 102.0]
        assert elapsed >= 0.045

    @pytest.mark.asyncio
    async def test_partial_ladder_returns_confirmed_only(self, exchange):
        exchange.place_errors = [None, BelowMinimum("too small"), InsufficientBalance("broke"), None]
        placed = await _quoter(exchange).quote(_candidates(4), Side.ASK)

        assert [o.price for o in placed] == [100.0, 103.0]

    @pytest.mark.asyncio
    async def test_all_rungs_failing_raises(self, exchange):
        exchange.place_errors = [BelowMinimum("x"), BelowMinimum("y")]
        with pytest.raises(LadderFailed):
            await _quoter(exchange).quote(_candidates(2), Side.BID)
        assert exchange.placed == []

    @pytest.mark.asyncio
    async def test_empty_ladder_raises(self, exchange):
        with pytest.raises(LadderFailed):
            await _quoter(exchange).quote([], Side.ASK)


class TestCancelAll:

    @pytest.mark.asyncio
    async def test_already_gone_counts_as_success(self, exchange):
        placed = await _quoter(exchange).quote(_candidates(5), Side.ASK)
        ids = [o.id for o in placed]
        for order_id in ids[:3]:
            exchange.fill(order_id)

        result = await _quoter(exchange).cancel_all(ids)

        assert result.success
        assert sorted(result.already_gone) == sorted(ids[:3])
        assert sorted(result.cancelled) == sorted(ids[3:])
        assert exchange.open == {}

    @pytest.mark.asyncio
    async def test_failed_cancel_reported(self, exchange):
        placed = await _quoter(exchange).quote(_candidates(2), Side.ASK)
        exchange.cancel_errors[placed[1].id] = CancelError("exchange down")

        result = await _quoter(exchange).cancel_all([o.id for o in placed])

        assert not result.success
        assert result.failed == [placed[1].id]
        assert result.cancelled == [placed[0].id]

    @pytest.mark.asyncio
    async def test_batch_cancel_preferred(self):
        exchange = MockExchange(batch_cancel=True)
        placed = await _quoter(exchange).quote(_candidates(3), Side.ASK)

        result = await _quoter(exchange).cancel_all([o.id for o in placed])

        assert result.batched
        assert len(exchange.batch_calls) == 1
        assert exchange.cancel_calls == []
        assert exchange.open == {}

    @pytest.mark.asyncio
    async def test_batch_failure_falls_back_per_id(self):
        exchange = MockExchange(batch_cancel=True)
        exchange.batch_error = CancelError("batch rejected")
        placed = await _quoter(exchange).quote(_candidates(3), Side.ASK)

        result = await _quoter(exchange).cancel_all([o.id for o in placed])

        assert not result.batched
        assert result.success
        assert len(exchange.cancel_calls) == 3

    @pytest.mark.asyncio
    async def test_empty_and_duplicate_ids(self, exchange):
        assert (await _quoter(exchange).cancel_all([])).success

        placed = await _quoter(exchange).quote(_candidates(1), Side.ASK)
        result = await _quoter(exchange).cancel_all([placed[0].id, placed[0].id])
        assert exchange.cancel_calls == [placed[0].id]
        assert result.cancelled == [placed[0].id]
