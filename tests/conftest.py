"""
Pytest configuration and fixtures.
Adds the repo root to the Python path so tests can import ladderbot, and
provides an in-memory exchange that honours the gateway contract.
"""

import sys
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from ladderbot.config.config import QuoteConfig  # noqa: E402
from ladderbot.core.errors import AlreadyGone, BatchCancelUnsupported  # noqa: E402
from ladderbot.core.types import (  # noqa: E402
    MarketConstraints,
    OrderSnapshot,
    PriceReference,
    QuoteMode,
    ReferenceQuote,
    Side,
)


class MockExchange:
    """
    In-memory exchange implementing the ExchangeGateway contract.

    Scripting hooks:
        place_errors: exceptions (or None for success) consumed per placement call
        cancel_errors: id -> exception raised by cancel_order for that id
        sticky_ids: ids whose cancel "succeeds" but which keep resting
        batch_error: exception raised by cancel_orders
    """

    def __init__(
        self,
        bid: Optional[float] = 99.0,
        ask: Optional[float] = 100.0,
        last: Optional[float] = 99.5,
        constraints: Optional[MarketConstraints] = None,
        balances: Optional[Dict[str, float]] = None,
        batch_cancel: bool = False,
    ) -> None:
        self.quote = ReferenceQuote(bid=bid, ask=ask, last=last)
        self.constraints = constraints or MarketConstraints(
            price_tick=0.01, amount_tick=0.0001, min_price=0.01,
        )
        self.balances = balances if balances is not None else {"ORBD": 1_000_000.0, "USDT": 1_000_000.0}
        self.supports_batch_cancel = batch_cancel
        self.open: Dict[str, OrderSnapshot] = {}
        self.placed: List[OrderSnapshot] = []
        self.cancel_calls: List[str] = []
        self.batch_calls: List[List[str]] = []
        self.place_errors: List[Optional[Exception]] = []
        self.cancel_errors: Dict[str, Exception] = {}
        self.sticky_ids: Set[str] = set()
        self.batch_error: Optional[Exception] = None
        self.open_orders_calls = 0
        self.closed = False
        self._seq = 0

    def set_quote(self, bid=None, ask=None, last=None) -> None:
        self.quote = ReferenceQuote(bid=bid, ask=ask, last=last)

    def seed(self, side: Side, price: float, amount: float) -> str:
        """Put an order on the book as if placed by an earlier run."""
        self._seq += 1
        order_id = f"seed{self._seq}"
        self.open[order_id] = OrderSnapshot(id=order_id, side=side, price=price, amount=amount)
        return order_id

    def fill(self, order_id: str) -> None:
        del self.open[order_id]

    def resting(self, side: Side) -> List[OrderSnapshot]:
        return [o for o in self.open.values() if o.side is side]

    async def get_reference_quote(self, symbol: str) -> ReferenceQuote:
        return self.quote

    async def get_market_constraints(self, symbol: str) -> MarketConstraints:
        return self.constraints

    async def get_available_balance(self, currency: str) -> float:
        return self.balances.get(currency, 0.0)

    async def get_open_orders(self, symbol: str) -> List[OrderSnapshot]:
        self.open_orders_calls += 1
        return list(self.open.values())

    async def place_limit_order(self, symbol: str, side: Side, amount: float, price: float) -> str:
        if self.place_errors:
            err = self.place_errors.pop(0)
            if err is not None:
                raise err
        self._seq += 1
        order_id = f"o{self._seq}"
        snap = OrderSnapshot(id=order_id, side=side, price=price, amount=amount)
        self.open[order_id] = snap
        self.placed.append(snap)
        return order_id

    async def cancel_order(self, order_id: str, symbol: str) -> None:
        self.cancel_calls.append(order_id)
        if order_id in self.cancel_errors:
            raise self.cancel_errors[order_id]
        if order_id not in self.open:
            raise AlreadyGone(order_id)
        if order_id not in self.sticky_ids:
            del self.open[order_id]

    async def cancel_orders(self, order_ids, symbol: str) -> None:
        if not self.supports_batch_cancel:
            raise BatchCancelUnsupported("no batch cancel")
        self.batch_calls.append(list(order_ids))
        if self.batch_error is not None:
            raise self.batch_error
        for order_id in order_ids:
            if order_id in self.open and order_id not in self.sticky_ids:
                del self.open[order_id]

    async def close(self) -> None:
        self.closed = True


def build_config(**overrides) -> QuoteConfig:
    """QuoteConfig with no pacing delays, mono ask 10 notional over 2 rungs."""
    params = dict(
        exchange="mock",
        symbol="ORBD/USDT",
        mode=QuoteMode.MONO,
        side=Side.ASK,
        bid_total_notional=10.0,
        ask_total_notional=10.0,
        spread_pct=10.0,
        orders_per_side=2,
        price_reference=PriceReference.FIRST_ASK,
        drift_threshold_pct=20.0,
        tick_interval_sec=1.0,
        order_delay_ms=0,
        rate_limit_backoff_sec=0.0,
        side_pause_sec=0.0,
        cancel_settle_sec=0.0,
        heartbeat_sec=0.0,
        alert_enabled=False,
    )
    params.update(overrides)
    return QuoteConfig(**params)


@pytest.fixture
def exchange():
    return MockExchange()


@pytest.fixture
def make_config():
    return build_config
