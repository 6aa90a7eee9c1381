"""
Mutable quoting state, owned by the reconciliation loop.

Single writer: only code running under the loop's tick lock mutates a
SideBook. The quoter reports confirmed orders through the pending set so
that ids placed by an interrupted tick are never lost.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Set

from ladderbot.core.types import OrderSnapshot, PlacedOrder, Side
from ladderbot.execution.drift_monitor import DriftReading


class SideState(Enum):
    EMPTY = "empty"
    QUOTED = "quoted"
    DEGRADED = "degraded"
    DRIFTED = "drifted"
    DRAINING = "draining"


# Worst first; used to combine per-side states into one
_STATE_PRIORITY = (
    SideState.DRAINING,
    SideState.EMPTY,
    SideState.DEGRADED,
    SideState.DRIFTED,
    SideState.QUOTED,
)


@dataclass
class SideBook:
    """
    Tracking for one quoted side.

    Attributes:
        orders: Tracked resting orders by id
        expected_count: Ladder size this side should have resting
        draining_ids: Cancel issued, not yet confirmed gone
        drain_attempts: Re-cancel rounds spent on the current drain
        last_drift: Last drift reading for this side
        last_reference: Reference price of the current ladder
    """
    side: Side
    orders: Dict[str, PlacedOrder] = field(default_factory=dict)
    expected_count: int = 0
    draining_ids: Set[str] = field(default_factory=set)
    drain_attempts: int = 0
    last_drift: Optional[DriftReading] = None
    last_reference: Optional[float] = None

    @property
    def active_ids(self) -> Set[str]:
        return set(self.orders)

    def track(self, placed: Sequence[PlacedOrder], reference: Optional[float] = None) -> None:
        """Replace tracking with a freshly placed ladder."""
        self.orders = {o.id: o for o in placed}
        self.expected_count = len(placed)
        self.last_drift = None
        if reference is not None:
            self.last_reference = reference

    def adopt(self, snapshots: Iterable[OrderSnapshot], expected_count: int) -> int:
        """Take ownership of orders found resting at startup."""
        for snap in snapshots:
            self.orders[snap.id] = PlacedOrder(
                id=snap.id,
                side=snap.side,
                price=snap.price,
                base_amount=snap.amount,
                quote_value=snap.price * snap.amount,
            )
        self.expected_count = expected_count if self.orders else 0
        return len(self.orders)

    def drop(self, order_ids: Iterable[str]) -> None:
        for order_id in order_ids:
            self.orders.pop(order_id, None)

    def clear(self) -> List[str]:
        """Stop tracking everything; returns the ids that were tracked."""
        ids = list(self.orders)
        self.orders.clear()
        self.expected_count = 0
        self.last_drift = None
        return ids

    def start_drain(self, order_ids: Iterable[str]) -> None:
        self.draining_ids.update(order_ids)

    def finish_drain(self) -> None:
        self.draining_ids.clear()
        self.drain_attempts = 0

    def classify(self) -> SideState:
        if self.draining_ids:
            return SideState.DRAINING
        if not self.orders:
            return SideState.EMPTY
        if len(self.orders) < self.expected_count:
            return SideState.DEGRADED
        if self.last_drift is not None and self.last_drift.exceeded:
            return SideState.DRIFTED
        return SideState.QUOTED


class QuotingState:
    """Per-side books plus the tick guard."""

    def __init__(self, sides: Sequence[Side]) -> None:
        self.books: Dict[Side, SideBook] = {side: SideBook(side) for side in sides}
        self.pending: Dict[Side, Set[str]] = {side: set() for side in sides}
        self.lock = asyncio.Lock()
        self.tick_count = 0
        self.skipped_ticks = 0

    @property
    def sides(self) -> List[Side]:
        return list(self.books)

    @property
    def busy(self) -> bool:
        return self.lock.locked()

    def book(self, side: Side) -> SideBook:
        return self.books[side]

    def record_pending(self, order: PlacedOrder) -> None:
        self.pending.setdefault(order.side, set()).add(order.id)

    def take_pending(self, side: Side) -> Set[str]:
        ids = self.pending.get(side, set())
        self.pending[side] = set()
        return ids

    def tracked_counts(self) -> Dict[str, int]:
        return {side.value: len(book.orders) for side, book in self.books.items()}

    def side_states(self) -> Dict[Side, SideState]:
        return {side: book.classify() for side, book in self.books.items()}

    def combined_state(self) -> SideState:
        states = set(self.side_states().values())
        for state in _STATE_PRIORITY:
            if state in states:
                return state
        return SideState.EMPTY

    def all_order_ids(self) -> Set[str]:
        """Every id we may still have resting: tracked, draining, or just placed."""
        ids: Set[str] = set()
        for side, book in self.books.items():
            ids.update(book.orders)
            ids.update(book.draining_ids)
            ids.update(self.pending.get(side, ()))
        return ids
