"""
Desired-state vs observed-state diff for one side.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List

from ladderbot.core.types import OrderSnapshot, Side


@dataclass
class OrderDiff:
    """
    Attributes:
        filled: Tracked ids absent from the snapshot (filled or cancelled externally)
        resting: Snapshot rows for tracked ids still open
        untracked: Open orders on this side that we are not tracking
        missing: Shortfall of resting orders against the expected ladder size
    """
    side: Side
    filled: List[str] = field(default_factory=list)
    resting: List[OrderSnapshot] = field(default_factory=list)
    untracked: List[OrderSnapshot] = field(default_factory=list)
    missing: int = 0

    @property
    def has_fill(self) -> bool:
        return bool(self.filled)

    @property
    def is_degraded(self) -> bool:
        return not self.filled and self.missing > 0

    @property
    def resting_prices(self) -> List[float]:
        return [o.price for o in self.resting]


def diff(
    tracked: Iterable[str],
    observed: Iterable[OrderSnapshot],
    side: Side,
    expected_count: int,
) -> OrderDiff:
    """
    Compare tracked ids for ``side`` against one open-order snapshot.

    Orders on the other side are ignored, so the same snapshot can be
    diffed once per side.
    """
    tracked_ids = set(tracked)
    same_side = [o for o in observed if o.side is side]
    open_ids = {o.id for o in same_side}

    resting = [o for o in same_side if o.id in tracked_ids]
    return OrderDiff(
        side=side,
        filled=sorted(tracked_ids - open_ids),
        resting=resting,
        untracked=[o for o in same_side if o.id not in tracked_ids],
        missing=max(0, expected_count - len(resting)),
    )
