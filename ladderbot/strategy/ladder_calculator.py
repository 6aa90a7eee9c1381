"""
LadderCalculator - pure ladder computation.

Splits a side's notional budget into equal rungs spread through the spread
band at half-step midpoints, so no rung sits exactly on the reference or on
the band edge. No side effects: the same inputs always give the same ladder,
which drift comparisons across ticks rely on.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from ladderbot.core.rounding import Rejected, normalize_ladder
from ladderbot.core.types import MarketConstraints, OrderCandidate, Rung, Side


def rung_offsets(spread_pct: float, count: int) -> List[float]:
    """Fractional distance of each rung from the reference, closest first."""
    step = spread_pct / 100 / count
    return [step * (i + 0.5) for i in range(count)]


def plan(
    reference_price: float,
    side: Side,
    total_notional: float,
    spread_pct: float,
    count: int,
) -> List[Rung]:
    """
    Compute the price/notional ladder for one side.

    Args:
        reference_price: Price the ladder is anchored to
        side: BID ladders step down from the reference, ASK ladders step up
        total_notional: Quote-currency budget split evenly across rungs
        spread_pct: Width of the band in percent (20 means 20%)
        count: Number of rungs

    Returns:
        Rungs ordered from closest-to-reference to farthest
    """
    if count < 1:
        raise ValueError(f"count must be >= 1, got {count}")
    if reference_price <= 0:
        raise ValueError(f"reference_price must be > 0, got {reference_price}")
    if total_notional < 0:
        raise ValueError(f"total_notional must be >= 0, got {total_notional}")
    if spread_pct < 0:
        raise ValueError(f"spread_pct must be >= 0, got {spread_pct}")

    per_rung = total_notional / count
    sign = -1.0 if side is Side.BID else 1.0
    return [
        Rung(price=reference_price * (1 + sign * offset), notional=per_rung)
        for offset in rung_offsets(spread_pct, count)
    ]


@dataclass
class LadderBuildResult:
    """Planned ladder after precision normalization."""
    side: Side
    reference_price: float
    total_notional: float
    rungs: List[Rung]
    candidates: List[OrderCandidate]
    rejected: List[Rejected]

    @property
    def rejected_count(self) -> int:
        return len(self.rejected)


class LadderCalculator:
    """
    Holds the static ladder parameters and market constraints for a run.

    Thread-safety: stateless after construction.
    """

    def __init__(self, spread_pct: float, orders_per_side: int, constraints: MarketConstraints) -> None:
        self.spread_pct = spread_pct
        self.orders_per_side = orders_per_side
        self.constraints = constraints

    def build(self, reference_price: float, side: Side, total_notional: float) -> LadderBuildResult:
        """Plan and normalize one side's ladder."""
        rungs = plan(reference_price, side, total_notional, self.spread_pct, self.orders_per_side)
        candidates, rejected = normalize_ladder(rungs, side, self.constraints)
        return LadderBuildResult(
            side=side,
            reference_price=reference_price,
            total_notional=total_notional,
            rungs=rungs,
            candidates=candidates,
            rejected=rejected,
        )

    def price_range(self, reference_price: float, side: Side) -> Tuple[float, float]:
        """Closest and farthest planned prices (pre-rounding) for a side."""
        rungs = plan(reference_price, side, 0.0, self.spread_pct, self.orders_per_side)
        return rungs[0].price, rungs[-1].price
