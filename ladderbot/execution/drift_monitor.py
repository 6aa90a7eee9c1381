"""
Drift detection: how far the nearest resting order sits from a fresh reference.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ladderbot.core.types import Side


def drift_percent(nearest: float, reference: float) -> float:
    """Absolute percent distance of ``nearest`` from ``reference``."""
    if reference <= 0:
        raise ValueError(f"reference must be > 0, got {reference}")
    return abs((nearest - reference) / reference) * 100


def nearest_price(side: Side, prices: Sequence[float]) -> float:
    """Highest bid or lowest ask."""
    if not prices:
        raise ValueError("no resting prices")
    return max(prices) if side is Side.BID else min(prices)


@dataclass(frozen=True)
class DriftReading:
    side: Side
    nearest: float
    reference: float
    distance_pct: float
    threshold_pct: float

    @property
    def exceeded(self) -> bool:
        return self.distance_pct > self.threshold_pct


class DriftMonitor:
    """Compares one side's nearest order with the reference against a fixed threshold."""

    def __init__(self, threshold_pct: float) -> None:
        self.threshold_pct = threshold_pct

    def measure(self, side: Side, prices: Sequence[float], reference: float) -> DriftReading:
        nearest = nearest_price(side, prices)
        return DriftReading(
            side=side,
            nearest=nearest,
            reference=reference,
            distance_pct=drift_percent(nearest, reference),
            threshold_pct=self.threshold_pct,
        )
