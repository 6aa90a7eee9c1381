"""
Strategy package - reference price and ladder planning.

Pure computation only; nothing here talks to the exchange except the
resolver's quote fetch.
"""

from ladderbot.strategy.ladder_calculator import (
    LadderBuildResult,
    LadderCalculator,
    plan,
    rung_offsets,
)
from ladderbot.strategy.price_reference import PriceReferenceResolver, resolve

__all__ = [
    "LadderBuildResult",
    "LadderCalculator",
    "plan",
    "rung_offsets",
    "PriceReferenceResolver",
    "resolve",
]
