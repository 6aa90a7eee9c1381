"""
Precision normalization aligned with exchange tick sizes.

Rounding is done on the value/tick ratio with Decimal (half-up), never on the
decimal string of the float, so repeated normalization cannot drift.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP, getcontext
from typing import List, Sequence, Tuple, Union

from ladderbot.core.types import MarketConstraints, OrderCandidate, Rung, Side

# Increase precision to avoid intermediate rounding drift
getcontext().prec = 28


@dataclass(frozen=True)
class Rejected:
    """A rung that cannot be placed under the market constraints. Non-fatal."""
    reason: str
    index: int
    price: float
    base_amount: float


NormalizeResult = Union[OrderCandidate, Rejected]


def round_to_tick(value: float, tick: float, rounding: str = ROUND_HALF_UP) -> float:
    """Round value to a multiple of tick (half-up on the ratio by default)."""
    if tick <= 0:
        return value
    d_tick = Decimal(str(tick))
    steps = (Decimal(str(value)) / d_tick).quantize(Decimal(1), rounding=rounding)
    return float(steps * d_tick)


def is_divisible(value: float, tick: float, tol: float = 1e-9) -> bool:
    """
    Check if value is a multiple of tick within tolerance.
    """
    if tick <= 0:
        return True
    ratio = value / tick
    nearest = round(ratio)
    return abs(ratio - nearest) <= tol


def normalize(rung: Rung, side: Side, constraints: MarketConstraints, index: int = 0) -> NormalizeResult:
    """
    Snap a planned rung to exchange precision.

    Price rounds to the nearest price tick and is clamped up to the minimum
    price. Base amount is the rung notional over the planned price (the
    clamped price when clamping happened), rounded to the nearest amount tick.
    Amounts that round to zero or fall under min amount / min notional are
    rejected rather than raised.
    """
    price = round_to_tick(rung.price, constraints.price_tick)
    basis = rung.price
    if constraints.min_price > 0 and price < constraints.min_price:
        price = round_to_tick(constraints.min_price, constraints.price_tick, rounding=ROUND_CEILING)
        # Sized at the clamped price so the rung never spends more than its notional
        basis = price
    if price <= 0:
        return Rejected("non_positive_price", index, price, 0.0)

    raw_base = rung.notional / basis if basis > 0 else 0.0
    base_amount = round_to_tick(raw_base, constraints.amount_tick)
    if base_amount <= 0:
        return Rejected("zero_amount", index, price, base_amount)
    if base_amount < constraints.min_amount:
        return Rejected("below_min_amount", index, price, base_amount)

    quote_value = float(Decimal(str(base_amount)) * Decimal(str(price)))
    if constraints.min_notional > 0 and quote_value < constraints.min_notional:
        return Rejected("below_min_notional", index, price, base_amount)

    return OrderCandidate(
        side=side,
        price=price,
        base_amount=base_amount,
        quote_value=quote_value,
        index=index,
    )


def normalize_ladder(
    ladder: Sequence[Rung],
    side: Side,
    constraints: MarketConstraints,
) -> Tuple[List[OrderCandidate], List[Rejected]]:
    """Normalize every rung; rejected rungs are collected, never abort the ladder."""
    accepted: List[OrderCandidate] = []
    rejected: List[Rejected] = []
    for i, rung in enumerate(ladder):
        result = normalize(rung, side, constraints, index=i)
        if isinstance(result, Rejected):
            rejected.append(result)
        else:
            accepted.append(result)
    return accepted, rejected


def violations(candidate: OrderCandidate, constraints: MarketConstraints) -> List[str]:
    """List constraint violations of an already-normalized candidate (empty if clean)."""
    found: List[str] = []
    if not is_divisible(candidate.price, constraints.price_tick, tol=1e-6):
        found.append("price_tick")
    if not is_divisible(candidate.base_amount, constraints.amount_tick, tol=1e-6):
        found.append("amount_tick")
    if candidate.base_amount < constraints.min_amount:
        found.append("min_amount")
    if constraints.min_notional > 0 and candidate.quote_value < constraints.min_notional:
        found.append("min_notional")
    if constraints.min_price > 0 and candidate.price < constraints.min_price:
        found.append("min_price")
    return found
