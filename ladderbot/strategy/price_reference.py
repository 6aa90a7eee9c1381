"""
Reference price selection from a top-of-book snapshot.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, TYPE_CHECKING

from ladderbot.core.errors import NoLiquidity
from ladderbot.core.types import PriceReference, ReferenceQuote, Side

if TYPE_CHECKING:
    from ladderbot.execution.exchange_gateway import ExchangeGateway

log = logging.getLogger("ladderbot")


def _usable(px: Optional[float]) -> Optional[float]:
    if px is None:
        return None
    try:
        value = float(px)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def resolve(policy: PriceReference, quote: ReferenceQuote, side_hint: Optional[Side] = None) -> float:
    """
    Derive one reference price from a quote snapshot.

    - first_ask: lowest ask, else last trade
    - first_bid: highest bid, else last trade
    - mid: (bid + ask) / 2 when both exist, else last trade
    - best: first_bid for a bid-side computation, first_ask for an ask-side
      one; mid when no side is given

    Raises:
        NoLiquidity: nothing usable in the snapshot
    """
    bid = _usable(quote.bid)
    ask = _usable(quote.ask)
    last = _usable(quote.last)

    if policy is PriceReference.BEST:
        if side_hint is Side.BID:
            policy = PriceReference.FIRST_BID
        elif side_hint is Side.ASK:
            policy = PriceReference.FIRST_ASK
        else:
            policy = PriceReference.MID

    if policy is PriceReference.FIRST_ASK:
        price = ask or last
    elif policy is PriceReference.FIRST_BID:
        price = bid or last
    else:
        price = (bid + ask) / 2 if bid and ask else last

    if not price:
        raise NoLiquidity(f"no reference price for policy={policy.value} quote={quote}")
    return price


class PriceReferenceResolver:
    """
    Fetches a fresh quote from the exchange and applies the configured policy.

    Usage:
        resolver = PriceReferenceResolver(gateway, "ORBD/USDT", PriceReference.MID)
        refs = await resolver.resolve_many([Side.ASK])
    """

    def __init__(self, gateway: "ExchangeGateway", symbol: str, policy: PriceReference) -> None:
        self.gateway = gateway
        self.symbol = symbol
        self.policy = policy

    async def fetch(self) -> ReferenceQuote:
        return await self.gateway.get_reference_quote(self.symbol)

    async def resolve_many(self, sides: Iterable[Side]) -> Dict[Side, float]:
        """Resolve several sides from a single quote fetch."""
        quote = await self.fetch()
        return {side: resolve(self.policy, quote, side) for side in sides}
