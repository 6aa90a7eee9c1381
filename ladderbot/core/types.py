"""
Value types for ladder quoting.

Side is a two-valued tag with exactly one mapping onto the exchange's
order-side vocabulary ("buy"/"sell"); nothing else in the package compares
side strings.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class Side(Enum):
    """Book side being quoted."""
    BID = "bid"
    ASK = "ask"

    @property
    def order_side(self) -> str:
        """Exchange order side for this book side."""
        return "buy" if self is Side.BID else "sell"

    @classmethod
    def from_order_side(cls, order_side: str) -> "Side":
        """Map an exchange order side ("buy"/"sell") back to a book side."""
        raw = str(order_side).strip().lower()
        if raw == "buy":
            return cls.BID
        if raw == "sell":
            return cls.ASK
        raise ValueError(f"unknown order side: {order_side!r}")

    @classmethod
    def parse(cls, raw: str) -> "Side":
        """Accept config spellings: bid/ask or buy/sell."""
        value = str(raw).strip().lower()
        if value in ("bid", "buy"):
            return cls.BID
        if value in ("ask", "sell"):
            return cls.ASK
        raise ValueError(f"unknown side: {raw!r} (expected bid|ask)")


class QuoteMode(Enum):
    MONO = "mono"
    BOTH = "both"

    @classmethod
    def parse(cls, raw: str) -> "QuoteMode":
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValueError(f"unknown mode: {raw!r} (expected mono|both)") from None


class PriceReference(Enum):
    """Reference price selection policy."""
    FIRST_ASK = "first_ask"
    FIRST_BID = "first_bid"
    MID = "mid"
    BEST = "best"

    @classmethod
    def parse(cls, raw: str) -> "PriceReference":
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValueError(
                f"unknown price reference: {raw!r} (expected first_ask|first_bid|mid|best)"
            ) from None


@dataclass(frozen=True)
class ReferenceQuote:
    """Top-of-book snapshot; any field may be missing on a thin book."""
    bid: Optional[float] = None
    ask: Optional[float] = None
    last: Optional[float] = None


@dataclass(frozen=True)
class Rung:
    """Planned price/notional pair before precision normalization."""
    price: float
    notional: float


@dataclass(frozen=True)
class OrderCandidate:
    """A rung after normalization, ready to submit."""
    side: Side
    price: float
    base_amount: float
    quote_value: float
    index: int = 0


@dataclass(frozen=True)
class PlacedOrder:
    """Exchange-accepted order owned by the reconciliation loop's tracking set."""
    id: str
    side: Side
    price: float
    base_amount: float
    quote_value: float


@dataclass(frozen=True)
class OrderSnapshot:
    """One open order as reported by the exchange."""
    id: str
    side: Side
    price: float
    amount: float


def _nested(market: Mapping[str, Any], *keys: str) -> Optional[float]:
    node: Any = market
    for key in keys:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    if node is None:
        return None
    try:
        return float(node)
    except (TypeError, ValueError):
        return None


def _precision_to_tick(precision: Optional[float], default_decimals: int, tick_mode: Optional[bool]) -> float:
    """
    ccxt markets express precision either as decimal places (4) or as a tick
    size (0.0001) depending on the exchange's precisionMode.
    """
    if precision is None or precision <= 0:
        return 10.0 ** -default_decimals
    if tick_mode is None:
        tick_mode = precision < 1
    if tick_mode:
        return precision
    return 10.0 ** -int(precision)


@dataclass(frozen=True)
class MarketConstraints:
    """Read-only per-symbol trading constraints, cached for the run."""
    price_tick: float
    amount_tick: float
    min_amount: float = 0.0
    min_notional: float = 0.0
    min_price: float = 0.0

    @property
    def price_decimals(self) -> int:
        return _tick_decimals(self.price_tick)

    @property
    def amount_decimals(self) -> int:
        return _tick_decimals(self.amount_tick)

    @classmethod
    def from_ccxt_market(cls, market: Mapping[str, Any], tick_mode: Optional[bool] = None) -> "MarketConstraints":
        """
        Build constraints from a ccxt unified market structure.

        Args:
            market: Entry from ``exchange.markets[symbol]``
            tick_mode: True when the exchange reports precision as tick size,
                False for decimal places, None to infer from the value

        Returns:
            MarketConstraints with exchange defaults applied where fields are missing
        """
        price_tick = _precision_to_tick(_nested(market, "precision", "price"), 4, tick_mode)
        amount_tick = _precision_to_tick(_nested(market, "precision", "amount"), 2, tick_mode)
        min_price = _nested(market, "limits", "price", "min") or price_tick
        return cls(
            price_tick=price_tick,
            amount_tick=amount_tick,
            min_amount=_nested(market, "limits", "amount", "min") or 0.0,
            min_notional=_nested(market, "limits", "cost", "min") or 0.0,
            min_price=min_price,
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "price_tick": self.price_tick,
            "amount_tick": self.amount_tick,
            "min_amount": self.min_amount,
            "min_notional": self.min_notional,
            "min_price": self.min_price,
        }


def _tick_decimals(tick: float) -> int:
    if tick <= 0:
        return 8
    if tick >= 1:
        return 0
    s = f"{tick:.12f}".rstrip("0")
    if "." in s:
        return max(0, len(s.split(".")[1]))
    return max(0, int(round(-math.log10(tick))))
