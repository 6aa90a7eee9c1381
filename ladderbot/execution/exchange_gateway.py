"""
ExchangeGateway: the single seam between the bot and the exchange.

Wraps a ccxt async client and translates its unified exceptions into the
ladderbot error taxonomy, so nothing above this module imports ccxt:

    RateLimitExceeded / DDoSProtection   -> RateLimited
    InsufficientFunds                    -> InsufficientBalance
    InvalidOrder (on placement)          -> BelowMinimum
    OrderNotFound / InvalidOrder (cancel)-> AlreadyGone
    anything else ccxt raises            -> PlacementError / CancelError

Market constraints are loaded once and cached for the life of the gateway.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import ccxt
import ccxt.async_support as ccxt_async

from ladderbot.core.errors import (
    AlreadyGone,
    BatchCancelUnsupported,
    BelowMinimum,
    CancelError,
    ConfigError,
    InsufficientBalance,
    PlacementError,
    RateLimited,
)
from ladderbot.core.types import MarketConstraints, OrderSnapshot, ReferenceQuote, Side

log = logging.getLogger("ladderbot")

# Exchange-specific "order does not exist" codes that ccxt passes through untyped
_GONE_MARKERS = ("ORDER_005", "order not found", "order does not exist", "unknown order")


def _looks_gone(exc: Exception) -> bool:
    text = str(exc).lower()
    return any(marker.lower() in text for marker in _GONE_MARKERS)


def _looks_rate_limited(exc: Exception) -> bool:
    text = str(exc)
    return "429" in text or "Too Many Requests" in text


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class ExchangeGateway:
    """
    Async exchange collaborator backed by ccxt.

    Usage:
        gateway = ExchangeGateway.from_config(cfg)
        quote = await gateway.get_reference_quote(cfg.symbol)
        ...
        await gateway.close()
    """

    def __init__(self, client: Any) -> None:
        self.client = client
        self._constraints: Dict[str, MarketConstraints] = {}

    @classmethod
    def create(
        cls,
        exchange_id: str,
        credentials: Optional[Dict[str, str]] = None,
        testnet: bool = False,
        timeout_ms: int = 30000,
    ) -> "ExchangeGateway":
        """
        Instantiate a ccxt async client by exchange id.

        Raises:
            ConfigError: unknown exchange id
        """
        ex_cls = getattr(ccxt_async, exchange_id, None)
        if ex_cls is None:
            raise ConfigError(f"Unknown exchange in ccxt: {exchange_id}")
        options = {"enableRateLimit": True, "timeout": timeout_ms}
        options.update(credentials or {})
        client = ex_cls(options)
        if testnet:
            client.set_sandbox_mode(True)
        return cls(client)

    @classmethod
    def from_config(cls, cfg) -> "ExchangeGateway":
        creds = cfg.credentials.to_ccxt() if cfg.credentials else None
        return cls.create(cfg.exchange, creds, testnet=cfg.testnet, timeout_ms=cfg.http_timeout_ms)

    @property
    def exchange_id(self) -> str:
        return str(getattr(self.client, "id", "unknown"))

    @property
    def supports_batch_cancel(self) -> bool:
        has = getattr(self.client, "has", None) or {}
        return bool(has.get("cancelOrders"))

    @property
    def supports_cancel_all(self) -> bool:
        has = getattr(self.client, "has", None) or {}
        return bool(has.get("cancelAllOrders"))

    # ─────────────────────────────────────────────────────────────────────
    # Market data
    # ─────────────────────────────────────────────────────────────────────

    async def get_reference_quote(self, symbol: str) -> ReferenceQuote:
        ticker = await self.client.fetch_ticker(symbol)
        return ReferenceQuote(
            bid=_to_float(ticker.get("bid")),
            ask=_to_float(ticker.get("ask")),
            last=_to_float(ticker.get("last")),
        )

    async def get_market_constraints(self, symbol: str) -> MarketConstraints:
        """
        Precision and minimums for a symbol, cached after the first call.

        Raises:
            ConfigError: the exchange does not list the symbol
        """
        cached = self._constraints.get(symbol)
        if cached is not None:
            return cached

        markets = await self.client.load_markets()
        market = (markets or {}).get(symbol)
        if market is None:
            raise ConfigError(f"Symbol {symbol} not listed on {self.exchange_id}")

        tick_mode = getattr(self.client, "precisionMode", None) == ccxt.TICK_SIZE
        constraints = MarketConstraints.from_ccxt_market(market, tick_mode=tick_mode)
        self._constraints[symbol] = constraints
        log.info(f"[GATEWAY] {symbol} constraints: {constraints.to_dict()}")
        return constraints

    async def get_available_balance(self, currency: str) -> float:
        balance = await self.client.fetch_balance()
        free = balance.get("free") or {}
        return float(free.get(currency) or 0.0)

    # ─────────────────────────────────────────────────────────────────────
    # Orders
    # ─────────────────────────────────────────────────────────────────────

    async def get_open_orders(self, symbol: str) -> List[OrderSnapshot]:
        raw_orders = await self.client.fetch_open_orders(symbol)
        snapshots: List[OrderSnapshot] = []
        for raw in raw_orders or []:
            try:
                side = Side.from_order_side(raw.get("side", ""))
            except ValueError:
                log.debug(f"[GATEWAY] skipping order with unknown side: {raw.get('id')}")
                continue
            amount = raw.get("remaining")
            if amount is None:
                amount = raw.get("amount")
            snapshots.append(OrderSnapshot(
                id=str(raw["id"]),
                side=side,
                price=_to_float(raw.get("price")) or 0.0,
                amount=_to_float(amount) or 0.0,
            ))
        return snapshots

    async def place_limit_order(self, symbol: str, side: Side, amount: float, price: float) -> str:
        """
        Submit one limit order and return the exchange order id.

        Raises:
            RateLimited, InsufficientBalance, BelowMinimum, PlacementError
        """
        order_side = side.order_side
        try:
            order = await self.client.create_order(symbol, "limit", order_side, amount, price)
        except (ccxt.RateLimitExceeded, ccxt.DDoSProtection) as exc:
            raise RateLimited(str(exc), order_side=order_side) from exc
        except ccxt.InsufficientFunds as exc:
            raise InsufficientBalance(str(exc), order_side=order_side) from exc
        except ccxt.InvalidOrder as exc:
            raise BelowMinimum(str(exc), order_side=order_side) from exc
        except ccxt.BaseError as exc:
            if _looks_rate_limited(exc):
                raise RateLimited(str(exc), order_side=order_side) from exc
            raise PlacementError(str(exc), order_side=order_side) from exc

        order_id = (order or {}).get("id")
        if not order_id:
            raise PlacementError(f"exchange returned no order id: {order}", order_side=order_side)
        return str(order_id)

    async def cancel_order(self, order_id: str, symbol: str) -> None:
        """
        Raises:
            AlreadyGone: the order was already filled or cancelled
            CancelError: any other failure
        """
        try:
            await self.client.cancel_order(order_id, symbol)
        except (ccxt.OrderNotFound, ccxt.InvalidOrder) as exc:
            raise AlreadyGone(str(exc)) from exc
        except ccxt.BaseError as exc:
            if _looks_gone(exc):
                raise AlreadyGone(str(exc)) from exc
            raise CancelError(str(exc)) from exc

    async def cancel_orders(self, order_ids: Sequence[str], symbol: str) -> None:
        """
        Batch cancel by id.

        Raises:
            BatchCancelUnsupported: the exchange offers no batch cancel
            CancelError: the batch call failed; callers retry per id
        """
        if not self.supports_batch_cancel:
            raise BatchCancelUnsupported(f"{self.exchange_id} has no cancelOrders")
        try:
            await self.client.cancel_orders(list(order_ids), symbol)
        except ccxt.NotSupported as exc:
            raise BatchCancelUnsupported(str(exc)) from exc
        except ccxt.BaseError as exc:
            raise CancelError(str(exc)) from exc

    async def cancel_all_orders(self, symbol: str) -> None:
        """Symbol-wide cancel, used by operator tools only."""
        if not self.supports_cancel_all:
            raise BatchCancelUnsupported(f"{self.exchange_id} has no cancelAllOrders")
        try:
            await self.client.cancel_all_orders(symbol)
        except ccxt.NotSupported as exc:
            raise BatchCancelUnsupported(str(exc)) from exc
        except ccxt.BaseError as exc:
            raise CancelError(str(exc)) from exc

    async def close(self) -> None:
        await self.client.close()
