"""
SideQuoter: sequential ladder placement and id-scoped cancellation.

Placement is paced with a fixed inter-order delay. A rate-limit response
backs off for longer and moves on to the next rung; other per-order
failures are logged and skipped. Only exchange-confirmed orders are
returned, so callers never track an id the exchange did not accept.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, TYPE_CHECKING

from ladderbot.core.errors import (
    AlreadyGone,
    CancelError,
    LadderFailed,
    PlacementError,
    RateLimited,
)
from ladderbot.core.types import OrderCandidate, PlacedOrder, Side
from ladderbot.infra.logging_cfg import log_event

if TYPE_CHECKING:
    from ladderbot.execution.exchange_gateway import ExchangeGateway
    from ladderbot.monitoring.metrics import QuoteMetrics

log = logging.getLogger("ladderbot")


@dataclass
class SideQuoterConfig:
    """Pacing for order submission."""
    order_delay_ms: int = 50
    rate_limit_backoff_sec: float = 2.0
    cancel_delay_ms: int = 0


@dataclass
class CancelResult:
    """Outcome of cancelling a set of ids."""
    cancelled: List[str] = field(default_factory=list)
    already_gone: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    batched: bool = False

    @property
    def success(self) -> bool:
        return not self.failed


class SideQuoter:
    """
    Places one side's ladder and cancels orders by id.

    Args:
        gateway: Exchange collaborator
        symbol: Market symbol
        config: Pacing configuration
        metrics: Optional Prometheus collectors
        on_placed: Called with each order the moment the exchange confirms it
    """

    def __init__(
        self,
        gateway: "ExchangeGateway",
        symbol: str,
        config: Optional[SideQuoterConfig] = None,
        metrics: Optional["QuoteMetrics"] = None,
        on_placed: Optional[Callable[[PlacedOrder], None]] = None,
    ) -> None:
        self.gateway = gateway
        self.symbol = symbol
        self.config = config or SideQuoterConfig()
        self.metrics = metrics
        self.on_placed = on_placed

    async def quote(self, candidates: Sequence[OrderCandidate], side: Side) -> List[PlacedOrder]:
        """
        Place every candidate in order, closest to the reference first.

        Returns:
            Confirmed orders only

        Raises:
            LadderFailed: no order of a non-empty ladder was accepted, or
                nothing survived normalization
        """
        if not candidates:
            raise LadderFailed(f"no placeable {side.value} rungs", order_side=side.order_side)

        placed: List[PlacedOrder] = []
        last_error: Optional[PlacementError] = None
        delay = self.config.order_delay_ms / 1000

        for i, cand in enumerate(candidates):
            if i > 0 and delay > 0:
                await asyncio.sleep(delay)
            t0 = time.perf_counter()
            try:
                order_id = await self.gateway.place_limit_order(
                    self.symbol, side, cand.base_amount, cand.price
                )
            except RateLimited as exc:
                last_error = exc
                self._record_rejected(side, exc.reason)
                log_event(log, "rate_limited", level=logging.WARNING, side=side.value,
                          rung=cand.index, backoff_sec=self.config.rate_limit_backoff_sec)
                await asyncio.sleep(self.config.rate_limit_backoff_sec)
                continue
            except PlacementError as exc:
                last_error = exc
                self._record_rejected(side, exc.reason)
                log_event(log, "order_rejected", level=logging.WARNING, side=side.value,
                          rung=cand.index, px=cand.price, sz=cand.base_amount,
                          reason=exc.reason, error=str(exc))
                continue

            latency_ms = (time.perf_counter() - t0) * 1000
            order = PlacedOrder(
                id=order_id,
                side=side,
                price=cand.price,
                base_amount=cand.base_amount,
                quote_value=cand.quote_value,
            )
            placed.append(order)
            if self.metrics:
                self.metrics.record_placed(side.value, latency_ms)
            if self.on_placed:
                self.on_placed(order)
            log_event(log, "order_placed", level=logging.DEBUG, side=side.value,
                      id=order_id, px=cand.price, sz=cand.base_amount)

        if not placed:
            detail = f": {last_error}" if last_error else ""
            raise LadderFailed(
                f"all {len(candidates)} {side.value} orders failed{detail}",
                order_side=side.order_side,
            )

        self._log_summary(side, placed, len(candidates))
        return placed

    async def cancel_all(self, order_ids: Sequence[str]) -> CancelResult:
        """
        Cancel the given ids, batch first when the exchange supports it.

        AlreadyGone counts as resolved. Ids that fail for any other reason
        are reported in ``failed``.
        """
        result = CancelResult()
        ids = list(dict.fromkeys(order_ids))
        if not ids:
            return result

        if self.gateway.supports_batch_cancel:
            try:
                await self.gateway.cancel_orders(ids, self.symbol)
            except CancelError as exc:
                log_event(log, "batch_cancel_fallback", level=logging.WARNING,
                          count=len(ids), error=str(exc))
            else:
                result.cancelled = ids
                result.batched = True
                self._record_cancel(result)
                return result

        delay = self.config.cancel_delay_ms / 1000
        for i, order_id in enumerate(ids):
            if i > 0 and delay > 0:
                await asyncio.sleep(delay)
            try:
                await self.gateway.cancel_order(order_id, self.symbol)
            except AlreadyGone:
                result.already_gone.append(order_id)
            except CancelError as exc:
                result.failed.append(order_id)
                log_event(log, "cancel_failed", level=logging.WARNING, id=order_id, error=str(exc))
            else:
                result.cancelled.append(order_id)

        self._record_cancel(result)
        log_event(
            log,
            "cancel_summary",
            cancelled=len(result.cancelled),
            already_gone=len(result.already_gone),
            failed=len(result.failed),
        )
        return result

    def _record_rejected(self, side: Side, reason: str) -> None:
        if self.metrics:
            self.metrics.record_rejected(side.value, reason)

    def _record_cancel(self, result: CancelResult) -> None:
        if not self.metrics:
            return
        self.metrics.record_cancel("cancelled", len(result.cancelled))
        self.metrics.record_cancel("already_gone", len(result.already_gone))
        self.metrics.record_cancel("failed", len(result.failed))

    def _log_summary(self, side: Side, placed: List[PlacedOrder], attempted: int) -> None:
        prices = [o.price for o in placed]
        log_event(
            log,
            "ladder_placed",
            side=side.value,
            placed=len(placed),
            attempted=attempted,
            total_base=round(sum(o.base_amount for o in placed), 12),
            total_quote=round(sum(o.quote_value for o in placed), 8),
            px_min=min(prices),
            px_max=max(prices),
        )
