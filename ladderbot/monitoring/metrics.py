"""
Prometheus metrics for ladder quoting.

Organized into: execution, reconciliation, market.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

if TYPE_CHECKING:
    from ladderbot.orchestrator.reconciliation_loop import TickObservation


class QuoteMetrics:
    """Metrics for one quoting process."""

    def __init__(self, symbol: str = "", registry: Optional[CollectorRegistry] = None):
        self.symbol = symbol
        self.registry = registry or CollectorRegistry()
        reg = self.registry

        # === Execution Metrics ===
        self.orders_placed = Counter(
            'orders_placed_total',
            'Limit orders accepted by the exchange',
            labelnames=['symbol', 'side'],
            registry=reg
        )
        self.orders_rejected = Counter(
            'orders_rejected_total',
            'Rungs not placed (normalizer or exchange rejection)',
            labelnames=['symbol', 'side', 'reason'],
            registry=reg
        )
        self.orders_cancelled = Counter(
            'orders_cancelled_total',
            'Cancel outcomes',
            labelnames=['symbol', 'outcome'],
            registry=reg
        )
        self.placement_latency_ms = Histogram(
            'placement_latency_ms',
            'Time from submit to ACK (milliseconds)',
            labelnames=['symbol'],
            buckets=[10, 25, 50, 100, 200, 500, 1000, 2500],
            registry=reg
        )

        # === Reconciliation Metrics ===
        self.refreshes = Counter(
            'ladder_refreshes_total',
            'Ladder rebuilds by trigger',
            labelnames=['symbol', 'reason'],
            registry=reg
        )
        self.ticks = Counter(
            'ticks_total',
            'Completed ticks by resulting state',
            labelnames=['symbol', 'state'],
            registry=reg
        )
        self.ticks_skipped = Counter(
            'ticks_skipped_total',
            'Timer firings skipped because a tick was in flight',
            labelnames=['symbol'],
            registry=reg
        )
        self.tick_errors = Counter(
            'tick_errors_total',
            'Ticks that ended in an error',
            labelnames=['symbol'],
            registry=reg
        )
        self.tracked_orders = Gauge(
            'tracked_orders',
            'Orders currently tracked as resting',
            labelnames=['symbol', 'side'],
            registry=reg
        )

        # === Market Metrics ===
        self.drift_pct = Gauge(
            'drift_pct',
            'Distance of nearest order from the reference (%)',
            labelnames=['symbol', 'side'],
            registry=reg
        )
        self.reference_price = Gauge(
            'reference_price',
            'Last resolved reference price',
            labelnames=['symbol', 'side'],
            registry=reg
        )

    def record_placed(self, side: str, latency_ms: float) -> None:
        self.orders_placed.labels(symbol=self.symbol, side=side).inc()
        self.placement_latency_ms.labels(symbol=self.symbol).observe(latency_ms)

    def record_rejected(self, side: str, reason: str) -> None:
        self.orders_rejected.labels(symbol=self.symbol, side=side, reason=reason).inc()

    def record_cancel(self, outcome: str, count: int = 1) -> None:
        if count > 0:
            self.orders_cancelled.labels(symbol=self.symbol, outcome=outcome).inc(count)

    def record_refresh(self, reason: str) -> None:
        self.refreshes.labels(symbol=self.symbol, reason=reason).inc()

    def record_skip(self) -> None:
        self.ticks_skipped.labels(symbol=self.symbol).inc()

    def record_reference(self, side: str, price: float) -> None:
        self.reference_price.labels(symbol=self.symbol, side=side).set(price)

    def observe(self, obs: "TickObservation") -> None:
        """Default tick observer: mirror the observation into gauges and counters."""
        self.ticks.labels(symbol=self.symbol, state=obs.state.value).inc()
        if obs.error:
            self.tick_errors.labels(symbol=self.symbol).inc()
        for side, count in obs.tracked_counts.items():
            self.tracked_orders.labels(symbol=self.symbol, side=side).set(count)
        for side, pct in obs.drift_percent.items():
            self.drift_pct.labels(symbol=self.symbol, side=side).set(pct)

    def get_registry(self) -> CollectorRegistry:
        return self.registry


def start_metrics_server(port: int, metrics: QuoteMetrics) -> bool:
    """Expose /metrics for the given collectors. Returns False when disabled."""
    if port <= 0:
        return False
    start_http_server(port, registry=metrics.registry)
    return True
