"""
ReconciliationLoop: polls the exchange on a fixed interval and keeps one
ladder per quoted side resting.

Each tick takes one open-order snapshot and applies the first matching rule:

    0. DRAINING  cancelled ids still resting -> re-cancel, end tick
    1. EMPTY     nothing tracked             -> place fresh ladder(s)
    2. fill      tracked id left the book    -> cancel the rest, re-place
    3. DEGRADED  fewer resting than expected -> rebuild that side
    4. DRIFTED   nearest order too far away  -> rebuild that side
    5. QUOTED                                -> heartbeat

In both-side mode a fill on either side rebuilds both ladders.

Ticks never overlap: a timer firing while a tick is in flight is skipped,
not queued. Any exception inside a tick is logged and reported to the
observer; the loop keeps running.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple, TYPE_CHECKING

from ladderbot.core.errors import InsufficientBalance, LadderFailed, PlacementError, ReconciliationRace
from ladderbot.core.types import OrderSnapshot, QuoteMode, Side
from ladderbot.execution.drift_monitor import DriftMonitor
from ladderbot.execution.exchange_gateway import ExchangeGateway
from ladderbot.execution.order_diff import OrderDiff, diff
from ladderbot.execution.side_quoter import CancelResult, SideQuoter, SideQuoterConfig
from ladderbot.infra.logging_cfg import log_event
from ladderbot.orchestrator.quoting_state import QuotingState, SideState
from ladderbot.strategy.ladder_calculator import LadderCalculator
from ladderbot.strategy.price_reference import PriceReferenceResolver, resolve

if TYPE_CHECKING:
    from ladderbot.config.config import QuoteConfig
    from ladderbot.monitoring.alerting import AlertManager
    from ladderbot.monitoring.metrics import QuoteMetrics

log = logging.getLogger("ladderbot")


@dataclass
class TickObservation:
    """What one tick saw and did; handed to the observer after every tick."""
    tick: int
    state: SideState
    side_states: Dict[str, str] = field(default_factory=dict)
    tracked_counts: Dict[str, int] = field(default_factory=dict)
    drift_percent: Dict[str, float] = field(default_factory=dict)
    action: str = "hold"
    error: Optional[str] = None


Observer = Callable[[TickObservation], None]


class ReconciliationLoop:
    """
    Owns the QuotingState and drives every component from one timer.

    Usage:
        loop = ReconciliationLoop(cfg, gateway)
        await loop.start()
        ...
        await loop.stop()
    """

    def __init__(
        self,
        config: "QuoteConfig",
        gateway: ExchangeGateway,
        observer: Optional[Observer] = None,
        metrics: Optional["QuoteMetrics"] = None,
        alerts: Optional["AlertManager"] = None,
    ) -> None:
        self.config = config
        self.gateway = gateway
        self.observer = observer
        self.metrics = metrics
        self.alerts = alerts

        self.state = QuotingState(config.quoted_sides)
        self.resolver = PriceReferenceResolver(gateway, config.symbol, config.price_reference)
        self.quoter = SideQuoter(
            gateway,
            config.symbol,
            SideQuoterConfig(
                order_delay_ms=config.order_delay_ms,
                rate_limit_backoff_sec=config.rate_limit_backoff_sec,
            ),
            metrics=metrics,
            on_placed=self.state.record_pending,
        )
        self.drift = DriftMonitor(config.drift_threshold_pct)
        self.calculator: Optional[LadderCalculator] = None

        self._timer_task: Optional[asyncio.Task] = None
        self._tick_tasks: Set[asyncio.Task] = set()
        self._running = False
        self._started = False
        self._last_heartbeat: Optional[float] = None
        self._action = "hold"

    @property
    def is_running(self) -> bool:
        return self._running

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────

    async def start(self, run_timer: bool = True) -> None:
        """
        Startup checks, then begin ticking.

        Raises:
            ConfigError: symbol unknown to the exchange
            NoLiquidity: no reference price can be derived
        """
        cfg = self.config
        constraints = await self.gateway.get_market_constraints(cfg.symbol)
        self.calculator = LadderCalculator(cfg.spread_pct, cfg.orders_per_side, constraints)

        await self._report_balances()
        refs = await self.resolver.resolve_many(self.state.sides)
        log_event(
            log,
            "startup_reference",
            policy=cfg.price_reference.value,
            refs={side.value: px for side, px in refs.items()},
        )
        await self._adopt_open_orders()

        self._started = True
        if self.alerts:
            await self.alerts.alert_startup(cfg.symbol, mode=cfg.mode.value, sides=len(cfg.quoted_sides))

        if run_timer:
            self._running = True
            self._timer_task = asyncio.create_task(self._run_timer(), name="ladderbot-timer")

    async def wait(self) -> None:
        """Block until the timer stops."""
        if self._timer_task is not None:
            await self._timer_task

    async def stop(self, reason: str = "normal") -> CancelResult:
        """
        Stop the timer, abort any in-flight tick, and cancel every order we
        may still have resting.
        """
        self._running = False
        if self._timer_task is not None:
            self._timer_task.cancel()
            await asyncio.gather(self._timer_task, return_exceptions=True)
            self._timer_task = None

        tasks = list(self._tick_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        result = CancelResult()
        ids = sorted(self.state.all_order_ids())
        if ids:
            log_event(log, "shutdown_cancel", count=len(ids))
            result = await self.quoter.cancel_all(ids)
            failed = set(result.failed)
            for side, book in self.state.books.items():
                owned = set(book.clear()) | book.draining_ids | self.state.take_pending(side)
                book.finish_drain()
                book.start_drain(owned & failed)
            if failed:
                log_event(log, "shutdown_cancel_incomplete", level=logging.ERROR, ids=result.failed)

        log_event(
            log,
            "loop_stopped",
            reason=reason,
            ticks=self.state.tick_count,
            skipped=self.state.skipped_ticks,
            cancelled=len(result.cancelled),
            already_gone=len(result.already_gone),
            failed=len(result.failed),
        )
        if self.alerts and self._started:
            await self.alerts.alert_shutdown(self.config.symbol, reason=reason, failed=len(result.failed))
        self._started = False
        return result

    async def _run_timer(self) -> None:
        while self._running:
            self._spawn_tick()
            await asyncio.sleep(self.config.tick_interval_sec)

    def _spawn_tick(self) -> None:
        if self.state.busy:
            self._record_skip()
            return
        task = asyncio.create_task(self.tick())
        self._tick_tasks.add(task)
        task.add_done_callback(self._tick_tasks.discard)

    # ─────────────────────────────────────────────────────────────────────
    # Tick
    # ─────────────────────────────────────────────────────────────────────

    async def tick(self) -> Optional[TickObservation]:
        """
        Run one reconciliation pass.

        Returns:
            The observation, or None when skipped because a tick is in flight
        """
        if self.state.busy:
            self._record_skip()
            return None

        async with self.state.lock:
            self.state.tick_count += 1
            self._action = "hold"
            error: Optional[str] = None
            try:
                await self._reconcile()
            except Exception as exc:
                error = f"{type(exc).__name__}: {exc}"
                log_event(log, "tick_error", level=logging.ERROR, tick=self.state.tick_count,
                          action=self._action, error=error)
                if isinstance(exc, (LadderFailed, InsufficientBalance)) and self.alerts:
                    await self.alerts.alert_ladder_failed(self.config.symbol, exc.order_side or "", str(exc))
            obs = self._observe(error)

        self._notify(obs)
        return obs

    async def _reconcile(self) -> None:
        cfg = self.config
        books = self.state.books
        snapshot = await self.gateway.get_open_orders(cfg.symbol)
        open_ids = {o.id for o in snapshot}

        # Rule 0
        if await self._drain(open_ids):
            self._action = "drain"
            return

        # Rule 1
        if all(not book.orders for book in books.values()):
            self._action = "place"
            await self._place_sides(self.state.sides, reason="empty")
            return

        diffs = {
            side: diff(book.active_ids, snapshot, side, book.expected_count)
            for side, book in books.items()
        }

        # Rule 2
        filled = {side: d.filled for side, d in diffs.items() if d.filled}
        if filled:
            self._action = "fill"
            await self._handle_fills(filled)
            return

        # Rule 3; an empty side next to a quoted one is rebuilt here too
        degraded = [side for side, d in diffs.items() if d.is_degraded or not books[side].orders]
        if degraded:
            self._action = "degraded"
            log_event(
                log,
                "ladder_degraded",
                level=logging.WARNING,
                missing={side.value: diffs[side].missing for side in degraded},
            )
            await self._refresh(degraded, reason="degraded")
            return

        # Rule 4
        drifted = await self._check_drift(diffs)
        if drifted:
            self._action = "drift"
            await self._refresh(drifted, reason="drift")
            return

        # Rule 5
        self._heartbeat()

    # ─────────────────────────────────────────────────────────────────────
    # Rules
    # ─────────────────────────────────────────────────────────────────────

    async def _drain(self, open_ids: Set[str]) -> bool:
        """Re-cancel ids that survived an earlier cancel. True while any remain."""
        still_draining = False
        for side, book in self.state.books.items():
            if not book.draining_ids:
                continue
            book.draining_ids &= open_ids
            if not book.draining_ids:
                log_event(log, "drain_complete", side=side.value, attempts=book.drain_attempts)
                book.finish_drain()
                continue

            book.drain_attempts += 1
            stuck = sorted(book.draining_ids)
            if book.drain_attempts > self.config.max_drain_attempts:
                log_event(log, "drain_abandoned", level=logging.ERROR, side=side.value,
                          ids=stuck, attempts=book.drain_attempts - 1)
                if self.alerts:
                    await self.alerts.alert_drain_abandoned(self.config.symbol, side.value, stuck)
                book.finish_drain()
                continue

            log_event(log, "reconcile_race", level=logging.WARNING, side=side.value,
                      resting=len(stuck), attempt=book.drain_attempts)
            await self.quoter.cancel_all(stuck)
            still_draining = True
        return still_draining

    async def _handle_fills(self, filled: Dict[Side, List[str]]) -> None:
        for side, ids in filled.items():
            self.state.book(side).drop(ids)
        by_side = {side.value: ids for side, ids in filled.items()}
        log_event(log, "fill_detected", filled=by_side)
        if self.alerts:
            await self.alerts.alert_fill(self.config.symbol, by_side)

        if self.config.mode is QuoteMode.BOTH:
            sides = self.state.sides
        else:
            sides = list(filled)
        await self._refresh(sides, reason="fill")

    async def _refresh(self, sides: Sequence[Side], reason: str) -> None:
        """Cancel the sides' remaining orders, verify they are gone, then re-place."""
        to_cancel: List[str] = []
        for side in sides:
            book = self.state.book(side)
            ids = book.clear()
            book.start_drain(ids)
            to_cancel.extend(ids)

        log_event(log, "ladder_refresh", reason=reason, sides=[s.value for s in sides],
                  cancelling=len(to_cancel))

        if to_cancel:
            result = await self.quoter.cancel_all(to_cancel)
            if self.config.cancel_settle_sec > 0:
                await asyncio.sleep(self.config.cancel_settle_sec)
            snapshot = await self.gateway.get_open_orders(self.config.symbol)
            try:
                self._settle_drains(sides, snapshot)
            except ReconciliationRace as race:
                # Left in draining_ids; rule 0 retries next tick
                log_event(
                    log,
                    "reconcile_race",
                    level=logging.WARNING,
                    resting=race.resting_ids,
                    failed=len(result.failed),
                )
                return
        else:
            for side in sides:
                self.state.book(side).finish_drain()

        await self._place_sides(sides, reason=reason)

    def _settle_drains(self, sides: Sequence[Side], snapshot: Sequence[OrderSnapshot]) -> None:
        """
        The refreshed sides must be empty before a new ladder goes on.

        Anything still resting on them, cancelled or never tracked, stays in
        draining_ids so rule 0 cancels it on the next tick.

        Raises:
            ReconciliationRace: a refreshed side still has resting orders
        """
        resting: Set[str] = set()
        for side in sides:
            book = self.state.book(side)
            on_side = {o.id for o in snapshot if o.side is side}
            book.draining_ids = on_side
            if on_side:
                resting |= on_side
            else:
                book.finish_drain()
        if resting:
            raise ReconciliationRace(resting)

    async def _check_drift(self, diffs: Dict[Side, OrderDiff]) -> List[Side]:
        sides = [side for side, d in diffs.items() if d.resting]
        if not sides:
            return []
        refs = await self.resolver.resolve_many(sides)
        drifted: List[Side] = []
        for side in sides:
            reading = self.drift.measure(side, diffs[side].resting_prices, refs[side])
            self.state.book(side).last_drift = reading
            if reading.exceeded:
                log_event(
                    log,
                    "drift_detected",
                    side=side.value,
                    nearest=reading.nearest,
                    reference=reading.reference,
                    distance_pct=round(reading.distance_pct, 4),
                    threshold_pct=reading.threshold_pct,
                )
                drifted.append(side)
        return drifted

    def _heartbeat(self) -> None:
        now = time.monotonic()
        if self._last_heartbeat is not None and now - self._last_heartbeat < self.config.heartbeat_sec:
            return
        self._last_heartbeat = now
        log_event(
            log,
            "quoting_heartbeat",
            tick=self.state.tick_count,
            tracked=self.state.tracked_counts(),
            drift_pct=self._drift_snapshot(),
            ladder_ref={side.value: book.last_reference for side, book in self.state.books.items()},
        )

    # ─────────────────────────────────────────────────────────────────────
    # Placement
    # ─────────────────────────────────────────────────────────────────────

    async def _place_sides(self, sides: Sequence[Side], reason: str) -> None:
        """
        Place a fresh ladder on each side. A failed side does not stop the
        others; the first failure is re-raised once all sides were tried.
        """
        if self.calculator is None:
            raise RuntimeError("ReconciliationLoop.start() was not called")

        refs, balances = await self._market_inputs(sides)
        if self.metrics:
            self.metrics.record_refresh(reason)

        errors: List[PlacementError] = []
        for i, side in enumerate(sides):
            if i > 0 and self.config.side_pause_sec > 0:
                await asyncio.sleep(self.config.side_pause_sec)
            try:
                await self._place_side(side, refs[side], balances.get(side))
            except PlacementError as exc:
                errors.append(exc)
        if errors:
            raise errors[0]

    async def _market_inputs(self, sides: Sequence[Side]) -> Tuple[Dict[Side, float], Dict[Side, float]]:
        """Fresh quote and free balances, fetched concurrently."""
        wanted: Dict[Side, str] = {}
        if self.config.cap_to_balance:
            wanted = {side: self._balance_currency(side) for side in sides}

        calls: List[Awaitable] = [self.resolver.fetch()]
        calls.extend(self.gateway.get_available_balance(c) for c in wanted.values())
        quote, *free = await asyncio.gather(*calls)

        refs = {side: resolve(self.config.price_reference, quote, side) for side in sides}
        if self.metrics:
            for side, px in refs.items():
                self.metrics.record_reference(side.value, px)
        return refs, dict(zip(wanted, free))

    async def _place_side(self, side: Side, reference: float, free_balance: Optional[float]) -> None:
        book = self.state.book(side)
        budget = self._capped_budget(side, reference, free_balance)
        build = self.calculator.build(reference, side, budget)

        if build.rejected:
            if self.metrics:
                for rej in build.rejected:
                    self.metrics.record_rejected(side.value, rej.reason)
            log_event(
                log,
                "rungs_rejected",
                level=logging.WARNING,
                side=side.value,
                count=build.rejected_count,
                reasons=sorted({r.reason for r in build.rejected}),
            )

        try:
            placed = await self.quoter.quote(build.candidates, side)
        except BaseException:
            # Orders confirmed before the interruption must still be cancelled
            stray = self.state.take_pending(side)
            if stray:
                book.start_drain(stray)
                log_event(log, "placement_interrupted", level=logging.WARNING,
                          side=side.value, stray=len(stray))
            raise

        self.state.take_pending(side)
        book.track(placed, reference)
        log_event(
            log,
            "side_quoted",
            side=side.value,
            reference=reference,
            budget=round(budget, 8),
            orders=len(placed),
            planned=len(build.rungs),
            band=self.calculator.price_range(reference, side),
        )

    def _capped_budget(self, side: Side, reference: float, free_balance: Optional[float]) -> float:
        """Configured budget, reduced to what the free balance can cover."""
        budget = self.config.budget_for(side)
        if free_balance is None:
            return budget
        available = free_balance if side is Side.BID else free_balance * reference
        if available <= 0:
            raise InsufficientBalance(
                f"no free {self._balance_currency(side)} for the {side.value} ladder",
                order_side=side.order_side,
            )
        if available < budget:
            log_event(log, "budget_capped", level=logging.WARNING, side=side.value,
                      configured=budget, available=round(available, 8))
            return available
        return budget

    def _balance_currency(self, side: Side) -> str:
        return self.config.quote_currency if side is Side.BID else self.config.base_currency

    # ─────────────────────────────────────────────────────────────────────
    # Startup helpers
    # ─────────────────────────────────────────────────────────────────────

    async def _report_balances(self) -> None:
        currencies = sorted({self._balance_currency(side) for side in self.state.sides})
        free = await asyncio.gather(*(self.gateway.get_available_balance(c) for c in currencies))
        balances = dict(zip(currencies, free))
        log_event(log, "startup_balances", free=balances)
        for currency, amount in balances.items():
            if amount <= 0:
                log_event(log, "zero_balance", level=logging.WARNING, currency=currency)

    async def _adopt_open_orders(self) -> None:
        snapshot = await self.gateway.get_open_orders(self.config.symbol)
        for side, book in self.state.books.items():
            mine = [o for o in snapshot if o.side is side]
            if not mine:
                continue
            count = book.adopt(mine, expected_count=self.config.orders_per_side)
            log_event(log, "orders_adopted", side=side.value, count=count)

    # ─────────────────────────────────────────────────────────────────────
    # Observation
    # ─────────────────────────────────────────────────────────────────────

    def _drift_snapshot(self) -> Dict[str, float]:
        return {
            side.value: round(book.last_drift.distance_pct, 6)
            for side, book in self.state.books.items()
            if book.last_drift is not None
        }

    def _observe(self, error: Optional[str]) -> TickObservation:
        return TickObservation(
            tick=self.state.tick_count,
            state=self.state.combined_state(),
            side_states={side.value: st.value for side, st in self.state.side_states().items()},
            tracked_counts=self.state.tracked_counts(),
            drift_percent=self._drift_snapshot(),
            action=self._action,
            error=error,
        )

    def _notify(self, obs: TickObservation) -> None:
        if self.observer is None:
            return
        try:
            self.observer(obs)
        except Exception as exc:
            log_event(log, "observer_error", level=logging.WARNING, error=str(exc))

    def _record_skip(self) -> None:
        self.state.skipped_ticks += 1
        log_event(log, "tick_skipped_busy", level=logging.WARNING, skipped=self.state.skipped_ticks)
        if self.metrics:
            self.metrics.record_skip()


async def run_reconciliation(
    config: "QuoteConfig",
    gateway: Optional[ExchangeGateway] = None,
    observer: Optional[Observer] = None,
    metrics: Optional["QuoteMetrics"] = None,
    alerts: Optional["AlertManager"] = None,
) -> None:
    """
    Run the loop until cancelled, then shut down cleanly.

    A gateway built here from the config is closed on exit; a passed-in
    gateway is left open for its owner.
    """
    owns_gateway = gateway is None
    if gateway is None:
        gateway = ExchangeGateway.from_config(config)
    if observer is None and metrics is not None:
        observer = metrics.observe

    loop = ReconciliationLoop(config, gateway, observer=observer, metrics=metrics, alerts=alerts)
    reason = "normal"
    try:
        await loop.start()
        await loop.wait()
    except asyncio.CancelledError:
        reason = "signal_received"
        raise
    except Exception:
        reason = "error"
        raise
    finally:
        await loop.stop(reason=reason)
        if owns_gateway:
            await gateway.close()
