"""
Error taxonomy.

Each error is contained at the component that produced it; only NoLiquidity
and LadderFailed escalate to a failed tick, and no tick failure stops the
process. ConfigError is the one startup-fatal class.
"""

from __future__ import annotations

from typing import Optional


class LadderBotError(Exception):
    """Base class for all ladderbot errors."""


class ConfigError(LadderBotError):
    """Unrecoverable startup misconfiguration (credentials, unknown symbol)."""


class NoLiquidity(LadderBotError):
    """No bid/ask and no last trade available to derive a reference price."""


class PlacementError(LadderBotError):
    """A single limit order could not be placed."""

    reason = "placement_error"

    def __init__(self, message: str = "", order_side: Optional[str] = None) -> None:
        super().__init__(message or self.reason)
        self.order_side = order_side


class RateLimited(PlacementError):
    reason = "rate_limited"


class InsufficientBalance(PlacementError):
    reason = "insufficient_balance"


class BelowMinimum(PlacementError):
    reason = "below_minimum"


class LadderFailed(PlacementError):
    """Every rung of a non-empty ladder failed; escalates to a tick failure."""

    reason = "ladder_failed"


class CancelError(LadderBotError):
    """Cancellation failed for a reason other than the order already being gone."""


class BatchCancelUnsupported(CancelError):
    """The exchange offers no batch cancel; callers fall back to per-id cancels."""


class AlreadyGone(LadderBotError):
    """
    Cancel target was already filled or cancelled.

    Not a CancelError: the desired end state (order not resting) holds.
    """


class ReconciliationRace(LadderBotError):
    """Post-cancel verification still saw our orders resting; retried next tick."""

    def __init__(self, resting_ids=None) -> None:
        self.resting_ids = sorted(resting_ids or [])
        super().__init__(f"{len(self.resting_ids)} order(s) still resting after cancel")
