"""
Orchestrator package - the reconciliation loop and the state it owns.
"""

from ladderbot.orchestrator.quoting_state import QuotingState, SideBook, SideState
from ladderbot.orchestrator.reconciliation_loop import (
    ReconciliationLoop,
    TickObservation,
    run_reconciliation,
)

__all__ = [
    "QuotingState",
    "SideBook",
    "SideState",
    "ReconciliationLoop",
    "TickObservation",
    "run_reconciliation",
]
