"""
Execution package - exchange access, order placement and order-state checks.
"""

from ladderbot.execution.drift_monitor import DriftMonitor, DriftReading, drift_percent
from ladderbot.execution.exchange_gateway import ExchangeGateway
from ladderbot.execution.order_diff import OrderDiff, diff
from ladderbot.execution.side_quoter import CancelResult, SideQuoter, SideQuoterConfig

__all__ = [
    "DriftMonitor",
    "DriftReading",
    "drift_percent",
    "ExchangeGateway",
    "OrderDiff",
    "diff",
    "CancelResult",
    "SideQuoter",
    "SideQuoterConfig",
]
