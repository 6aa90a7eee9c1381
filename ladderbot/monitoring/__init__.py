"""
Monitoring package.

Prometheus metrics and webhook alerting.
"""

from ladderbot.monitoring.alerting import (
    Alert,
    AlertConfig,
    AlertManager,
    AlertSeverity,
    AlertType,
    alert_manager_from_config,
)
from ladderbot.monitoring.metrics import QuoteMetrics, start_metrics_server

__all__ = [
    "Alert",
    "AlertConfig",
    "AlertManager",
    "AlertSeverity",
    "AlertType",
    "alert_manager_from_config",
    "QuoteMetrics",
    "start_metrics_server",
]
