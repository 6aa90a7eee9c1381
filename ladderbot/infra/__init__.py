"""
Infrastructure package.

This package contains logging configuration.
"""

from ladderbot.infra.logging_cfg import build_logger, log_event

__all__ = [
    "build_logger",
    "log_event",
]
