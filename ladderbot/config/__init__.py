"""
Configuration package.

This package contains configuration loading and validation.
"""

from ladderbot.config.config import ExchangeCredentials, QuoteConfig
from ladderbot.config.config_validator import ConfigValidator, validate_and_log

__all__ = [
    "QuoteConfig",
    "ExchangeCredentials",
    "ConfigValidator",
    "validate_and_log",
]
