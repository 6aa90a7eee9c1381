"""
Pre-flight checks on a loaded QuoteConfig.

QuoteConfig.load() already rejects values that cannot be parsed. The checks
here catch values that parse fine but would make the ladder misbehave:
ERROR blocks startup, WARNING is logged, INFO is a note for the operator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from ladderbot.core.types import PriceReference, QuoteMode

logger = logging.getLogger("ladderbot")


class ValidationSeverity(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class ValidationIssue:
    field: str
    message: str
    severity: ValidationSeverity
    value: Any = None
    suggestion: Optional[str] = None

    def describe(self) -> str:
        text = f"CONFIG {self.severity.name}: {self.message}"
        return f"{text} (suggestion: {self.suggestion})" if self.suggestion else text


@dataclass
class ValidationResult:
    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)

    def _of(self, severity: ValidationSeverity) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity is severity]

    def get_errors(self) -> List[ValidationIssue]:
        return self._of(ValidationSeverity.ERROR)

    def get_warnings(self) -> List[ValidationIssue]:
        return self._of(ValidationSeverity.WARNING)

    def has_errors(self) -> bool:
        return bool(self.get_errors())

    def has_warnings(self) -> bool:
        return bool(self.get_warnings())


Check = Callable[[Any], List[ValidationIssue]]

# Inclusive (low, high) bounds per QuoteConfig attribute.
BOUNDS: Dict[str, Tuple[float, float]] = {
    "spread_pct": (0.01, 90.0),
    "orders_per_side": (1, 200),
    "drift_threshold_pct": (0.01, 100.0),
    "tick_interval_sec": (0.5, 3600.0),
    "order_delay_ms": (0, 10000),
    "rate_limit_backoff_sec": (0.0, 120.0),
    "cancel_settle_sec": (0.0, 60.0),
    "max_drain_attempts": (1, 1000),
    "http_timeout_ms": (1000, 120000),
}

MIN_RUNG_NOTIONAL = 1.0
HEAVY_LADDER_ORDERS = 60


def _bounds(cfg) -> Iterator[ValidationIssue]:
    for name, (low, high) in BOUNDS.items():
        value = getattr(cfg, name, None)
        if value is None:
            continue
        if value < low:
            yield ValidationIssue(name, f"{name}={value} is below {low}", ValidationSeverity.ERROR,
                                  value, f"use {low} or more")
        elif value > high:
            yield ValidationIssue(name, f"{name}={value} is above {high}", ValidationSeverity.ERROR,
                                  value, f"use {high} or less")


def _budgets(cfg) -> Iterator[ValidationIssue]:
    for side in cfg.quoted_sides:
        name = f"{side.value}_total_notional"
        budget = cfg.budget_for(side)
        if budget <= 0:
            yield ValidationIssue(name, f"{side.value} side has no budget", ValidationSeverity.ERROR,
                                  budget, "set TOTAL_QUOTE_AMOUNT or the per-side amount")
            continue
        rung = budget / max(cfg.orders_per_side, 1)
        if rung < MIN_RUNG_NOTIONAL:
            yield ValidationIssue(
                name, f"{side.value} rungs average {rung:.4f} {cfg.quote_currency}",
                ValidationSeverity.WARNING, rung,
                "orders this small are usually below the exchange minimum",
            )


def _ladder_shape(cfg) -> Iterator[ValidationIssue]:
    step = cfg.spread_pct / max(cfg.orders_per_side, 1)
    if cfg.drift_threshold_pct < step:
        yield ValidationIssue(
            "drift_threshold_pct",
            f"drift threshold {cfg.drift_threshold_pct}% is tighter than one rung ({step:.4f}%)",
            ValidationSeverity.WARNING, cfg.drift_threshold_pct,
            "expect the ladder to be replaced on nearly every tick",
        )
    resting = cfg.orders_per_side * len(cfg.quoted_sides)
    if resting > HEAVY_LADDER_ORDERS:
        yield ValidationIssue(
            "orders_per_side", f"each refresh places {resting} orders", ValidationSeverity.WARNING,
            cfg.orders_per_side,
        )
    if cfg.tick_interval_sec < 1.0:
        yield ValidationIssue(
            "tick_interval_sec", f"polling every {cfg.tick_interval_sec}s risks exchange rate limits",
            ValidationSeverity.WARNING, cfg.tick_interval_sec,
        )


def _notes(cfg) -> Iterator[ValidationIssue]:
    if cfg.mode is QuoteMode.MONO and cfg.price_reference is PriceReference.MID:
        yield ValidationIssue("price_reference", "mono ladder anchored on mid sits half a spread inside the book",
                              ValidationSeverity.INFO)
    if cfg.testnet:
        yield ValidationIssue("testnet", "sandbox endpoints in use", ValidationSeverity.INFO)
    if cfg.alert_enabled and not cfg.alert_webhook_url:
        yield ValidationIssue("alert_webhook_url", "alerts enabled without a webhook; they will only be logged",
                              ValidationSeverity.INFO)


_BUILTIN_CHECKS = (_bounds, _budgets, _ladder_shape, _notes)


class ConfigValidator:
    """Runs the built-in checks, then any registered with register_validator()."""

    def __init__(self) -> None:
        self._extra: List[Check] = []

    def register_validator(self, check: Check) -> None:
        self._extra.append(check)

    def validate(self, cfg) -> ValidationResult:
        issues: List[ValidationIssue] = []
        for check in _BUILTIN_CHECKS:
            issues.extend(check(cfg))
        for check in self._extra:
            try:
                issues.extend(check(cfg) or [])
            except Exception as exc:
                issues.append(ValidationIssue(
                    getattr(check, "__name__", "custom"), f"validator raised {exc!r}", ValidationSeverity.ERROR,
                ))
        return ValidationResult(
            valid=not any(i.severity is ValidationSeverity.ERROR for i in issues),
            issues=issues,
        )


def validate_config(cfg) -> ValidationResult:
    return ConfigValidator().validate(cfg)


def validate_and_log(cfg, logger_instance: Optional[logging.Logger] = None) -> bool:
    """
    Validate and report every error and warning. INFO notes go to debug.

    Returns True when nothing blocks startup.
    """
    log = logger_instance or logger
    result = validate_config(cfg)
    levels = {
        ValidationSeverity.ERROR: logging.ERROR,
        ValidationSeverity.WARNING: logging.WARNING,
        ValidationSeverity.INFO: logging.DEBUG,
    }
    for issue in result.issues:
        log.log(levels[issue.severity], issue.describe())

    if result.valid:
        log.info("configuration checks passed")
    else:
        log.error("configuration rejected: %d error(s)", len(result.get_errors()))
    return result.valid
