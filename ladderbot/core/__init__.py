"""
Core value types, error taxonomy and precision helpers shared by every layer.
"""

from ladderbot.core.errors import (
    AlreadyGone,
    BatchCancelUnsupported,
    BelowMinimum,
    CancelError,
    ConfigError,
    InsufficientBalance,
    LadderBotError,
    LadderFailed,
    NoLiquidity,
    PlacementError,
    RateLimited,
    ReconciliationRace,
)
from ladderbot.core.types import (
    MarketConstraints,
    OrderCandidate,
    OrderSnapshot,
    PlacedOrder,
    PriceReference,
    QuoteMode,
    ReferenceQuote,
    Rung,
    Side,
)

__all__ = [
    "AlreadyGone",
    "BatchCancelUnsupported",
    "BelowMinimum",
    "CancelError",
    "ConfigError",
    "InsufficientBalance",
    "LadderBotError",
    "LadderFailed",
    "NoLiquidity",
    "PlacementError",
    "RateLimited",
    "ReconciliationRace",
    "MarketConstraints",
    "OrderCandidate",
    "OrderSnapshot",
    "PlacedOrder",
    "PriceReference",
    "QuoteMode",
    "ReferenceQuote",
    "Rung",
    "Side",
]
