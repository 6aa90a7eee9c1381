"""
Fast JSON utilities for structured log payloads.

Usage:
    from ladderbot.core.json_utils import dumps

    log.info(dumps({"event": "order_placed", "px": 100.0}))
"""

from __future__ import annotations

from typing import Any

import orjson

_OPTS = orjson.OPT_NON_STR_KEYS | orjson.OPT_SERIALIZE_NUMPY


def _default(obj: Any) -> Any:
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    return str(obj)


def dumps(obj: Any) -> str:
    """Encode to a compact JSON string."""
    return orjson.dumps(obj, default=_default, option=_OPTS).decode("utf-8")


def dumps_bytes(obj: Any) -> bytes:
    """Encode to bytes, skipping the utf-8 decode."""
    return orjson.dumps(obj, default=_default, option=_OPTS)


def loads(s: str | bytes) -> Any:
    return orjson.loads(s)
