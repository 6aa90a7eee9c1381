"""
Logging setup for the ladder bot.

Console: rich, with repetitive per-tick events throttled.
File: one flat JSON object per line, written from a background thread so a
slow disk never stalls the event loop.

Components log through log_event(), which renders a JSON payload as the
message; JsonLinesFormatter lifts those fields into the file record.
"""

from __future__ import annotations

import atexit
import logging
import queue
import sys
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Set, Tuple

from rich.logging import RichHandler

from ladderbot.core.json_utils import dumps, loads

DEFAULT_THROTTLED_EVENTS = frozenset({"tick_skipped_busy", "reconcile_race", "tick_error"})

_STOP = object()


def _event_payload(record: logging.LogRecord) -> Optional[dict]:
    """The dict behind a log_event() message, or None for plain text."""
    msg = record.getMessage()
    if not msg.startswith("{"):
        return None
    try:
        data = loads(msg)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class JsonLinesFormatter(logging.Formatter):
    """
    Flat JSON lines: timestamp, level and logger name, then either the event
    fields or the plain message under "msg".
    """

    def format(self, record: logging.LogRecord) -> str:
        line = {
            "ts": round(record.created, 3),
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
        }
        fields = _event_payload(record)
        if fields is None:
            line["msg"] = record.getMessage()
        else:
            line.update(fields)
        if record.exc_info:
            line["exc"] = self.formatException(record.exc_info)
        return dumps(line)


class QueuedFileHandler(logging.Handler):
    """
    Appends formatted records to a file from a daemon thread.

    emit() never blocks; when the queue is full the record is dropped and
    counted. close() drains what is queued before closing the file.
    """

    def __init__(self, path: str, max_pending: int = 10000) -> None:
        super().__init__()
        self._sink = logging.FileHandler(path)
        self._pending: queue.Queue = queue.Queue(maxsize=max_pending)
        self._dropped = 0
        self._closed = False
        self._writer = threading.Thread(target=self._drain, name="ladderbot-log-writer", daemon=True)
        self._writer.start()
        atexit.register(self.close)

    @property
    def dropped(self) -> int:
        return self._dropped

    def setFormatter(self, fmt: Optional[logging.Formatter]) -> None:
        super().setFormatter(fmt)
        self._sink.setFormatter(fmt)

    def emit(self, record: logging.LogRecord) -> None:
        if self._closed:
            return
        try:
            self._pending.put_nowait(record)
        except queue.Full:
            self._dropped += 1

    def flush(self) -> None:
        self._pending.join()
        self._sink.flush()

    def _drain(self) -> None:
        while True:
            item = self._pending.get()
            try:
                if item is _STOP:
                    return
                self._sink.handle(item)
            finally:
                self._pending.task_done()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._pending.put(_STOP)
        self._writer.join(timeout=2.0)
        if self._dropped:
            sys.stderr.write(f"ladderbot: {self._dropped} log records dropped (writer queue full)\n")
        self._sink.close()
        super().close()


class EventThrottle(logging.Filter):
    """
    Lets the first of a repetitive event through, then mutes the same
    (event, side) pair for cooldown_sec. Everything else passes.
    """

    def __init__(
        self,
        cooldown_sec: float = 30.0,
        events: Optional[Set[str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self.cooldown_sec = cooldown_sec
        self.events = frozenset(events or DEFAULT_THROTTLED_EVENTS)
        self._clock = clock
        self._muted_until: Dict[Tuple[str, str], float] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        fields = _event_payload(record)
        if fields is None or fields.get("event") not in self.events:
            return True
        key = (fields["event"], str(fields.get("side", "")))
        now = self._clock()
        if now < self._muted_until.get(key, float("-inf")):
            return False
        self._muted_until[key] = now + self.cooldown_sec
        return True


def _console_handler(level: int, cooldown_sec: float) -> logging.Handler:
    handler = RichHandler(show_path=False, markup=False, rich_tracebacks=False)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    if cooldown_sec > 0:
        handler.addFilter(EventThrottle(cooldown_sec))
    return handler


def _file_handler(path: str, level: int, background: bool) -> logging.Handler:
    handler: logging.Handler = QueuedFileHandler(path) if background else logging.FileHandler(path)
    handler.setLevel(level)
    handler.setFormatter(JsonLinesFormatter())
    return handler


def build_logger(
    name: str = "ladderbot",
    level: int = logging.INFO,
    file_path: Optional[str] = None,
    async_file: bool = True,
    throttle_cooldown_sec: float = 30.0,
) -> logging.Logger:
    """
    Configure and return the process logger.

    Calling it again for the same name only adjusts levels.

    Args:
        name: Logger name
        level: Minimum level for the logger and its handlers
        file_path: JSON-lines file, or None for console only
        async_file: Write the file from a background thread
        throttle_cooldown_sec: Console mute window for repetitive events (0 disables)
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    logger.addHandler(_console_handler(level, throttle_cooldown_sec))
    if file_path:
        logger.addHandler(_file_handler(file_path, level, async_file))
    logger.propagate = False
    return logger


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **data) -> None:
    """
    Log a structured event.

        log_event(log, "order_placed", side="ask", px=102.5)
    """
    if logger.isEnabledFor(level):
        logger.log(level, dumps({"event": event, **data}))
