"""Structured debug events (fetch / inject / evidence / crawler)."""

import os
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass(frozen=True)
class DebugEvent:
    ts: float
    category: str
    message: str
    data: Any = None


DebugSink = Callable[[DebugEvent], None]


class DebugLogger:
    """
    Forwards events to *sink* when enabled. A sink that raises is ignored.
    Without a sink, events go to the console logger (debug level), or to
    stderr when NOSQLSCAN_DEBUG_STDERR=1.
    """

    def __init__(self, enabled: bool = False, sink: Optional[DebugSink] = None, logger=None):
        self.enabled = bool(enabled)
        self.sink = sink
        self.logger = logger

    def emit(self, category: str, message: str, data: Any = None) -> None:
        if not self.enabled:
            return
        event = DebugEvent(ts=time.time(), category=category, message=message, data=data)
        if self.sink is not None:
            try:
                self.sink(event)
            except Exception:
                pass
        if self.sink is None or os.environ.get("NOSQLSCAN_DEBUG_STDERR") == "1":
            line = f"[DBG] {category} {message}"
            if self.logger and os.environ.get("NOSQLSCAN_DEBUG_STDERR") != "1":
                self.logger.debug(line)
            else:
                print(line, file=sys.stderr)
