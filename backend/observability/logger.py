"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging

Third-party libraries (websockets, uvicorn) keep using stdlib logging;
configure_logging() only sets their levels so their chatter does not
drown the event stream.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from typing import Any, Callable, Mapping


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

# When False, events are rendered as "EVENT_TYPE key=value ..." for humans
_json_output: bool = True

_QUIET_LIBRARY_LOGGERS = (
    "websockets",
    "websockets.client",
    "websockets.server",
    "uvicorn.access",
)


def now_ms() -> int:
    """Wall-clock milliseconds for event timestamps."""
    return time.time_ns() // 1_000_000


def configure_logging(*, log_level: str = "INFO", json_output: bool = True) -> None:
    """
    Set the output mode and stdlib levels for library loggers.

    Called once from process entry points (console, client CLI).
    """
    global _json_output  # pylint: disable=global-statement
    _json_output = json_output

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(level=level, stream=sys.stderr)
    for name in _QUIET_LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def _render_text(event: Mapping[str, Any]) -> str:
    fields = " ".join(
        f"{k}={v}" for k, v in event.items() if k not in ("event_type", "ts_ms")
    )
    return f"{event.get('event_type', 'EVENT')} {fields}".rstrip()


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single event line to stdout.

    The caller supplies a dict with at least "event_type".
    "ts_ms" is filled in when missing.

    This function:
    - Serializes to JSON (or key=value text when JSON output is off)
    - Writes exactly one line
    - Flushes immediately (no buffering)
    - Never raises
    """
    if "ts_ms" not in event:
        event = {"ts_ms": now_ms(), **event}

    try:
        if _json_output:
            line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
        else:
            line = _render_text(event)
    except (TypeError, ValueError) as e:
        # Last-resort fallback: logging must never crash the runtime
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    try:
        _print(line)
    except (OSError, ValueError):
        # stdout closed (e.g. during interpreter shutdown)
        pass
