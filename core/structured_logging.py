"""Shared structured JSON logging helpers."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any, Callable


EventLogger = Callable[[str, dict[str, Any]], None]

LEVELS: dict[str, int] = {"debug": 10, "info": 20, "warning": 30, "error": 40}


def emit_json_event(
    event_type: str,
    *,
    request_id: str | None,
    level: str = "info",
    **payload: Any,
) -> str:
    """Emit one JSON event line to stdout and return the rendered line."""
    event: dict[str, Any] = {
        "event_type": event_type,
        "level": level,
        "timestamp": datetime.now(UTC).isoformat(),
        "request_id": request_id,
    }
    event.update(payload)
    line = json.dumps(event, ensure_ascii=True, sort_keys=True, default=str)
    print(line, flush=True)
    return line


def make_event_logger(min_level: str = "info") -> EventLogger:
    """Build an event sink that drops events below ``min_level``."""
    threshold = LEVELS.get(min_level, LEVELS["info"])

    def _log(event_type: str, payload: dict[str, Any]) -> None:
        fields = dict(payload)
        level = str(fields.pop("level", "info"))
        if LEVELS.get(level, LEVELS["info"]) < threshold:
            return
        request_id = fields.pop("request_id", None)
        emit_json_event(event_type, request_id=request_id, level=level, **fields)

    return _log


def null_event_logger(event_type: str, payload: dict[str, Any]) -> None:
    """Discard events."""
    _ = event_type, payload
