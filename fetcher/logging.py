"""Structured logging helpers for Gemini fetch operations."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from core.models import FetchLog


def _isoformat(value: datetime | None) -> str | None:
    """Serialize datetimes for logs."""
    if value is None:
        return None
    return value.isoformat()


def fetch_log_to_dict(fetch_log: FetchLog) -> dict[str, Any]:
    """Convert FetchLog to a JSON-safe dictionary."""
    return {
        "id": fetch_log.id,
        "address": fetch_log.address,
        "purpose": fetch_log.purpose.value,
        "status": fetch_log.status,
        "meta": fetch_log.meta,
        "latency_ms": fetch_log.latency_ms,
        "bytes_received": fetch_log.bytes_received,
        "error_code": fetch_log.error_code.value if fetch_log.error_code else None,
        "timestamp": _isoformat(fetch_log.created_at),
        "request_id": fetch_log.request_id,
    }
