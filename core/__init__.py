"""Core module for gemportal."""

from core.models import (
    FetchLog,
    FetchPurpose,
    GatewayErrorCode,
    GeminiResponse,
    RequestState,
    StatusClass,
    TargetReference,
)
from core.config import GatewayConfig

__all__ = [
    "FetchLog",
    "FetchPurpose",
    "GatewayErrorCode",
    "GeminiResponse",
    "RequestState",
    "StatusClass",
    "TargetReference",
    "GatewayConfig",
]
