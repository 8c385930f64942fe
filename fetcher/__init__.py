"""Fetcher subsystem: Gemini transport, bounded reads, and robots.txt policy."""

from fetcher.body import iter_bounded, read_bounded
from fetcher.gemini import GeminiTransport, status_text
from fetcher.logging import fetch_log_to_dict
from fetcher.robots import AccessPolicyCache, PolicyDecision, RobotsPolicyParser

__all__ = [
    "iter_bounded",
    "read_bounded",
    "GeminiTransport",
    "status_text",
    "fetch_log_to_dict",
    "AccessPolicyCache",
    "PolicyDecision",
    "RobotsPolicyParser",
]
