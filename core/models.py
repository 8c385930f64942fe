"""
Core models for gemportal.

Design principles:
- Target references are immutable and always carry an explicit, typed port
- Request state is owned by exactly one request-handling context
- Fetch results own their body stream until the caller closes it
- No state here survives a process restart
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import BinaryIO, Optional, List, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


GEMINI_SCHEME = "gemini"


# ============================================================================
# Enums
# ============================================================================

class GatewayErrorCode(str, Enum):
    """Why did a gateway request fail?"""
    INVALID_TARGET_URL = "InvalidTargetURL"
    INVALID_HOST = "InvalidHost"
    PROHIBITED_HOST = "ProhibitedHost"  # IP literals
    INVALID_PORT = "InvalidPort"
    POLICY_DENIED = "PolicyDenied"  # robots.txt excludes the webproxy agent
    REDIRECT_LOOP_EXCEEDED = "RedirectLoopExceeded"
    UPSTREAM_UNAVAILABLE = "UpstreamUnavailable"  # Connection, TLS, socket timeout
    UPSTREAM_PROTOCOL_ERROR = "UpstreamProtocolError"
    RESPONSE_TOO_LARGE = "ResponseTooLarge"
    RENDERING_FAILURE = "RenderingFailure"


class FetchPurpose(str, Enum):
    """What was an outbound fetch for?"""
    DOCUMENT = "document"
    POLICY = "policy"


class StatusClass(int, Enum):
    """First digit of a two-digit Gemini status code, scaled by ten."""
    INPUT = 10
    SUCCESS = 20
    REDIRECT = 30
    TEMPORARY_FAILURE = 40
    PERMANENT_FAILURE = 50
    CLIENT_CERTIFICATE_REQUIRED = 60


# ============================================================================
# Target Reference
# ============================================================================

class TargetReference(BaseModel):
    """
    Canonical location of one Gemini resource.

    Invariants (enforced by address.resolver, which is the only producer):
    - port is always explicit and equals the configured default port
    - path is never empty ("/" at minimum)
    - query is kept percent-encoded, exactly as it goes on the wire

    Example:
      host = "geminiprotocol.net"
      port = 1965
      path = "/docs/"
      query = ""
      address -> "gemini://geminiprotocol.net:1965/docs/"
    """
    model_config = ConfigDict(frozen=True)

    host: str
    port: int
    path: str = "/"
    query: str = ""

    @property
    def hostport(self) -> str:
        """Cache key for per-host state (host:port)."""
        return f"{self.host}:{self.port}"

    @property
    def address(self) -> str:
        """Absolute Gemini URL including the explicit port."""
        value = f"{GEMINI_SCHEME}://{self.hostport}{self.path}"
        if self.query:
            value += "?" + self.query
        return value

    def with_path(self, path: str) -> "TargetReference":
        """Same host and port, new path, no query."""
        return TargetReference(host=self.host, port=self.port, path=path or "/", query="")

    def with_query(self, query: str) -> "TargetReference":
        return TargetReference(host=self.host, port=self.port, path=self.path, query=query)

    def pretty(self, default_port: int) -> str:
        """Short human form: no FQDN dot, no default port, no bare '/' path."""
        hostname = self.host
        if not hostname:
            return ""
        if hostname.endswith("."):
            hostname = hostname[:-1]

        port = f":{self.port}" if self.port != default_port else ""
        path = "" if self.path == "/" else self.path
        return hostname + port + path


# ============================================================================
# Fetch Result (transport collaborator output)
# ============================================================================

@dataclass(slots=True)
class GeminiResponse:
    """
    One Gemini response: status line plus an open body stream.

    The caller owns the body and must call close() on every code path.
    Usable as a context manager.
    """

    status: int
    meta: str
    body: BinaryIO
    resources: Tuple[object, ...] = field(default_factory=tuple)

    @property
    def status_class(self) -> int:
        return (self.status // 10) * 10

    def close(self) -> None:
        """Release the body stream and any transport resources behind it."""
        try:
            self.body.close()
        finally:
            for resource in self.resources:
                close = getattr(resource, "close", None)
                if close is not None:
                    close()

    def __enter__(self) -> "GeminiResponse":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


# ============================================================================
# Request State
# ============================================================================

class RequestState(BaseModel):
    """
    Mutable state of one inbound request.

    Owned exclusively by the orchestrator for the lifetime of the request
    and discarded when the response has been produced.
    """
    request_id: str = Field(default_factory=lambda: str(uuid4()))

    target: Optional[TargetReference] = None
    redirects: int = 0  # Monotonic, bounded by GatewayConfig.max_redirects

    insecure: bool = False  # TLS relaxation toggle (?insecure=on)
    raw: bool = False  # Raw passthrough toggle (?raw)
    input_value: Optional[str] = None  # Caller-supplied input (?query=...)
    input_prompt: Optional[str] = None  # Meta text of a 1x response
    input_sensitive: bool = False  # Status 11

    error: Optional[str] = None
    content: Optional[str] = None

    visited: List[str] = Field(default_factory=list)  # Addresses fetched, in order


# ============================================================================
# Fetch / Network Logging
# ============================================================================

class FetchLog(BaseModel):
    """
    Log entry for a single outbound Gemini fetch (document or policy).
    """
    id: str = Field(default_factory=lambda: str(uuid4()))
    address: str
    purpose: FetchPurpose = FetchPurpose.DOCUMENT

    status: Optional[int] = None  # Two-digit Gemini status
    meta: Optional[str] = None
    latency_ms: Optional[int] = None
    bytes_received: Optional[int] = None

    error_code: Optional[GatewayErrorCode] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    request_id: Optional[str] = None
