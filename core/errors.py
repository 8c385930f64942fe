"""Gateway error taxonomy and its mapping onto HTTP responses."""

from __future__ import annotations

import bleach

from core.models import GatewayErrorCode


class GatewayError(Exception):
    """Terminal failure of one gateway request. Never fatal to the process."""

    code: GatewayErrorCode = GatewayErrorCode.RENDERING_FAILURE
    http_status: int = 500
    default_message: str = "error processing Gemini response"

    def __init__(self, message: str | None = None, *, address: str | None = None) -> None:
        self.message = message or self.default_message
        self.address = address
        super().__init__(self.message)

    def display_message(self) -> str:
        """Capitalized message with all markup removed, safe to embed in HTML."""
        return display_text(self.message)


class InvalidTargetURL(GatewayError):
    code = GatewayErrorCode.INVALID_TARGET_URL
    http_status = 400
    default_message = "invalid Gemini URL"


class InvalidHost(GatewayError):
    code = GatewayErrorCode.INVALID_HOST
    http_status = 400
    default_message = "invalid host name"


class ProhibitedHost(GatewayError):
    code = GatewayErrorCode.PROHIBITED_HOST
    http_status = 400
    default_message = "IP addresses are prohibited"


class InvalidPort(GatewayError):
    code = GatewayErrorCode.INVALID_PORT
    http_status = 400
    default_message = "invalid Gemini port"


class PolicyDenied(GatewayError):
    code = GatewayErrorCode.POLICY_DENIED
    http_status = 403
    default_message = "the host does not allow webproxies on this path"


class RedirectLoopExceeded(GatewayError):
    code = GatewayErrorCode.REDIRECT_LOOP_EXCEEDED
    http_status = 502
    default_message = "too many redirects"


class UpstreamUnavailable(GatewayError):
    code = GatewayErrorCode.UPSTREAM_UNAVAILABLE
    http_status = 502
    default_message = "could not perform gemini request"


class UpstreamProtocolError(GatewayError):
    code = GatewayErrorCode.UPSTREAM_PROTOCOL_ERROR
    http_status = 502
    default_message = "invalid response from Gemini upstream"


class ResponseTooLarge(GatewayError):
    code = GatewayErrorCode.RESPONSE_TOO_LARGE
    http_status = 500
    default_message = "response limit reached"


class RenderingFailure(GatewayError):
    code = GatewayErrorCode.RENDERING_FAILURE
    http_status = 500
    default_message = "error processing Gemini response"


ERRORS_BY_CODE: dict[GatewayErrorCode, type[GatewayError]] = {
    cls.code: cls
    for cls in (
        InvalidTargetURL,
        InvalidHost,
        ProhibitedHost,
        InvalidPort,
        PolicyDenied,
        RedirectLoopExceeded,
        UpstreamUnavailable,
        UpstreamProtocolError,
        ResponseTooLarge,
        RenderingFailure,
    )
}


class TransportError(Exception):
    """Raised by a transport on connection, TLS, or status-line failure."""


class PolicyParseError(Exception):
    """Raised by a policy parser on malformed robots.txt content."""


class RequestCancelled(Exception):
    """The inbound client went away; the in-flight fetch is abandoned."""


def display_text(text: str) -> str:
    """Upper-case the first character and strip every tag."""
    if len(text) > 2:
        text = text[0].upper() + text[1:]
    return bleach.clean(text, tags=set(), attributes={}, strip=True)
