"""Gemini address validation, normalization, and relative reference resolution."""

from __future__ import annotations

import ipaddress
import posixpath
import re
from urllib.parse import SplitResult, urlsplit

from core.errors import InvalidHost, InvalidPort, InvalidTargetURL, ProhibitedHost
from core.models import GEMINI_SCHEME, TargetReference


# Gemini requests are limited to 1024 bytes of URL.
MAX_ADDRESS_BYTES = 1024

_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*)://")
_MAILTO_RE = re.compile(r"^mailto:", re.IGNORECASE)
_UNSAFE_CHARS_RE = re.compile(r"[\x00-\x20\x7f]")


class UnsupportedReference(ValueError):
    """Raised when a link token points outside of Gemini (e.g. https://, mailto:)."""


def _is_ip_literal(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname.rstrip("."))
    except ValueError:
        return False
    return True


def resolve_target(raw: str, default_port: int) -> TargetReference:
    """
    Validate and normalize a raw address into a TargetReference.

    Rules:
    - Prepend ``gemini://`` when no scheme is present; reject other schemes
    - Host must not be an IP literal, and must contain a dot
    - An explicit port must equal ``default_port``
    - Port is always set to ``default_port``; empty path becomes ``/``
    - Fragment is dropped, query is kept as sent
    """
    address = raw.strip()
    if not address or _UNSAFE_CHARS_RE.search(address):
        raise InvalidTargetURL(address=raw)

    match = _SCHEME_RE.match(address)
    if match is None:
        if address.startswith("//"):
            address = f"{GEMINI_SCHEME}:{address}"
        else:
            address = f"{GEMINI_SCHEME}://{address}"
    elif match.group(1).lower() != GEMINI_SCHEME:
        raise InvalidTargetURL(address=raw)

    if len(address.encode("utf-8")) > MAX_ADDRESS_BYTES:
        raise InvalidTargetURL("address exceeds 1024 bytes", address=raw)

    try:
        parsed = urlsplit_strict(address)
        hostname = parsed.hostname or ""
        port = parsed.port
    except ValueError as exc:
        raise InvalidTargetURL(address=raw) from exc

    if parsed.username is not None or parsed.password is not None:
        raise InvalidTargetURL(address=raw)

    if hostname and _is_ip_literal(hostname):
        raise ProhibitedHost(address=raw)
    if not hostname or "." not in hostname:
        raise InvalidHost(address=raw)

    if port is not None and port != default_port:
        raise InvalidPort(address=raw)

    return TargetReference(
        host=hostname,
        port=default_port,
        path=parsed.path or "/",
        query=parsed.query,
    )


def urlsplit_strict(address: str) -> SplitResult:
    """urlsplit that also surfaces bracket/port errors eagerly."""
    parsed = urlsplit(address)
    # Accessing .port raises ValueError for non-numeric or out-of-range ports.
    _ = parsed.port
    return parsed


def resolve_reference(base: TargetReference, token: str) -> str:
    """
    Expand a link token into an absolute ``gemini://`` address string.

    - ``gemini://...`` is returned as-is
    - other ``scheme://`` tokens and ``mailto:`` are rejected
    - ``//host/path`` inherits the gemini scheme
    - ``/path`` replaces the base path entirely
    - anything else is appended to the directory of the base path

    e.g. "tata/foo.txt" on "gemini://test.com/~nana/" → "gemini://test.com/~nana/tata/foo.txt"
    """
    match = _SCHEME_RE.match(token)
    if match is not None:
        if match.group(1).lower() == GEMINI_SCHEME:
            return token
        raise UnsupportedReference(f"not applicable to this gateway: {token}")
    if _MAILTO_RE.match(token):
        raise UnsupportedReference(f"not applicable to this gateway: {token}")

    if token.startswith("//"):
        return f"{GEMINI_SCHEME}:{token}"

    rel_dir = ""
    if not token.startswith("/"):
        rel_dir = posixpath.dirname(base.path)
        if not rel_dir.endswith("/"):
            rel_dir += "/"

    return f"{GEMINI_SCHEME}://{base.host}{rel_dir}{token}"


def resolve_link(base: TargetReference, token: str, default_port: int) -> TargetReference:
    """Resolve a token against ``base`` and run full address validation on it."""
    return resolve_target(resolve_reference(base, token), default_port)
