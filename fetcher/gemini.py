"""Gemini transport: one TLS request, one status line, an open body stream."""

from __future__ import annotations

import re
import socket
import ssl
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import BinaryIO
from urllib.parse import urlsplit

from cryptography import x509
from cryptography.x509.oid import NameOID

from core.errors import TransportError
from core.models import GeminiResponse
from core.pipeline import Transport
from fetcher.body import CHUNK_SIZE


# Gemini status codes and their display texts.
STATUS_INPUT = 10
STATUS_SENSITIVE_INPUT = 11
STATUS_SUCCESS = 20
STATUS_REDIRECT_TEMPORARY = 30
STATUS_REDIRECT_PERMANENT = 31
STATUS_NOT_FOUND = 51

STATUS_TEXT: dict[int, str] = {
    10: "Input",
    11: "Sensitive Input",
    20: "Success",
    21: "End Of Client Certificate Session",
    30: "Temporary Redirect",
    31: "Permanent Redirect",
    40: "Temporary Failure",
    41: "Unavailable",
    42: "CGI Error",
    43: "Proxy Error",
    44: "Slow Down",
    50: "Permanent Failure",
    51: "Not Found",
    52: "Gone",
    53: "Proxy Request Refused",
    59: "Bad Request",
    60: "Client Certificate Required",
    61: "Transient Certificate Requested",
    62: "Authorised Certificate Required",
    63: "Certificate Not Accepted",
    64: "Future Certificate Rejected",
    65: "Expired Certificate Rejected",
}

DEFAULT_PORT = 1965

# <STATUS><SPACE><META><CR><LF>, META is at most 1024 bytes.
MAX_HEADER_BYTES = 2 + 1 + 1024 + 2
_HEADER_RE = re.compile(r"^([1-6][0-9])(?:[ \t](.*))?$")


def status_text(code: int) -> str:
    """Display text for a status code; empty for unknown codes."""
    return STATUS_TEXT.get(code, "")


def parse_header(line: bytes) -> tuple[int, str]:
    """Parse a raw status line (CRLF included) into (status, meta)."""
    if not line.endswith(b"\n"):
        raise TransportError("gemini header missing or too long")
    try:
        text = line.decode("utf-8").rstrip("\r\n")
    except UnicodeDecodeError as exc:
        raise TransportError("gemini header is not valid UTF-8") from exc

    match = _HEADER_RE.match(text)
    if match is None:
        raise TransportError(f"malformed gemini header: {text[:64]!r}")
    return int(match.group(1)), (match.group(2) or "").strip()


def _remaining(deadline: float, clock_fn: Callable[[], float]) -> float:
    remaining = deadline - clock_fn()
    if remaining <= 0:
        raise TimeoutError("gemini fetch deadline exceeded")
    return remaining


class DeadlineReader:
    """
    Buffered socket reader whose reads share one overall fetch deadline.

    Before each read the socket timeout is cut to the time left, and every
    read performs at most one receive, so a peer trickling bytes cannot hold
    the fetch open past the deadline. Expiry raises TimeoutError (an OSError).
    """

    def __init__(
        self,
        stream: BinaryIO,
        sock: socket.socket,
        deadline: float,
        clock_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stream = stream
        self._sock = sock
        self._deadline = deadline
        self._clock = clock_fn

    @property
    def closed(self) -> bool:
        return self._stream.closed

    def _arm(self) -> None:
        self._sock.settimeout(_remaining(self._deadline, self._clock))

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            chunks = []
            while True:
                chunk = self.read(CHUNK_SIZE)
                if not chunk:
                    return b"".join(chunks)
                chunks.append(chunk)
        self._arm()
        return self._stream.read1(size)

    def readline(self, limit: int = MAX_HEADER_BYTES) -> bytes:
        """Read through the first LF, at most ``limit`` bytes, without over-reading."""
        line = b""
        while len(line) < limit:
            self._arm()
            peeked = self._stream.peek(1)[: limit - len(line)]
            if not peeked:
                break
            end = peeked.find(b"\n")
            line += self._stream.read(len(peeked) if end < 0 else end + 1)
            if end >= 0:
                break
        return line

    def close(self) -> None:
        self._stream.close()


def _hostname_matches(pattern: str, hostname: str) -> bool:
    pattern = pattern.lower().rstrip(".")
    hostname = hostname.lower().rstrip(".")
    if pattern.startswith("*."):
        label, _, rest = hostname.partition(".")
        return bool(label) and rest == pattern[2:]
    return pattern == hostname


def _certificate_names(cert: x509.Certificate) -> list[str]:
    """SAN DNS names and IPs; the subject CN only when there is no SAN."""
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return [str(attr.value) for attr in cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)]
    names = list(san.get_values_for_type(x509.DNSName))
    names.extend(str(ip) for ip in san.get_values_for_type(x509.IPAddress))
    return names


def verify_peer_certificate(der: bytes | None, hostname: str, now: datetime | None = None) -> None:
    """
    Check a server certificate's validity window and hostname.

    The issuer chain is not checked, so self-signed capsule certificates
    pass. Raises TransportError on any failure.
    """
    if not der:
        raise TransportError("gemini server sent no certificate")
    try:
        cert = x509.load_der_x509_certificate(der)
    except ValueError as exc:
        raise TransportError(f"unreadable server certificate: {exc}") from exc

    now = now or datetime.now(timezone.utc)
    if now < cert.not_valid_before_utc:
        raise TransportError("server certificate is not yet valid")
    if now > cert.not_valid_after_utc:
        raise TransportError("server certificate has expired")
    if not any(_hostname_matches(name, hostname) for name in _certificate_names(cert)):
        raise TransportError(f"server certificate is not valid for {hostname}")


class GeminiTransport(Transport):
    """
    Blocking Gemini client.

    ``timeout_seconds`` is one deadline for the whole fetch: connect,
    handshake, header and body. Unless ``insecure``, the peer certificate
    must be current and name the host.
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        default_port: int = DEFAULT_PORT,
        clock_fn: Callable[[], float] | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.default_port = default_port
        self._clock = clock_fn or time.monotonic
        self._context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        self._context.minimum_version = ssl.TLSVersion.TLSv1_2
        self._context.check_hostname = False
        self._context.verify_mode = ssl.CERT_NONE

    def fetch(self, address: str, insecure: bool = False) -> GeminiResponse:
        """Send ``address`` and return the response with its body still open."""
        parsed = urlsplit(address)
        host = parsed.hostname
        if not host:
            raise TransportError(f"no host in address: {address}")
        try:
            port = parsed.port or self.default_port
        except ValueError as exc:
            raise TransportError(f"bad port in address: {address}") from exc

        deadline = self._clock() + self.timeout_seconds
        sock: socket.socket | None = None
        stream: DeadlineReader | None = None
        try:
            raw_sock = socket.create_connection((host, port), timeout=self.timeout_seconds)
            sock = raw_sock
            raw_sock.settimeout(_remaining(deadline, self._clock))
            sock = self._context.wrap_socket(raw_sock, server_hostname=host)
            if not insecure:
                verify_peer_certificate(sock.getpeercert(binary_form=True), host)
            sock.settimeout(_remaining(deadline, self._clock))
            sock.sendall(address.encode("utf-8") + b"\r\n")
            stream = DeadlineReader(sock.makefile("rb"), sock, deadline, self._clock)
            status, meta = parse_header(stream.readline(MAX_HEADER_BYTES))
        except (TransportError, OSError) as exc:
            if stream is not None:
                stream.close()
            if sock is not None:
                sock.close()
            if isinstance(exc, TransportError):
                raise
            raise TransportError(str(exc) or type(exc).__name__) from exc

        return GeminiResponse(status=status, meta=meta, body=stream, resources=(sock,))
