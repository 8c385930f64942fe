"""
Collaborator interfaces for gemportal.

A gateway request moves through these stages:
resolve → policy check → transport fetch → (redirect ⇒ policy check again)
→ bounded read → link rewrite → convert → sanitize → page

The request-resolution pipeline (address, policy cache, redirect loop,
bounded read, link rewrite) is implemented in this repository. The four
stages below are consumed as black boxes and can be swapped for fakes in
tests or for other implementations in production.
"""

from abc import ABC, abstractmethod

from core.models import GeminiResponse


# ============================================================================
# Stage Interfaces
# ============================================================================

class Transport(ABC):
    """
    Transport stage: given an absolute Gemini address, perform one request.

    Responsibilities:
    - Connection setup with a deadline
    - TLS (verification relaxed when ``insecure`` is set)
    - Status line parsing

    Not responsible for redirects, robots.txt, or body size limits.
    """

    @abstractmethod
    def fetch(self, address: str, insecure: bool = False) -> GeminiResponse:
        """
        Fetch one Gemini address.

        Args:
            address: Absolute ``gemini://`` URL
            insecure: Disable TLS certificate checks

        Returns:
            GeminiResponse with an open body stream. The caller owns the
            stream and must close it on every code path.

        Raises:
            TransportError: Connection, TLS, timeout, or malformed status line
        """
        pass


class AccessPolicy(ABC):
    """Parsed robots.txt rules for one host."""

    @abstractmethod
    def allowed(self, path: str, agent: str) -> bool:
        """
        Return True if ``agent`` may fetch ``path``.

        Only rule groups that name ``agent`` explicitly are considered;
        anything else defaults to allowed.
        """
        pass


class PolicyParser(ABC):
    """Policy parser stage: robots.txt bytes → AccessPolicy."""

    @abstractmethod
    def parse(self, data: bytes) -> AccessPolicy:
        """
        Parse robots.txt content.

        Raises:
            PolicyParseError: If the content cannot be parsed
        """
        pass


class DocumentConverter(ABC):
    """Convert stage: gemtext → (possibly unsafe) HTML fragment."""

    @abstractmethod
    def convert(self, text: str, base_address: str) -> str:
        """
        Convert gemtext to HTML.

        Args:
            text: Gemtext document, links already rewritten
            base_address: Absolute address of the document (for relative links)
        """
        pass


class Sanitizer(ABC):
    """
    Sanitize stage: untrusted HTML → safe HTML.

    Must strip executable content and mark every link nofollow/noreferrer.
    """

    @abstractmethod
    def sanitize(self, raw_html: str) -> str:
        pass
