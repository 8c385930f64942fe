"""
Shared pytest fixtures and configuration for gemportal tests.
"""

from __future__ import annotations

import io
import threading
from typing import Any, Callable

import pytest

from core.config import GatewayConfig
from core.models import GeminiResponse
from core.pipeline import Transport


# ============================================================================
# Fakes: Transport
# ============================================================================

def make_response(status: int, meta: str = "", body: bytes = b"") -> GeminiResponse:
    """GeminiResponse over an in-memory body; ``body.closed`` tracks release."""
    return GeminiResponse(status=status, meta=meta, body=io.BytesIO(body))


class FakeTransport(Transport):
    """
    Route-table transport for deterministic Gemini behavior.

    A route value is one of:
    - (status, meta, body) tuple
    - an Exception instance (raised)
    - a callable returning a GeminiResponse
    - a list of the above, consumed in order (the last one repeats)

    Unknown addresses answer 51 Not Found, so robots.txt is absent by default.
    """

    def __init__(self, routes: dict[str, Any] | None = None) -> None:
        self.routes: dict[str, Any] = dict(routes or {})
        self.calls: list[tuple[str, bool]] = []
        self.responses: list[GeminiResponse] = []
        self._lock = threading.Lock()

    def add(self, address: str, status: int, meta: str = "", body: bytes = b"") -> None:
        self.routes[address] = (status, meta, body)

    def fetch(self, address: str, insecure: bool = False) -> GeminiResponse:
        with self._lock:
            self.calls.append((address, insecure))
            route = self.routes.get(address, (51, "Not found", b""))
            if isinstance(route, list):
                route = route.pop(0) if len(route) > 1 else route[0]

        if isinstance(route, Exception):
            raise route
        if callable(route):
            response = route()
        else:
            status, meta, body = route
            response = make_response(status, meta, body)

        with self._lock:
            self.responses.append(response)
        return response

    def addresses(self) -> list[str]:
        return [address for address, _ in self.calls]

    def document_addresses(self) -> list[str]:
        return [address for address, _ in self.calls if not address.endswith("/robots.txt")]


class EventRecorder:
    """event_logger stand-in that keeps every event in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, event_type: str, payload: dict[str, Any]) -> None:
        self.events.append((event_type, dict(payload)))

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [payload for kind, payload in self.events if kind == event_type]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def config() -> GatewayConfig:
    """Default settings, isolated from any local .env file."""
    return GatewayConfig(_env_file=None)


@pytest.fixture
def make_config() -> Callable[..., GatewayConfig]:
    def _make(**overrides: Any) -> GatewayConfig:
        return GatewayConfig(_env_file=None, **overrides)

    return _make


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def events() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "contract: error taxonomy and configuration contract tests")
    config.addinivalue_line("markers", "integration: end-to-end integration tests")
    config.addinivalue_line("markers", "unit: unit tests")
