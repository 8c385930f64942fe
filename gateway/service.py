"""
Gateway service: one instance per process, shared by every request thread.

Routing (base href "/gem/"):
  /gem/                        → landing page
  /gem/?url=example.org/a      → 303 to /gem/example.org/a
  /gem/favicon.ico             → 404
  /gem/<host><path>[?query]    → fetch pipeline
  anything else                → redirect to /gem/ (308 GET, 303 otherwise)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from urllib.parse import parse_qsl, urlsplit

from core.config import GatewayConfig
from core.errors import GatewayError, RequestCancelled
from core.models import RequestState
from core.pipeline import Transport
from core.structured_logging import EventLogger, make_event_logger
from fetcher.gemini import GeminiTransport
from fetcher.robots import AccessPolicyCache
from gateway.inbound import INSECURE_PARAM, build_gateway_path, parse_inbound
from gateway.orchestrator import FetchOrchestrator
from gateway.page import URL_PARAM, render_page


HTML_CONTENT_TYPE = "text/html; charset=utf-8"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
FAVICON = "favicon.ico"
# Non-standard status for a request whose client disconnected; never written.
CLIENT_CLOSED_REQUEST = 499


@dataclass(slots=True)
class GatewayResponse:
    """Web-transport-neutral response produced by GatewayService.handle."""

    status: int
    body: bytes = b""
    headers: list[tuple[str, str]] = field(default_factory=list)
    # Raw passthrough: chunks are pulled from upstream while writing.
    stream: Iterator[bytes] | None = None
    on_close: Callable[[], None] | None = None

    def header(self, name: str) -> str | None:
        wanted = name.lower()
        for key, value in self.headers:
            if key.lower() == wanted:
                return value
        return None

    def iter_body(self) -> Iterator[bytes]:
        """
        Body chunks in write order.

        A streamed body may raise GatewayError or RequestCancelled part way
        through, after earlier chunks were already handed out.
        """
        if self.stream is None:
            if self.body:
                yield self.body
            return
        yield from self.stream

    def read(self) -> bytes:
        return b"".join(self.iter_body())

    def close(self) -> None:
        """Release the upstream response behind a streamed body, if any."""
        if self.on_close is not None:
            self.on_close()


class GatewayService:
    """Owns the shared policy cache and turns inbound requests into responses."""

    def __init__(
        self,
        config: GatewayConfig,
        transport: Transport | None = None,
        policy_cache: AccessPolicyCache | None = None,
        orchestrator: FetchOrchestrator | None = None,
        clock_fn: Callable[[], float] | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.config = config
        self.event_logger = event_logger or make_event_logger(config.log_level)
        clock = clock_fn or time.monotonic

        self.transport = transport or GeminiTransport(
            timeout_seconds=config.fetch_timeout_seconds,
            default_port=config.default_port,
        )
        self.policy_cache = policy_cache or AccessPolicyCache(
            self.transport,
            agent=config.robots_agent,
            ttl_seconds=config.robots_cache_ttl_seconds,
            purge_interval_seconds=config.robots_cache_purge_seconds,
            clock_fn=clock,
            event_logger=self.event_logger,
        )
        self.orchestrator = orchestrator or FetchOrchestrator(
            config,
            self.transport,
            self.policy_cache,
            clock_fn=clock,
            event_logger=self.event_logger,
        )

    def handle(
        self,
        method: str,
        raw_path: str,
        cancelled: Callable[[], bool] | None = None,
    ) -> GatewayResponse:
        """
        Answer one request; never raises.

        ``cancelled`` reports whether the client has gone away. Once it does,
        the upstream fetch is abandoned and the answer is a
        CLIENT_CLOSED_REQUEST response that should not be written. The caller
        must close() the response after writing it.
        """
        try:
            return self._route(method.upper(), raw_path, cancelled)
        except Exception as exc:
            self.event_logger(
                "gateway_unhandled_error",
                {
                    "request_id": None,
                    "level": "error",
                    "method": method,
                    "path": raw_path,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            state = RequestState(error="internal server error")
            return self._html(500, render_page(self.config, state))

    def _route(
        self,
        method: str,
        raw_path: str,
        cancelled: Callable[[], bool] | None,
    ) -> GatewayResponse:
        split = urlsplit(raw_path)
        path = split.path
        base = self.config.base_href

        if not path.startswith(base):
            return self._redirect(308 if method == "GET" else 303, base)
        if method != "GET":
            return self._redirect(303, base)

        if path == base:
            return self._index(split.query)

        rest = path[len(base):]
        if rest == FAVICON:
            return GatewayResponse(
                status=404,
                body=b"404 page not found\n",
                headers=[("Content-Type", TEXT_CONTENT_TYPE)],
            )

        return self._proxy(rest, split.query, cancelled)

    def _index(self, query_string: str) -> GatewayResponse:
        params = dict(reversed(parse_qsl(query_string, keep_blank_values=True)))
        address = params.get(URL_PARAM, "").strip()
        if not address:
            return self._html(200, render_page(self.config))

        location = build_gateway_path(
            self.config.base_href,
            address,
            insecure=params.get(INSECURE_PARAM) == "on",
        )
        return self._redirect(303, location)

    def _proxy(
        self,
        rest: str,
        query_string: str,
        cancelled: Callable[[], bool] | None,
    ) -> GatewayResponse:
        inbound = parse_inbound(rest, query_string)
        state = RequestState()
        try:
            result = self.orchestrator.run(inbound, state, cancelled=cancelled)
        except GatewayError as exc:
            return self._error_page(exc, state)
        except RequestCancelled:
            self.event_logger(
                "request_cancelled",
                {
                    "request_id": state.request_id,
                    "level": "info",
                    "address": state.target.address if state.target else None,
                    "redirects": state.redirects,
                },
            )
            return GatewayResponse(status=CLIENT_CLOSED_REQUEST)

        if result.is_raw:
            return GatewayResponse(
                status=200,
                headers=[("Content-Type", result.raw_content_type or "application/octet-stream")],
                stream=result.iter_raw(),
                on_close=result.close,
            )

        page = render_page(
            self.config,
            result.state,
            form_action=self.config.base_href + rest,
            hidden_fields=inbound.forwarded_query,
        )
        return self._html(200, page)

    def _error_page(self, exc: GatewayError, state: RequestState) -> GatewayResponse:
        self.event_logger(
            "gateway_error",
            {
                "request_id": state.request_id,
                "level": "warning" if exc.http_status >= 500 else "debug",
                "code": exc.code.value,
                "status": exc.http_status,
                "address": exc.address,
                "error": exc.message,
            },
        )
        state.error = exc.message
        state.content = None
        state.input_prompt = None
        return self._html(exc.http_status, render_page(self.config, state))

    @staticmethod
    def _html(status: int, page: str) -> GatewayResponse:
        return GatewayResponse(
            status=status,
            body=page.encode("utf-8"),
            headers=[("Content-Type", HTML_CONTENT_TYPE)],
        )

    @staticmethod
    def _redirect(status: int, location: str) -> GatewayResponse:
        return GatewayResponse(
            status=status,
            headers=[("Location", location), ("Content-Type", TEXT_CONTENT_TYPE)],
        )
