"""
Redirect-bounded fetch orchestrator.

Drives one inbound request through:
resolve → policy check → fetch → classify
  input    → prompt page
  redirect → resolve new address, count the hop, back to policy check
  success  → raw mode: stream the body through under the ceiling
             otherwise: bounded read → link rewrite → convert → sanitize
  other    → upstream error

Redirects are followed in a loop; every hop re-checks robots.txt because
each hop may land on a different host.
"""

from __future__ import annotations

import codecs
import re
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from html import escape
from urllib.parse import quote

from address.resolver import UnsupportedReference, resolve_link, resolve_target
from core.config import GatewayConfig
from core.errors import (
    GatewayError,
    PolicyDenied,
    RedirectLoopExceeded,
    RenderingFailure,
    RequestCancelled,
    TransportError,
    UpstreamProtocolError,
    UpstreamUnavailable,
)
from core.models import (
    FetchLog,
    FetchPurpose,
    GatewayErrorCode,
    GeminiResponse,
    RequestState,
    StatusClass,
    TargetReference,
)
from core.pipeline import DocumentConverter, Sanitizer, Transport
from core.structured_logging import EventLogger, null_event_logger
from fetcher.body import iter_bounded, read_bounded
from fetcher.gemini import STATUS_SENSITIVE_INPUT, status_text
from fetcher.logging import fetch_log_to_dict
from fetcher.robots import AccessPolicyCache
from gateway.inbound import InboundRequest, RAW_PARAM
from parser.gemtext import GemtextConverter
from parser.links import LinkRewriter
from parser.sanitize import HtmlSanitizer


DEFAULT_META = "text/gemini; charset=utf-8"
GEMTEXT_MEDIA_TYPE = "text/gemini"

_TOKEN = r"[A-Za-z0-9!#$&^_.+\-]+"
_MEDIA_TYPE_RE = re.compile(rf"^(?P<type>{_TOKEN})/(?P<subtype>{_TOKEN})[ \t]*(?P<params>;.*)?\Z")
_TOKEN_RE = re.compile(rf"{_TOKEN}\Z")
# Anything but tab and printable ASCII.
_UNSAFE_META_RE = re.compile(r"[^\t\x20-\x7e]")


def parse_media_type(meta: str) -> tuple[str, dict[str, str]]:
    """Split a success meta into (lowercase media type, parameters)."""
    meta = meta.strip() or DEFAULT_META
    match = None if _UNSAFE_META_RE.search(meta) else _MEDIA_TYPE_RE.match(meta)
    if match is None:
        raise UpstreamProtocolError(f"Gemini upstream set bad MIME type: {meta!r}")

    params: dict[str, str] = {}
    for part in (match.group("params") or "").split(";"):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        key = key.strip().lower()
        if _TOKEN_RE.match(key):
            params[key] = value.strip().strip('"')
    media_type = f"{match.group('type')}/{match.group('subtype')}".lower()
    return media_type, params


def format_media_type(media_type: str, params: dict[str, str]) -> str:
    """Content-Type value rebuilt from parsed parts; never echoes upstream bytes."""
    parts = [media_type]
    for key, value in params.items():
        if not _TOKEN_RE.match(value):
            value = '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
        parts.append(f"{key}={value}")
    return "; ".join(parts)


def _decode(data: bytes, charset: str | None) -> str:
    encoding = "utf-8"
    if charset:
        try:
            encoding = codecs.lookup(charset).name
        except LookupError:
            encoding = "utf-8"
    return data.decode(encoding, errors="replace")


@dataclass(slots=True)
class RenderResult:
    """
    Outcome of one successful pipeline run.

    Either an HTML fragment / prompt carried in ``state`` (page mode), or an
    open upstream response to stream through verbatim (raw mode). A raw
    result owns that response: iterate ``iter_raw()`` or call ``close()``.
    """

    state: RequestState
    raw_response: GeminiResponse | None = None
    raw_content_type: str | None = None
    raw_limit: int = 0
    cancelled: Callable[[], bool] | None = None

    @property
    def is_raw(self) -> bool:
        return self.raw_response is not None

    def iter_raw(self) -> Iterator[bytes]:
        """Body chunks up to the ceiling; the upstream response is closed afterwards."""
        if self.raw_response is None:
            return
        try:
            yield from iter_bounded(self.raw_response.body, self.raw_limit, cancelled=self.cancelled)
        finally:
            self.raw_response.close()

    def close(self) -> None:
        if self.raw_response is not None:
            self.raw_response.close()


class FetchOrchestrator:
    """Resolve, authorize, fetch, and render one Gemini resource per request."""

    def __init__(
        self,
        config: GatewayConfig,
        transport: Transport,
        policy_cache: AccessPolicyCache,
        link_rewriter: LinkRewriter | None = None,
        converter: DocumentConverter | None = None,
        sanitizer: Sanitizer | None = None,
        clock_fn: Callable[[], float] | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        """Wire collaborators; defaults are the bundled gemtext/bleach implementations."""
        self.config = config
        self.transport = transport
        self.policy_cache = policy_cache
        self._event_logger = event_logger or null_event_logger
        self.link_rewriter = link_rewriter or LinkRewriter(
            base_href=config.base_href,
            default_port=config.default_port,
            event_logger=self._event_logger,
        )
        self.converter = converter or GemtextConverter()
        self.sanitizer = sanitizer or HtmlSanitizer()
        self._clock = clock_fn or time.monotonic

    def run(
        self,
        inbound: InboundRequest,
        state: RequestState | None = None,
        cancelled: Callable[[], bool] | None = None,
    ) -> RenderResult:
        """
        Execute the pipeline for one inbound request.

        ``cancelled`` is polled before every hop and between body chunks; once
        it returns True the open upstream response is closed and
        RequestCancelled propagates.

        Raises:
            GatewayError: Any classified failure; ``address`` is always set
            RequestCancelled: The inbound client went away
        """
        state = state or RequestState()
        state.insecure = inbound.insecure
        state.raw = inbound.raw
        state.input_value = inbound.input_value

        try:
            return self._run(inbound, state, cancelled)
        except GatewayError as exc:
            if exc.address is None:
                exc.address = state.target.address if state.target else inbound.path
            state.error = exc.message
            raise

    def _run(
        self,
        inbound: InboundRequest,
        state: RequestState,
        cancelled: Callable[[], bool] | None,
    ) -> RenderResult:
        target = resolve_target(inbound.path, self.config.default_port)
        if state.input_value:
            target = target.with_query(_quote_input(state.input_value))

        while True:
            if cancelled is not None and cancelled():
                raise RequestCancelled()
            state.target = target
            self._check_policy(target, state)

            response = self._fetch(target, state)
            handed_off = False
            try:
                status_class = response.status_class

                if status_class == StatusClass.INPUT:
                    state.input_prompt = response.meta
                    state.input_sensitive = response.status == STATUS_SENSITIVE_INPUT
                    return RenderResult(state=state)

                if status_class == StatusClass.REDIRECT:
                    target = self._next_hop(target, response, state)
                    continue

                if status_class != StatusClass.SUCCESS:
                    raise UpstreamProtocolError(
                        f"Gemini upstream reported '{status_text(response.status)}' ({response.status})",
                        address=target.address,
                    )

                result = self._render_success(inbound, state, target, response, cancelled)
                handed_off = result.is_raw
                return result
            finally:
                if not handed_off:
                    response.close()

    def _check_policy(self, target: TargetReference, state: RequestState) -> None:
        decision = self.policy_cache.evaluate(target, request_id=state.request_id)
        if not decision.allowed:
            raise PolicyDenied(address=target.address)

    def _fetch(self, target: TargetReference, state: RequestState) -> GeminiResponse:
        start = self._clock()
        log = FetchLog(address=target.address, purpose=FetchPurpose.DOCUMENT, request_id=state.request_id)
        try:
            response = self.transport.fetch(target.address, insecure=state.insecure)
        except TransportError as exc:
            log.error_code = GatewayErrorCode.UPSTREAM_UNAVAILABLE
            self._log_fetch(log, start)
            raise UpstreamUnavailable(
                f"could not perform gemini request: {exc}",
                address=target.address,
            ) from exc

        log.status = response.status
        log.meta = response.meta
        self._log_fetch(log, start)
        state.visited.append(target.address)
        return response

    def _next_hop(self, current: TargetReference, response: GeminiResponse, state: RequestState) -> TargetReference:
        try:
            new_target = resolve_link(current, response.meta.strip(), self.config.default_port)
        except (UnsupportedReference, GatewayError) as exc:
            raise UpstreamProtocolError(
                f"invalid {status_text(response.status)} to '{response.meta}'",
                address=current.address,
            ) from exc

        state.redirects += 1
        if state.redirects > self.config.max_redirects:
            raise RedirectLoopExceeded(address=new_target.address)
        return new_target

    def _render_success(
        self,
        inbound: InboundRequest,
        state: RequestState,
        target: TargetReference,
        response: GeminiResponse,
        cancelled: Callable[[], bool] | None,
    ) -> RenderResult:
        media_type, params = parse_media_type(response.meta)
        is_image = media_type.startswith("image/")

        if state.raw:
            return RenderResult(
                state=state,
                raw_response=response,
                raw_content_type=format_media_type(media_type, params),
                raw_limit=self.config.resp_mem_limit_img if is_image else self.config.resp_mem_limit,
                cancelled=cancelled,
            )

        if is_image:
            src = self._raw_link(target, inbound)
            state.content = f'<img src="{escape(src)}" alt="{escape(target.address)}">'
            return RenderResult(state=state)

        if not media_type.startswith("text/"):
            src = self._raw_link(target, inbound)
            state.content = (
                f"<p>This resource has the media type <code>{escape(media_type)}</code>.</p>"
                f'<p><a href="{escape(src)}">Download it</a></p>'
            )
            return RenderResult(state=state)

        body = read_bounded(response.body, self.config.resp_mem_limit, cancelled=cancelled)
        text = _decode(body, params.get("charset"))
        state.content = self._render_text(text, media_type, inbound, state, target)
        return RenderResult(state=state)

    def _render_text(
        self,
        text: str,
        media_type: str,
        inbound: InboundRequest,
        state: RequestState,
        target: TargetReference,
    ) -> str:
        if media_type != GEMTEXT_MEDIA_TYPE:
            return f"<pre>{escape(text, quote=False)}</pre>"

        rewritten = self.link_rewriter.rewrite(
            text,
            target,
            forwarded_query=inbound.forwarded_query,
            request_id=state.request_id,
        )
        try:
            unsafe_html = self.converter.convert(rewritten, target.address)
            return self.sanitizer.sanitize(unsafe_html)
        except Exception as exc:
            raise RenderingFailure(address=target.address) from exc

    def _raw_link(self, target: TargetReference, inbound: InboundRequest) -> str:
        forwarded = [*inbound.forwarded_query, (RAW_PARAM, "")]
        link = self.link_rewriter.gateway_link(target, target.address, forwarded)
        return link or self.config.base_href

    def _log_fetch(self, log: FetchLog, start: float) -> None:
        log.latency_ms = int((self._clock() - start) * 1000)
        payload = fetch_log_to_dict(log)
        payload["level"] = "debug"
        self._event_logger("gemini_fetch", payload)


def _quote_input(value: str) -> str:
    """Percent-encode user input for the Gemini query component."""
    return quote(value, safe="")
