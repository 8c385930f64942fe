"""Inbound web request contract: path after the base href plus query conventions."""

from __future__ import annotations

from urllib.parse import parse_qsl, quote, unquote, urlencode

from pydantic import BaseModel, Field

from core.models import GEMINI_SCHEME


INPUT_PARAM = "query"
RAW_PARAM = "raw"
INSECURE_PARAM = "insecure"


class InboundRequest(BaseModel):
    """
    One gateway request as seen by the orchestrator.

    Example (base href "/gem/"):
      GET /gem/example.org/search?query=hello&insecure=on&theme=dark
      → path = "example.org/search"
        input_value = "hello"
        insecure = True
        forwarded_query = [("insecure", "on"), ("theme", "dark")]
    """
    path: str
    input_value: str | None = None
    raw: bool = False
    insecure: bool = False

    # Carried over into every rewritten link of the rendered page.
    forwarded_query: list[tuple[str, str]] = Field(default_factory=list)


def parse_inbound(path: str, query_string: str = "") -> InboundRequest:
    """Split a query string into gateway toggles and forwarded parameters."""
    input_value: str | None = None
    raw = False
    insecure = False
    forwarded: list[tuple[str, str]] = []
    seen: set[str] = set()

    for key, value in parse_qsl(query_string, keep_blank_values=True):
        # First value wins for every key.
        if key in seen:
            continue
        seen.add(key)

        if key == INPUT_PARAM:
            input_value = value
        elif key == RAW_PARAM:
            raw = True
        elif key == INSECURE_PARAM:
            insecure = value == "on"
            forwarded.append((key, value))
        else:
            forwarded.append((key, value))

    return InboundRequest(
        path=path,
        input_value=input_value,
        raw=raw,
        insecure=insecure,
        forwarded_query=forwarded,
    )


def build_gateway_path(base_href: str, address: str, *, insecure: bool = False, raw: bool = False) -> str:
    """
    Gateway path that serves a Gemini address; the inverse of parse_inbound.

    "gemini://a.com/search?hello%20world" → "<base>a.com/search?query=hello+world"
    """
    address = address.strip().partition("#")[0]
    prefix = f"{GEMINI_SCHEME}://"
    if address.lower().startswith(prefix):
        address = address[len(prefix):]

    path, _, gemini_query = address.lstrip("/").partition("?")
    query: list[tuple[str, str]] = []
    if gemini_query:
        query.append((INPUT_PARAM, unquote(gemini_query)))
    if insecure:
        query.append((INSECURE_PARAM, "on"))
    if raw:
        query.append((RAW_PARAM, ""))

    gateway_path = base_href + quote(path, safe="/%:@~+,;=!$&'()*")
    if query:
        gateway_path += "?" + urlencode(query)
    return gateway_path
