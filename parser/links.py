"""Rewrite gemtext link lines so navigation stays inside the gateway."""

from __future__ import annotations

import re
from collections.abc import Iterable
from urllib.parse import parse_qsl, urlencode

from address.resolver import UnsupportedReference, resolve_link
from core.errors import GatewayError
from core.models import TargetReference
from core.structured_logging import EventLogger, null_event_logger
from parser.gemtext import physical_lines


# One link per physical line: "=>", optional blanks, target, then the label verbatim.
_LINK_LINE_RE = re.compile(r"^(?P<prefix>=>[ \t]*)(?P<target>[^ \t]+)(?P<rest>.*)$")

INPUT_PARAM = "query"


class LinkRewriter:
    """Point every Gemini link at ``<base_href><host><path>`` on this gateway."""

    def __init__(
        self,
        base_href: str,
        default_port: int,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.base_href = base_href
        self.default_port = default_port
        self._event_logger = event_logger or null_event_logger

    def rewrite(
        self,
        text: str,
        current: TargetReference,
        forwarded_query: Iterable[tuple[str, str]] = (),
        request_id: str | None = None,
    ) -> str:
        """
        Rewrite link targets in ``text``; every other byte is passed through.

        Lines whose target is not a Gemini address (https://, mailto:, bad
        host, ...) are left completely unmodified.
        """
        forwarded = list(forwarded_query)
        out: list[str] = []
        for line in physical_lines(text):
            content = line.rstrip("\r\n")
            match = _LINK_LINE_RE.match(content)
            if match is None:
                out.append(line)
                continue

            link = self.gateway_link(current, match.group("target"), forwarded)
            if link is None:
                self._event_logger(
                    "link_skipped",
                    {"request_id": request_id, "level": "debug", "line": content},
                )
                out.append(line)
                continue

            self._event_logger(
                "link_rewritten",
                {"request_id": request_id, "level": "debug", "from": match.group("target"), "to": link},
            )
            out.append(match.group("prefix") + link + match.group("rest") + line[len(content):])
        return "".join(out)

    def gateway_link(
        self,
        current: TargetReference,
        token: str,
        forwarded_query: Iterable[tuple[str, str]] = (),
    ) -> str | None:
        """Gateway-relative link for ``token``, or None if it cannot be proxied."""
        try:
            target = resolve_link(current, token, self.default_port)
        except (UnsupportedReference, GatewayError):
            return None

        query: list[tuple[str, str]] = []
        # A Gemini query is free text; it travels as the first key.
        if target.query:
            pairs = parse_qsl(target.query, keep_blank_values=True)
            if pairs:
                query.append((INPUT_PARAM, pairs[0][0]))
        query.extend(forwarded_query)

        link = self.base_href + (target.host + target.path).lstrip("/")
        if query:
            link += "?" + urlencode(query)
        return link
