"""HTML allow-list sanitizer for converted Gemini documents."""

from __future__ import annotations

from functools import partial

from bleach.linkifier import LinkifyFilter
from bleach.sanitizer import Cleaner

from core.pipeline import Sanitizer


ALLOWED_TAGS = frozenset(
    {
        "a", "abbr", "b", "blockquote", "br", "code", "dd", "del", "dl", "dt",
        "em", "h1", "h2", "h3", "h4", "h5", "h6", "hr", "i", "img", "ins", "li",
        "ol", "p", "pre", "q", "s", "small", "span", "strong", "sub", "sup",
        "table", "tbody", "td", "tfoot", "th", "thead", "tr", "u", "ul",
    }
)
ALLOWED_ATTRIBUTES = {
    "a": ["href", "title", "rel"],
    "img": ["src", "alt", "title"],
    "pre": ["title"],
    "abbr": ["title"],
    "q": ["cite"],
}
ALLOWED_PROTOCOLS = frozenset({"http", "https", "mailto"})

LINK_REL = "nofollow noreferrer"


def _nofollow_noreferrer(attrs: dict, new: bool = False) -> dict | None:
    """Mark existing anchors; never turn plain text into links."""
    if new:
        return None
    attrs[(None, "rel")] = LINK_REL
    return attrs


class HtmlSanitizer(Sanitizer):
    """bleach-based sanitizer: UGC tag set, no scripts, nofollow/noreferrer links."""

    def __init__(self) -> None:
        self._cleaner = Cleaner(
            tags=ALLOWED_TAGS,
            attributes=ALLOWED_ATTRIBUTES,
            protocols=ALLOWED_PROTOCOLS,
            strip=True,
            strip_comments=True,
            filters=[partial(LinkifyFilter, callbacks=[_nofollow_noreferrer], parse_email=False)],
        )

    def sanitize(self, raw_html: str) -> str:
        return self._cleaner.clean(raw_html)
