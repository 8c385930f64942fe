"""Gemtext to HTML conversion."""

from __future__ import annotations

import posixpath
import re
from html import escape
from urllib.parse import urlsplit

from core.pipeline import DocumentConverter


_LINK_RE = re.compile(r"^=>[ \t]*(?P<target>[^ \t]+)(?:[ \t]+(?P<label>.*))?$")
_HEADING_RE = re.compile(r"^(?P<level>#{1,3})[ \t]*(?P<text>.*)$")
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*:")


def physical_lines(text: str) -> list[str]:
    """Split on LF only, keeping terminators; other Unicode breaks stay inside a line."""
    lines = text.split("\n")
    tail = lines.pop()
    out = [line + "\n" for line in lines]
    if tail:
        out.append(tail)
    return out


def _absolute_href(target: str, base_address: str) -> str:
    """Resolve a leftover relative target against the document address."""
    if _SCHEME_RE.match(target) or target.startswith("/"):
        return target
    base = urlsplit(base_address)
    if not base.netloc:
        return target
    directory = posixpath.dirname(base.path or "/")
    if not directory.endswith("/"):
        directory += "/"
    return f"{base.scheme}://{base.netloc}{directory}{target}"


class GemtextConverter(DocumentConverter):
    """Line-based converter: every gemtext line maps to exactly one HTML block."""

    def convert(self, text: str, base_address: str) -> str:
        out: list[str] = []
        in_pre = False
        in_list = False

        for line in physical_lines(text):
            line = line.rstrip("\r\n")
            if line.startswith("```"):
                if in_list:
                    out.append("</ul>")
                    in_list = False
                if in_pre:
                    out.append("</pre>")
                else:
                    alt = line[3:].strip()
                    out.append(f'<pre title="{escape(alt)}">' if alt else "<pre>")
                in_pre = not in_pre
                continue

            if in_pre:
                out.append(escape(line, quote=False))
                continue

            if line.startswith("* "):
                if not in_list:
                    out.append("<ul>")
                    in_list = True
                out.append(f"<li>{escape(line[2:].strip(), quote=False)}</li>")
                continue
            if in_list:
                out.append("</ul>")
                in_list = False

            out.append(self._block(line, base_address))

        if in_list:
            out.append("</ul>")
        if in_pre:
            out.append("</pre>")
        return "\n".join(out)

    def _block(self, line: str, base_address: str) -> str:
        link = _LINK_RE.match(line)
        if link:
            target = link.group("target")
            label = (link.group("label") or "").strip() or target
            href = escape(_absolute_href(target, base_address))
            return f'<p><a href="{href}">{escape(label, quote=False)}</a></p>'

        heading = _HEADING_RE.match(line)
        if heading:
            level = len(heading.group("level"))
            return f"<h{level}>{escape(heading.group('text').strip(), quote=False)}</h{level}>"

        if line.startswith(">"):
            return f"<blockquote>{escape(line[1:].strip(), quote=False)}</blockquote>"

        if not line.strip():
            return "<br>"

        return f"<p>{escape(line, quote=False)}</p>"
