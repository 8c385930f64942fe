"""Gemtext handling: link rewriting, HTML conversion, sanitization."""

from parser.gemtext import GemtextConverter
from parser.links import LinkRewriter
from parser.sanitize import HtmlSanitizer

__all__ = ["GemtextConverter", "LinkRewriter", "HtmlSanitizer"]
