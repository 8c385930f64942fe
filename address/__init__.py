"""Address handling: Gemini URL validation, normalization, and relative links."""

from address.resolver import UnsupportedReference, resolve_link, resolve_reference, resolve_target

__all__ = ["UnsupportedReference", "resolve_link", "resolve_reference", "resolve_target"]
