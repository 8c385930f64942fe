"""Address resolver and relative reference resolver tests."""

from __future__ import annotations

import pytest

from address.resolver import (
    MAX_ADDRESS_BYTES,
    UnsupportedReference,
    resolve_link,
    resolve_reference,
    resolve_target,
)
from core.errors import InvalidHost, InvalidPort, InvalidTargetURL, ProhibitedHost
from core.models import TargetReference


@pytest.mark.integration
def test_resolve_target_prepends_scheme_and_port():
    """Scheme-less input gets gemini:// and the explicit default port."""
    target = resolve_target("geminiprotocol.net/docs/", 1965)

    assert target.host == "geminiprotocol.net"
    assert target.port == 1965
    assert target.path == "/docs/"
    assert target.query == ""
    assert target.address == "gemini://geminiprotocol.net:1965/docs/"


@pytest.mark.integration
def test_resolve_target_normalizes_host_and_empty_path():
    target = resolve_target("gemini://Example.ORG", 1965)

    assert target.host == "example.org"
    assert target.path == "/"
    assert target.address == "gemini://example.org:1965/"


@pytest.mark.integration
def test_resolve_target_keeps_query_and_drops_fragment():
    target = resolve_target("example.org/search?hello%20world#top", 1965)

    assert target.path == "/search"
    assert target.query == "hello%20world"
    assert target.address == "gemini://example.org:1965/search?hello%20world"


@pytest.mark.integration
def test_resolve_target_accepts_protocol_relative_input():
    assert resolve_target("//example.org/a", 1965).address == "gemini://example.org:1965/a"


@pytest.mark.integration
def test_resolve_target_accepts_explicit_default_port():
    assert resolve_target("example.org:1965/a", 1965).port == 1965


@pytest.mark.integration
@pytest.mark.parametrize(
    ("raw", "error"),
    [
        ("example.org:1966/a", InvalidPort),
        ("example.org:abc/", InvalidTargetURL),
        ("127.0.0.1/x", ProhibitedHost),
        ("gemini://[::1]/x", ProhibitedHost),
        ("10.0.0.1", ProhibitedHost),
        ("localhost/x", InvalidHost),
        ("gemini:///just-a-path", InvalidHost),
        ("https://example.org/", InvalidTargetURL),
        ("", InvalidTargetURL),
        ("   ", InvalidTargetURL),
        ("example.org/a b", InvalidTargetURL),
        ("example.org/\x00", InvalidTargetURL),
        ("user@example.org/", InvalidTargetURL),
    ],
)
def test_resolve_target_rejects_invalid_addresses(raw: str, error: type):
    """Every rejection maps to exactly one error kind."""
    with pytest.raises(error):
        resolve_target(raw, 1965)


@pytest.mark.integration
def test_resolve_target_rejects_overlong_address():
    raw = "example.org/" + "a" * MAX_ADDRESS_BYTES

    with pytest.raises(InvalidTargetURL) as exc_info:
        resolve_target(raw, 1965)

    assert exc_info.value.address == raw


@pytest.mark.integration
def test_resolve_target_error_carries_offending_input():
    with pytest.raises(InvalidHost) as exc_info:
        resolve_target("localhost/x", 1965)

    assert exc_info.value.address == "localhost/x"
    assert exc_info.value.http_status == 400


@pytest.mark.integration
@pytest.mark.parametrize(
    ("base_path", "token", "expected"),
    [
        ("/~nana/", "tata/foo.txt", "gemini://test.com/~nana/tata/foo.txt"),
        ("/dir/page.gmi", "other.gmi", "gemini://test.com/dir/other.gmi"),
        ("/", "x", "gemini://test.com/x"),
        ("/dir/page.gmi", "/abs", "gemini://test.com/abs"),
        ("/dir/", "//other.net/p", "gemini://other.net/p"),
        ("/dir/", "gemini://other.net/p?q", "gemini://other.net/p?q"),
    ],
)
def test_resolve_reference(base_path: str, token: str, expected: str):
    base = TargetReference(host="test.com", port=1965, path=base_path)

    assert resolve_reference(base, token) == expected


@pytest.mark.integration
@pytest.mark.parametrize("token", ["https://example.com/", "mailto:someone@example.com", "gopher://x.org/"])
def test_resolve_reference_rejects_foreign_schemes(token: str):
    base = TargetReference(host="test.com", port=1965, path="/")

    with pytest.raises(UnsupportedReference):
        resolve_reference(base, token)


@pytest.mark.integration
def test_resolve_link_validates_the_resolved_address():
    base = TargetReference(host="test.com", port=1965, path="/dir/")

    assert resolve_link(base, "page.gmi", 1965).address == "gemini://test.com:1965/dir/page.gmi"
    with pytest.raises(ProhibitedHost):
        resolve_link(base, "gemini://192.168.1.1/", 1965)
    with pytest.raises(InvalidPort):
        resolve_link(base, "gemini://other.net:70/", 1965)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("target", "expected"),
    [
        (TargetReference(host="example.org.", port=1965, path="/"), "example.org"),
        (TargetReference(host="example.org", port=1965, path="/docs/"), "example.org/docs/"),
        (TargetReference(host="example.org", port=1966, path="/a"), "example.org:1966/a"),
    ],
)
def test_pretty_address(target: TargetReference, expected: str):
    assert target.pretty(1965) == expected


@pytest.mark.unit
def test_target_reference_with_path_clears_query():
    target = TargetReference(host="example.org", port=1965, path="/search", query="q")

    robots = target.with_path("/robots.txt")

    assert robots.address == "gemini://example.org:1965/robots.txt"
    assert robots.hostport == "example.org:1965"
