"""Gateway service tests: routing, pages, error responses, and the HTTP server."""

from __future__ import annotations

import io
import socket
import threading
import time
from contextlib import contextmanager

import pytest
import requests

from core.models import GeminiResponse
from gateway.server import client_disconnected, make_server
from gateway.service import CLIENT_CLOSED_REQUEST, GatewayService


HOME = "gemini://a.com:1965/"
ROBOTS_A = "gemini://a.com:1965/robots.txt"


@pytest.fixture
def service(config, fake_transport, events) -> GatewayService:
    return GatewayService(config, transport=fake_transport, event_logger=events)


def _body(response) -> str:
    return response.body.decode("utf-8")


@pytest.mark.integration
def test_index_page(service):
    response = service.handle("GET", "/")

    assert response.status == 200
    assert response.header("Content-Type") == "text/html; charset=utf-8"
    assert "<title>Gemportal</title>" in _body(response)
    assert "Simple Gemini HTTP portal for port 1965." in _body(response)
    assert 'name="url"' in _body(response)
    assert 'name="insecure"' in _body(response)


@pytest.mark.integration
@pytest.mark.parametrize(
    ("raw_path", "location"),
    [
        ("/?url=gemini%3A%2F%2Fa.com%2Fx", "/a.com/x"),
        ("/?url=a.com%2Fx&insecure=on", "/a.com/x?insecure=on"),
        ("/?url=a.com%2Fsearch%3Fterm&insecure=on", "/a.com/search?query=term&insecure=on"),
    ],
)
def test_url_form_redirects_to_gateway_path(service, raw_path: str, location: str):
    response = service.handle("GET", raw_path)

    assert response.status == 303
    assert response.header("Location") == location


@pytest.mark.integration
def test_favicon_is_not_proxied(service, fake_transport):
    response = service.handle("GET", "/favicon.ico")

    assert response.status == 404
    assert fake_transport.calls == []


@pytest.mark.integration
@pytest.mark.parametrize(
    ("method", "raw_path", "status"),
    [
        ("GET", "/elsewhere", 308),
        ("POST", "/elsewhere", 303),
        ("POST", "/gem/a.com/", 303),
        ("DELETE", "/gem/", 303),
    ],
)
def test_requests_outside_base_or_non_get_are_redirected(make_config, fake_transport, events, method, raw_path, status):
    service = GatewayService(make_config(base_href="/gem/"), transport=fake_transport, event_logger=events)

    response = service.handle(method, raw_path)

    assert response.status == status
    assert response.header("Location") == "/gem/"
    assert fake_transport.calls == []


@pytest.mark.integration
def test_document_page(service, fake_transport):
    fake_transport.add("gemini://a.com:1965/docs/", 20, "text/gemini", b"# Docs\n=> intro.gmi Intro\n")

    response = service.handle("GET", "/a.com/docs/")
    page = _body(response)

    assert response.status == 200
    assert "<title>a.com/docs/ - Gemportal</title>" in page
    assert "<h1>Docs</h1>" in page
    assert 'href="/a.com/docs/intro.gmi"' in page
    assert 'value="a.com/docs/"' in page


@pytest.mark.integration
def test_base_href_is_stripped_before_resolution(make_config, fake_transport, events):
    service = GatewayService(make_config(base_href="/gem/"), transport=fake_transport, event_logger=events)
    fake_transport.add(HOME, 20, "text/gemini", b"=> next.gmi")

    page = _body(service.handle("GET", "/gem/a.com/"))

    assert 'href="/gem/a.com/next.gmi"' in page
    assert HOME in fake_transport.addresses()


@pytest.mark.integration
def test_policy_denied_page(service, fake_transport, events):
    fake_transport.add(ROBOTS_A, 20, "text/plain", b"User-agent: webproxy\nDisallow: /\n")

    response = service.handle("GET", "/a.com/")

    assert response.status == 403
    assert "The host does not allow webproxies on this path" in _body(response)
    assert events.of_type("gateway_error")[0]["level"] == "debug"


@pytest.mark.integration
@pytest.mark.parametrize(
    ("raw_path", "status", "message"),
    [
        ("/localhost/", 400, "Invalid host name"),
        ("/127.0.0.1/", 400, "IP addresses are prohibited"),
        ("/a.com:70/", 400, "Invalid Gemini port"),
    ],
)
def test_address_errors_are_bad_requests(service, fake_transport, raw_path, status, message):
    response = service.handle("GET", raw_path)

    assert response.status == status
    assert message in _body(response)
    assert fake_transport.calls == []


@pytest.mark.integration
def test_server_side_errors_are_logged_with_address(service, fake_transport, events):
    fake_transport.add(HOME, 42, "cgi broke")

    response = service.handle("GET", "/a.com/")

    assert response.status == 502
    assert "Gemini upstream reported" in _body(response)
    assert "CGI Error" in _body(response)
    logged = events.of_type("gateway_error")[0]
    assert logged["level"] == "warning"
    assert logged["address"] == HOME
    assert logged["code"] == "UpstreamProtocolError"


@pytest.mark.integration
def test_error_text_never_carries_markup(service, fake_transport):
    fake_transport.add(HOME, 30, "https://<script>alert(1)</script>")

    page = _body(service.handle("GET", "/a.com/"))

    assert "<script>" not in page
    assert "Invalid Temporary Redirect" in page


@pytest.mark.integration
def test_raw_passthrough_response(service, fake_transport):
    fake_transport.add("gemini://a.com:1965/pic.png", 20, "image/png", b"\x89PNG")

    response = service.handle("GET", "/a.com/pic.png?raw")

    assert response.status == 200
    assert response.header("Content-Type") == "image/png"
    assert response.header("Content-Length") is None
    assert response.read() == b"\x89PNG"
    assert fake_transport.responses[-1].body.closed


@pytest.mark.integration
def test_sensitive_input_prompt_page(service, fake_transport):
    fake_transport.add("gemini://a.com:1965/login", 11, "Password?")

    page = _body(service.handle("GET", "/a.com/login?insecure=on"))

    assert "Password?" in page
    assert 'type="password" name="query"' in page
    assert 'action="/a.com/login"' in page
    assert '<input type="hidden" name="insecure" value="on">' in page


@pytest.mark.integration
def test_unexpected_failure_becomes_generic_500(service, fake_transport, events):
    fake_transport.routes[ROBOTS_A] = RuntimeError("boom")

    response = service.handle("GET", "/a.com/")

    assert response.status == 500
    assert "Internal server error" in _body(response)
    assert events.of_type("gateway_unhandled_error")[0]["error"] == "boom"

    # The service keeps answering after the failure.
    assert service.handle("GET", "/").status == 200


@pytest.mark.integration
def test_policy_cache_is_shared_across_requests(service, fake_transport):
    fake_transport.add(HOME, 20, "text/gemini", b"hi")

    service.handle("GET", "/a.com/")
    service.handle("GET", "/a.com/")

    assert fake_transport.addresses().count(ROBOTS_A) == 1


@pytest.mark.integration
def test_raw_meta_cannot_inject_headers(service, fake_transport):
    fake_transport.add("gemini://a.com:1965/i.png", 20, "image/png;\rSet-Cookie: x=1", b"\x89PNG")

    response = service.handle("GET", "/a.com/i.png?raw")

    assert response.status == 502
    assert response.header("Set-Cookie") is None
    assert response.header("Content-Type") == "text/html; charset=utf-8"
    assert "\r" not in _body(response)


@pytest.mark.integration
def test_cancelled_request_is_not_answered(service, fake_transport, events):
    fake_transport.add(HOME, 30, "/next")
    checks = iter([False, True])

    response = service.handle("GET", "/a.com/", cancelled=lambda: next(checks))

    assert response.status == CLIENT_CLOSED_REQUEST
    assert fake_transport.document_addresses() == [HOME]
    cancelled = events.of_type("request_cancelled")[0]
    assert cancelled["address"] == HOME
    assert cancelled["redirects"] == 1


class EndlessBody(io.RawIOBase):
    """A body that never ends; counts reads and records release."""

    def __init__(self) -> None:
        self.reads = 0

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        self.reads += 1
        time.sleep(0.01)
        return b"x" * 64


def _wait_for(condition, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not condition():
        assert time.monotonic() < deadline, "condition not met in time"
        time.sleep(0.01)


@contextmanager
def _serving(service):
    """Real ThreadingHTTPServer on an ephemeral port."""
    httpd = make_server(service, host="127.0.0.1", port=0)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        yield httpd
    finally:
        httpd.shutdown()
        httpd.server_close()
        thread.join(timeout=5)


@pytest.mark.integration
def test_http_server_round_trip(service, fake_transport):
    fake_transport.add(HOME, 20, "text/gemini", b"# Over the wire")
    fake_transport.add("gemini://a.com:1965/pic.png", 20, "image/png", b"\x89PNG" * 5000)

    with _serving(service) as httpd:
        base = f"http://127.0.0.1:{httpd.server_address[1]}"
        page = requests.get(f"{base}/a.com/", timeout=5)
        raw = requests.get(f"{base}/a.com/pic.png?raw", timeout=5)
        redirect = requests.get(f"{base}/?url=a.com", timeout=5, allow_redirects=False)
        missing = requests.get(f"{base}/favicon.ico", timeout=5)
        head = requests.head(f"{base}/", timeout=5, allow_redirects=False)

    assert page.status_code == 200
    assert "<h1>Over the wire</h1>" in page.text
    assert raw.status_code == 200
    assert raw.headers["Content-Type"] == "image/png"
    assert "Content-Length" not in raw.headers
    assert raw.content == b"\x89PNG" * 5000
    assert redirect.status_code == 303
    assert redirect.headers["Location"] == "/a.com"
    assert missing.status_code == 404
    assert head.status_code == 303
    _wait_for(lambda: all(response.body.closed for response in fake_transport.responses))


@pytest.mark.integration
def test_client_disconnect_abandons_the_upstream_fetch(service, fake_transport, events):
    body = EndlessBody()
    fake_transport.routes[HOME] = lambda: GeminiResponse(status=20, meta="text/gemini", body=body)

    with _serving(service) as httpd:
        with socket.create_connection(httpd.server_address[:2], timeout=5) as client:
            client.sendall(b"GET /a.com/ HTTP/1.1\r\nHost: gateway\r\n\r\n")
            _wait_for(lambda: body.reads > 0)
        _wait_for(lambda: events.of_type("request_cancelled"))

    assert body.closed
    assert events.of_type("request_cancelled")[0]["address"] == HOME


@pytest.mark.unit
def test_client_disconnected_detects_a_closed_peer():
    server_side, client_side = socket.socketpair()
    try:
        assert client_disconnected(server_side) is False

        client_side.sendall(b"pipelined")
        assert client_disconnected(server_side) is False

        client_side.close()
        server_side.recv(64)
        assert client_disconnected(server_side) is True
    finally:
        server_side.close()
        client_side.close()
