"""Threaded HTTP front end for GatewayService."""

from __future__ import annotations

import select
import socket
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from core.errors import GatewayError, RequestCancelled
from gateway.service import CLIENT_CLOSED_REQUEST, GatewayResponse, GatewayService


def client_disconnected(sock: socket.socket) -> bool:
    """True once the peer has closed or reset ``sock``; never blocks."""
    try:
        readable, _, _ = select.select([sock], [], [], 0)
        if not readable:
            return False
        return sock.recv(1, socket.MSG_PEEK) == b""
    except OSError:
        return True


class GatewayRequestHandler(BaseHTTPRequestHandler):
    """Translate http.server requests into GatewayService.handle calls."""

    protocol_version = "HTTP/1.1"
    server: "GatewayHTTPServer"

    def do_GET(self) -> None:
        self._dispatch("GET")

    def do_HEAD(self) -> None:
        self._dispatch("HEAD")

    def do_POST(self) -> None:
        self._dispatch("POST")

    def do_PUT(self) -> None:
        self._dispatch("PUT")

    def do_DELETE(self) -> None:
        self._dispatch("DELETE")

    def do_PATCH(self) -> None:
        self._dispatch("PATCH")

    def _client_gone(self) -> bool:
        return client_disconnected(self.connection)

    def _dispatch(self, method: str) -> None:
        service = self.server.service
        response = service.handle(method, self.path, cancelled=self._client_gone)
        self.close_connection = True
        if response.status == CLIENT_CLOSED_REQUEST:
            response.close()
            return

        try:
            self._write(response, include_body=method != "HEAD")
        except (BrokenPipeError, ConnectionResetError) as exc:
            self._log_abort("client_disconnected", "info", exc)
        except (GatewayError, RequestCancelled) as exc:
            # Headers are already out; the short body ends with the connection.
            self._log_abort("passthrough_aborted", "warning", exc)
        finally:
            response.close()

    def _write(self, response: GatewayResponse, include_body: bool) -> None:
        self.send_response(response.status)
        for key, value in response.headers:
            self.send_header(key, value)
        if response.stream is None:
            self.send_header("Content-Length", str(len(response.body)))
        self.send_header("Connection", "close")
        self.end_headers()
        if include_body:
            for chunk in response.iter_body():
                self.wfile.write(chunk)

    def _log_abort(self, event_type: str, level: str, exc: Exception) -> None:
        self.server.service.event_logger(
            event_type,
            {
                "request_id": None,
                "level": level,
                "path": self.path,
                "error_type": type(exc).__name__,
                "error": str(exc),
            },
        )

    def log_message(self, fmt: str, *args) -> None:
        """Route access logs through the service event logger."""
        self.server.service.event_logger(
            "http_request",
            {
                "request_id": None,
                "level": "debug",
                "client": self.address_string(),
                "message": fmt % args,
            },
        )


class GatewayHTTPServer(ThreadingHTTPServer):
    """ThreadingHTTPServer carrying the shared gateway service."""

    daemon_threads = True

    def __init__(self, address: tuple[str, int], service: GatewayService) -> None:
        self.service = service
        super().__init__(address, GatewayRequestHandler)


def make_server(service: GatewayService, host: str | None = None, port: int | None = None) -> GatewayHTTPServer:
    """Bind a server for ``service``; host/port default to the service config."""
    config = service.config
    bind_host = config.http_host if host is None else host
    bind_port = config.http_port if port is None else port
    return GatewayHTTPServer((bind_host, bind_port), service)


def serve(service: GatewayService, host: str | None = None, port: int | None = None) -> None:
    """Run the gateway until interrupted."""
    httpd = make_server(service, host=host, port=port)
    bound_host, bound_port = httpd.server_address[:2]
    service.event_logger(
        "server_started",
        {
            "request_id": None,
            "level": "info",
            "host": bound_host,
            "port": bound_port,
            "base_href": service.config.base_href,
            "version": service.config.version,
        },
    )
    try:
        httpd.serve_forever()
    finally:
        httpd.server_close()
