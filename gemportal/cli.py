"""Minimal CLI entrypoint for gemportal."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, BinaryIO
from typing import Sequence
from uuid import uuid4

from core.config import APP_VERSION, GatewayConfig
from core.structured_logging import emit_json_event
from gateway.inbound import build_gateway_path
from gateway.server import serve
from gateway.service import GatewayResponse, GatewayService


def _emit_cli_event(
    event_type: str,
    *,
    request_id: str,
    command: str,
    **payload: Any,
) -> str:
    """Emit one structured CLI event line with standard fields."""
    return emit_json_event(
        event_type,
        request_id=request_id,
        command=command,
        **payload,
    )


def _load_config(args: argparse.Namespace) -> GatewayConfig:
    overrides: dict[str, Any] = {}
    if getattr(args, "host", None):
        overrides["http_host"] = args.host
    if getattr(args, "port", None):
        overrides["http_port"] = args.port
    if getattr(args, "base_href", None):
        overrides["base_href"] = args.base_href
    return GatewayConfig(**overrides)


def _cmd_serve(args: argparse.Namespace) -> int:
    """Run the threaded HTTP gateway until interrupted."""
    config = _load_config(args)
    service = GatewayService(config)
    try:
        serve(service)
    except KeyboardInterrupt:
        _emit_cli_event("cli_serve_stopped", request_id=str(uuid4()), command="serve")
    return 0


def _write_body(response: GatewayResponse, sink: BinaryIO) -> int:
    written = 0
    for chunk in response.iter_body():
        sink.write(chunk)
        written += len(chunk)
    return written


def _cmd_fetch(args: argparse.Namespace) -> int:
    """Run the full pipeline once and write the rendered result."""
    request_id = str(uuid4())
    config = _load_config(args)
    service = GatewayService(config)

    path = build_gateway_path(config.base_href, args.address, insecure=args.insecure, raw=args.raw)
    response = service.handle("GET", path)

    try:
        if args.output:
            with Path(args.output).open("wb") as sink:
                written = _write_body(response, sink)
        else:
            written = _write_body(response, sys.stdout.buffer)
            sys.stdout.flush()
    finally:
        response.close()

    _emit_cli_event(
        "cli_fetch_completed",
        request_id=request_id,
        command="fetch",
        address=args.address,
        gateway_path=path,
        status=response.status,
        content_type=response.header("Content-Type"),
        bytes_written=written,
        output=args.output,
    )
    return 0 if response.status < 400 else 1


def _cmd_show_config(args: argparse.Namespace) -> int:
    """Print effective settings as JSON."""
    config = _load_config(args)
    print(json.dumps(config.public_dict(), indent=2, sort_keys=True))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Create argument parser for the gemportal CLI."""
    parser = argparse.ArgumentParser(
        prog="gemportal",
        description="Gemini to HTTP gateway",
    )
    parser.add_argument("--version", action="version", version=f"gemportal {APP_VERSION}")

    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the threaded HTTP gateway",
    )
    serve_parser.add_argument("--host", help="Bind address (overrides GEM_HTTP_HOST)")
    serve_parser.add_argument("--port", type=int, help="Bind port (overrides GEM_HTTP_PORT)")
    serve_parser.add_argument("--base-href", help="Mount prefix (overrides GEM_BASE_HREF)")
    serve_parser.set_defaults(func=_cmd_serve)

    fetch_parser = subparsers.add_parser(
        "fetch",
        help="Fetch one Gemini address through the gateway pipeline",
    )
    fetch_parser.add_argument("address", help="Gemini address, e.g. geminiprotocol.net/docs/")
    fetch_parser.add_argument("--insecure", action="store_true", help="Disable TLS certificate checks")
    fetch_parser.add_argument("--raw", action="store_true", help="Write the upstream body verbatim")
    fetch_parser.add_argument("--output", help="Output path (default: stdout)")
    fetch_parser.set_defaults(func=_cmd_fetch)

    show_config_parser = subparsers.add_parser(
        "show-config",
        help="Print effective settings as JSON",
    )
    show_config_parser.set_defaults(func=_cmd_show_config)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Execute CLI and return process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    try:
        return int(args.func(args))
    except Exception as exc:
        _emit_cli_event(
            "cli_error",
            request_id=str(uuid4()),
            command=str(getattr(args, "command", "unknown")),
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return 1


def cli() -> None:
    """Console-script entrypoint."""
    raise SystemExit(main())


if __name__ == "__main__":
    raise SystemExit(main())
