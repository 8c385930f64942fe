"""CLI tests: show-config, fetch, and error reporting."""

from __future__ import annotations

import json

import pytest

from core.structured_logging import null_event_logger
from gateway.service import GatewayService
from gemportal import cli


def _parse_json_lines(captured: str) -> list[dict[str, object]]:
    """Decode structured log lines emitted to stdout."""
    events = []
    for line in captured.splitlines():
        line = line.strip()
        if line.startswith("{") and '"event_type"' in line:
            events.append(json.loads(line))
    return events


@pytest.fixture
def patched_service(monkeypatch, fake_transport):
    """Route CLI-built services through the in-memory transport."""

    def _factory(config):
        return GatewayService(config, transport=fake_transport, event_logger=null_event_logger)

    monkeypatch.setattr("gemportal.cli.GatewayService", _factory)
    return fake_transport


@pytest.mark.integration
def test_version_flag(capsys):
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["--version"])

    assert exc_info.value.code == 0
    assert "gemportal 1.0.0" in capsys.readouterr().out


@pytest.mark.integration
def test_no_command_prints_help(capsys):
    assert cli.main([]) == 0
    assert "usage: gemportal" in capsys.readouterr().out


@pytest.mark.integration
def test_show_config_prints_effective_settings(monkeypatch, capsys):
    monkeypatch.setenv("GEM_MAX_REDIRECTS", "5")

    assert cli.main(["show-config"]) == 0

    settings = json.loads(capsys.readouterr().out)
    assert settings["max_redirects"] == 5
    assert settings["default_port"] == 1965
    assert settings["base_href"] == "/"


@pytest.mark.integration
def test_invalid_configuration_exits_non_zero(monkeypatch, capsys):
    monkeypatch.setenv("GEM_BASE_HREF", "gem")

    assert cli.main(["show-config"]) == 1

    events = _parse_json_lines(capsys.readouterr().out)
    assert events[-1]["event_type"] == "cli_error"
    assert events[-1]["error_type"] == "ValidationError"


@pytest.mark.integration
def test_fetch_writes_rendered_page(patched_service, tmp_path, capsys):
    patched_service.add("gemini://a.com:1965/docs/", 20, "text/gemini", b"# Fetched docs")
    output = tmp_path / "page.html"

    code = cli.main(["fetch", "gemini://a.com/docs/", "--output", str(output)])

    assert code == 0
    assert "<h1>Fetched docs</h1>" in output.read_text(encoding="utf-8")
    completed = _parse_json_lines(capsys.readouterr().out)[-1]
    assert completed["event_type"] == "cli_fetch_completed"
    assert completed["status"] == 200
    assert completed["gateway_path"] == "/a.com/docs/"


@pytest.mark.integration
def test_fetch_raw_and_insecure(patched_service, tmp_path):
    patched_service.add("gemini://a.com:1965/pic.png", 20, "image/png", b"\x89PNG")
    output = tmp_path / "pic.png"

    code = cli.main(["fetch", "a.com/pic.png", "--raw", "--insecure", "--output", str(output)])

    assert code == 0
    assert output.read_bytes() == b"\x89PNG"
    assert ("gemini://a.com:1965/pic.png", True) in patched_service.calls


@pytest.mark.integration
def test_fetch_failure_returns_error_code(patched_service, tmp_path):
    patched_service.add("gemini://a.com:1965/robots.txt", 20, "text/plain", b"User-agent: webproxy\nDisallow: /\n")
    output = tmp_path / "page.html"

    assert cli.main(["fetch", "a.com/", "--output", str(output)]) == 1
    assert "The host does not allow webproxies on this path" in output.read_text(encoding="utf-8")
