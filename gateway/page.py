"""HTML page rendering for the gateway (landing page, documents, prompts, errors)."""

from __future__ import annotations

from collections.abc import Iterable
from html import escape

from core.config import GatewayConfig
from core.errors import display_text
from core.models import RequestState
from gateway.inbound import INPUT_PARAM, INSECURE_PARAM


URL_PARAM = "url"

_STYLE = (
    "body{max-width:50em;margin:0 auto;padding:0 1em;font-family:sans-serif;line-height:1.4}"
    "pre{overflow-x:auto}"
    ".error{color:#a00;font-weight:bold}"
    "footer{margin-top:2em;font-size:small;color:#666}"
)


def _address_form(config: GatewayConfig, pretty: str, insecure: bool) -> str:
    checked = " checked" if insecure else ""
    return (
        f'<form action="{escape(config.base_href)}" method="get">\n'
        f'<input type="text" name="{URL_PARAM}" size="60" value="{escape(pretty)}" placeholder="example.org">\n'
        f'<label><input type="checkbox" name="{INSECURE_PARAM}" value="on"{checked}> insecure</label>\n'
        '<input type="submit" value="Go">\n'
        "</form>\n"
    )


def _input_form(
    config: GatewayConfig,
    state: RequestState,
    form_action: str,
    hidden_fields: Iterable[tuple[str, str]],
) -> str:
    field_type = "password" if state.input_sensitive else "text"
    hidden = "".join(
        f'<input type="hidden" name="{escape(key)}" value="{escape(value)}">\n'
        for key, value in hidden_fields
    )
    return (
        f'<form action="{escape(form_action)}" method="get">\n'
        f"<p>{escape(state.input_prompt or '', quote=False)}</p>\n"
        f'<input type="{field_type}" name="{INPUT_PARAM}" size="60" '
        f'placeholder="{escape(config.input_placeholder)}">\n'
        f"{hidden}"
        '<input type="submit" value="Send">\n'
        "</form>\n"
    )


def render_page(
    config: GatewayConfig,
    state: RequestState | None = None,
    *,
    form_action: str = "",
    hidden_fields: Iterable[tuple[str, str]] = (),
) -> str:
    """
    Render one complete HTML page.

    ``state.content`` is inserted verbatim and must already be sanitized;
    every other value is escaped here.
    """
    state = state or RequestState()
    pretty = state.target.pretty(config.default_port) if state.target else ""
    title = f"{pretty} - {config.app_name}" if pretty else config.app_name

    parts = [
        "<!DOCTYPE html>\n",
        '<html><head><meta charset="utf-8">\n',
        '<meta name="viewport" content="width=device-width, initial-scale=1">\n',
        f"<title>{escape(title, quote=False)}</title>\n",
        f"<style>{_STYLE}</style>\n",
        "</head><body>\n",
        f'<header><h1><a href="{escape(config.base_href)}">{escape(config.app_name, quote=False)}</a></h1>\n',
        _address_form(config, pretty, state.insecure),
        "</header>\n<main>\n",
    ]

    if state.target is None and state.error is None:
        parts.append(f"<p>{escape(config.app_desc, quote=False)}</p>\n")

    if state.error:
        # display_text strips every tag; the result is safe to embed.
        parts.append(f'<p class="error">{display_text(state.error)}</p>\n')
    elif state.input_prompt is not None:
        parts.append(_input_form(config, state, form_action, hidden_fields))
    elif state.content:
        parts.append(state.content)
        parts.append("\n")

    parts.append("</main>\n")
    parts.append(
        f"<footer>{escape(config.app_name, quote=False)} {escape(config.version, quote=False)}</footer>\n"
    )
    parts.append("</body></html>\n")
    return "".join(parts)
