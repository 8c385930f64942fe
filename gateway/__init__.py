"""Gemini-to-HTTP gateway: inbound contract, orchestration, pages, web transport."""

from gateway.inbound import InboundRequest, parse_inbound
from gateway.orchestrator import FetchOrchestrator, RenderResult
from gateway.page import render_page
from gateway.service import GatewayResponse, GatewayService

__all__ = [
    "InboundRequest",
    "parse_inbound",
    "FetchOrchestrator",
    "RenderResult",
    "render_page",
    "GatewayResponse",
    "GatewayService",
]
