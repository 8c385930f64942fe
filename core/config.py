"""
Runtime configuration for gemportal.

Settings are read once at startup from the environment (prefix ``GEM_``)
or an optional ``.env`` file, validated, and handed to the gateway service.
Nothing reads configuration through module-level state after that.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_VERSION = "1.0.0"

# robots.txt is never allowed to grow beyond this many bytes.
ROBOTS_MAX_BYTES = 4096

LogLevel = Literal["debug", "info", "warning", "error"]


class GatewayConfig(BaseSettings):
    """
    Gateway settings.

    Defaults mirror a public single-instance deployment: 30 MiB response
    ceiling, three redirect hops, robots.txt cached for a day.
    """

    model_config = SettingsConfigDict(
        env_prefix="GEM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================================================
    # Application / page
    # ========================================================================

    app_name: str = Field(default="Gemportal", description="Application name shown in pages")
    app_desc: str = Field(default="", description="Landing page description (plain text)")
    input_placeholder: str = Field(default="", description="Placeholder for the input prompt form")
    log_level: LogLevel = Field(default="info", description="Minimum level of emitted events")

    # ========================================================================
    # Web transport
    # ========================================================================

    http_host: str = Field(default="0.0.0.0", description="HTTP bind address")
    http_port: int = Field(default=8080, ge=1, le=65535, description="HTTP server port")
    base_href: str = Field(default="/", description="Path prefix the gateway is mounted under")

    # ========================================================================
    # Gemini fetches
    # ========================================================================

    default_port: int = Field(default=1965, ge=1, le=65535, description="Default Gemini port")
    resp_mem_limit: int = Field(default=31_457_280, gt=0, description="Document body ceiling (bytes)")
    resp_mem_limit_img: int = Field(default=31_457_280, gt=0, description="Raw passthrough ceiling (bytes)")
    max_redirects: int = Field(default=3, ge=0, description="Maximum redirect hops to follow")
    fetch_timeout_seconds: float = Field(default=30.0, gt=0, description="Per-fetch socket deadline")

    # ========================================================================
    # robots.txt
    # ========================================================================

    robots_agent: str = Field(default="webproxy", description="Agent name matched in robots.txt")
    robots_cache_ttl_seconds: float = Field(default=86_400.0, gt=0)
    robots_cache_purge_seconds: float = Field(default=43_200.0, gt=0)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("base_href")
    @classmethod
    def validate_base_href(cls, v: str) -> str:
        """The base href has to be pre- and suffixed by a slash."""
        if not v.startswith("/") or not v.endswith("/"):
            raise ValueError("base href must begin and end with a slash")
        return v

    @model_validator(mode="after")
    def fill_app_desc(self) -> "GatewayConfig":
        if not self.app_desc:
            self.app_desc = f"Simple Gemini HTTP portal for port {self.default_port}."
        return self

    @property
    def version(self) -> str:
        return APP_VERSION

    def public_dict(self) -> dict[str, object]:
        """Effective settings as plain JSON-safe values."""
        return self.model_dump(mode="json")
