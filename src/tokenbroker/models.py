"""Canonical Pydantic settings models shared across tokenbroker modules.

These models are serialised as JSON in the user's config directory and loaded
by :mod:`tokenbroker.config`. The broker, the browser driver and the request
dispatcher all receive their inputs from a single :class:`BrokerSettings`
instance rather than reading the environment themselves.

The credential record itself lives next to its store in
:mod:`tokenbroker.auth.credential_store`; request records for named operations
live in :mod:`tokenbroker.operations`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_BASE_URL = "https://erp.aaro.com.tr"
DEFAULT_LOGIN_PATH = "/Account/GeciciErisimAnahtari"


class BrowserConfig(BaseModel):
    """How the browser driver attaches to or launches a browser.

    Attach is always tried first, probing ``debug_ports`` in order. A
    launched browser gets an isolated temporary profile seeded from
    ``profile_preferences`` (when the file exists) and listens on
    ``launch_debug_port`` so a later run can attach to it.
    """

    headless: bool = Field(
        default=False, description="Run a launched browser without a window"
    )
    args: list[str] = Field(
        default_factory=lambda: ["--start-maximized"],
        description="Extra command-line arguments for a launched browser",
    )
    channel: Optional[str] = Field(
        default=None,
        description="Playwright browser channel, e.g. 'chrome' or 'msedge'",
    )
    debug_ports: list[int] = Field(
        default_factory=lambda: [9222, 9223, 9229],
        description="Local remote-debugging ports probed for attach, in order",
    )
    launch_debug_port: int = Field(
        default=9222, description="Remote-debugging port exposed by a launched browser"
    )
    attach_timeout_seconds: float = Field(
        default=2.0, description="Per-port timeout when probing for attach"
    )
    profile_preferences: Optional[Path] = Field(
        default=None,
        description="Browser 'Preferences' file used to seed a launched profile "
        "(None = auto-detect the default Chrome profile)",
    )
    password_field_timeout_seconds: float = Field(
        default=2.0, description="Per-selector wait when looking for a password field"
    )
    navigation_timeout_seconds: float = Field(
        default=60.0, description="Timeout for loading the login page"
    )


class RequestConfig(BaseModel):
    """Default HTTP request settings applied to every ERP API call."""

    timeout: int = Field(default=30, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    max_retries: int = Field(default=2, description="Max retry attempts")


class BrokerSettings(BaseModel):
    """User-wide settings persisted at ``~/.config/tokenbroker/settings.json``.

    Loaded and saved by :func:`~tokenbroker.config.load_settings` and
    :func:`~tokenbroker.config.save_settings`. Environment variables and CLI
    flags override individual fields; see
    :func:`~tokenbroker.config.resolve_settings`.

    Unknown keys are preserved in ``model_extra`` so that older settings
    files keep loading after fields are added.
    """

    model_config = ConfigDict(extra="allow")

    base_url: str = Field(
        default=DEFAULT_BASE_URL, description="Root URL of the ERP API"
    )
    login_url: Optional[str] = Field(
        default=None,
        description="Page that renders the temporary access key "
        "(None = base_url + the default login path)",
    )
    token_selector: str = Field(
        default="#anahtar", description="CSS selector of the token-bearing element"
    )
    default_lifetime_minutes: int = Field(
        default=60,
        gt=0,
        description="Credential lifetime when the page reports no validity end",
    )
    wait_timeout_seconds: int = Field(
        default=300,
        gt=0,
        description="How long to wait for a human to finish logging in",
    )
    credential_file: Optional[Path] = Field(
        default=None,
        description="Where the cached credential is stored (None = data dir)",
    )
    password_source: Optional[str] = Field(
        default=None,
        description="Where to read the login password: env:VAR, file:/path, prompt",
    )
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    request: RequestConfig = Field(default_factory=RequestConfig)

    def effective_login_url(self) -> str:
        """Return ``login_url``, or the default login page under ``base_url``."""
        if self.login_url:
            return self.login_url
        return self.base_url.rstrip("/") + DEFAULT_LOGIN_PATH
