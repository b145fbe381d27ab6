"""Shared test fixtures for tokenbroker.

Provides isolated config/data directories, output-state management,
credential factories and a fake browser driver. Fixtures are discovered by
pytest automatically.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

import pytest

from tokenbroker.auth.credential_store import Credential, CredentialStore
from tokenbroker.models import BrokerSettings, RequestConfig
from tokenbroker.output import LOGGER_NAME, OutputFormat, OutputManager, reset_output, set_output

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)
LONG_KEY = "XYZ123ABC456DEF789" * 3


def page_text(
    secret: str = LONG_KEY,
    subject: str = "a@b.com",
    valid_from: str = "2026-03-14 11:55",
    valid_to: str = "2026-03-15 23:55",
    group: str = "7",
) -> str:
    """Access-key page text as the ERP renders it."""
    return (
        f"Kullanıcı : {subject}<br>"
        f"Geçici Erişim Anahtarı : {secret}<br/>"
        f"Geçerlilik Başlangıç : {valid_from}<br>"
        f"Geçerlilik Bitiş : {valid_to}<br>"
        f"Grup : {group}"
    )


class FakeDriver:
    """Stand-in for BrowserDriver that records calls and returns canned text."""

    def __init__(self, raw: Optional[str] = None, error: Optional[Exception] = None) -> None:
        self.raw = raw if raw is not None else page_text()
        self.error = error
        self.calls: list[dict] = []
        self.on_acquire: Optional[Callable[[], None]] = None

    def acquire_raw_token_text(self, login_url, token_selector, timeout_seconds, password=None):
        self.calls.append(
            {
                "login_url": login_url,
                "token_selector": token_selector,
                "timeout_seconds": timeout_seconds,
                "password": password,
            }
        )
        if self.on_acquire is not None:
            self.on_acquire()
        if self.error is not None:
            raise self.error
        return self.raw


class ExplodingDriver:
    """Driver that fails the test if the broker tries to open a browser."""

    def acquire_raw_token_text(self, *args, **kwargs):
        pytest.fail("the browser driver must not be invoked")


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches sys.stdout/sys.stderr at creation time; CliRunner
    swaps those streams, so a stale manager would write to closed files.
    The same applies to the log handler installed by configure_logging().
    """
    yield
    reset_output()
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if handler.get_name() == LOGGER_NAME:
            logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG config/data dirs at tmp_path and clear TOKENBROKER_* env vars."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("tokenbroker.config._is_xdg_platform", lambda: True)

    for var in [
        "TOKENBROKER_BASE_URL",
        "TOKENBROKER_LOGIN_URL",
        "TOKENBROKER_CREDENTIAL_FILE",
        "TOKENBROKER_HEADLESS",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a quiet, plain OutputManager."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def settings(tmp_path: Path) -> BrokerSettings:
    """Settings with a credential file under tmp_path and fast requests."""
    return BrokerSettings(
        base_url="https://erp.test",
        credential_file=tmp_path / "credential.json",
        request=RequestConfig(timeout=5, verify_ssl=False, max_retries=1),
    )


@pytest.fixture
def store(tmp_path: Path) -> CredentialStore:
    return CredentialStore(tmp_path / "credential.json")


@pytest.fixture
def make_credential() -> Callable[..., Credential]:
    """Factory for credentials expiring relative to ``NOW``."""

    def _make(secret: str = "cached-secret-0001", expires_in: timedelta = timedelta(hours=1), **extra) -> Credential:
        return Credential(
            secret=secret,
            issued_at=NOW - timedelta(minutes=5),
            expires_at=NOW + expires_in,
            **extra,
        )

    return _make


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def token_page() -> Callable[..., str]:
    """Builder for access-key page text; keyword arguments replace fields."""
    return page_text


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def exploding_driver() -> ExplodingDriver:
    return ExplodingDriver()


@pytest.fixture
def cli_runner():
    from typer.testing import CliRunner

    return CliRunner()
