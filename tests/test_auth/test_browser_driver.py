"""Tests for the browser driver: attach/launch, cleanup and token scraping.

Playwright is replaced by ``MagicMock`` objects; no browser is started.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from tokenbroker.auth.browser_driver import (
    BrowserDriver,
    BrowserSession,
    SessionMode,
    default_chrome_preferences_path,
    probe_debug_port,
)
from tokenbroker.auth.token_parser import parse_token_text
from tokenbroker.exceptions import AcquisitionError
from tokenbroker.models import BrowserConfig

LOGIN_URL = "https://erp.test/Account/GeciciErisimAnahtari"


def _playwright() -> tuple[MagicMock, MagicMock]:
    factory = MagicMock()
    pw = factory.return_value.start.return_value
    return factory, pw


def _attachable(pw: MagicMock) -> MagicMock:
    page = MagicMock(name="attached_page")
    context = MagicMock()
    context.new_page.return_value = page
    browser = pw.chromium.connect_over_cdp.return_value
    browser.contexts = [context]
    return page


def _launchable(pw: MagicMock) -> tuple[MagicMock, MagicMock]:
    page = MagicMock(name="launched_page")
    context = pw.chromium.launch_persistent_context.return_value
    context.pages = [page]
    return context, page


def _set_token_text(page: MagicMock, text: str, value: str | None = None) -> MagicMock:
    locator = page.locator.return_value.first
    locator.inner_html.return_value = text
    locator.get_attribute.return_value = value
    return locator


@pytest.fixture
def no_preferences(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "tokenbroker.auth.browser_driver.default_chrome_preferences_path", lambda: None
    )


class TestBrowserSession:
    def test_close_is_idempotent(self) -> None:
        closer = MagicMock()
        session = BrowserSession(mode=SessionMode.ATTACHED, page=MagicMock(), closer=closer)
        session.close()
        session.close()
        closer.assert_called_once()
        assert session.closed is True


class TestAttach:
    def test_attaches_to_first_answering_port(self) -> None:
        factory, pw = _playwright()
        page = _attachable(pw)
        probed: list[int] = []

        def probe(port: int, timeout: float) -> bool:
            probed.append(port)
            return port == 9223

        driver = BrowserDriver(BrowserConfig(), playwright_factory=factory, port_probe=probe)
        with driver.open_session() as session:
            assert session.mode is SessionMode.ATTACHED
            assert session.page is page
            assert session.profile_dir is None

        assert probed == [9222, 9223]
        pw.chromium.connect_over_cdp.assert_called_once_with("http://127.0.0.1:9223")
        pw.chromium.launch_persistent_context.assert_not_called()

    def test_closing_attached_session_keeps_browser(self) -> None:
        factory, pw = _playwright()
        page = _attachable(pw)
        driver = BrowserDriver(
            BrowserConfig(), playwright_factory=factory, port_probe=lambda p, t: True
        )
        with driver.open_session():
            pass

        page.close.assert_called_once()
        pw.chromium.connect_over_cdp.return_value.close.assert_not_called()
        pw.stop.assert_called_once()

    def test_new_context_when_browser_has_none(self) -> None:
        factory, pw = _playwright()
        browser = pw.chromium.connect_over_cdp.return_value
        browser.contexts = []
        driver = BrowserDriver(
            BrowserConfig(), playwright_factory=factory, port_probe=lambda p, t: True
        )
        with driver.open_session() as session:
            assert session.page is browser.new_context.return_value.new_page.return_value

    def test_failed_connect_tries_next_port_then_launches(self, no_preferences: None) -> None:
        factory, pw = _playwright()
        pw.chromium.connect_over_cdp.side_effect = PlaywrightError("refused")
        _launchable(pw)
        driver = BrowserDriver(
            BrowserConfig(debug_ports=[9222, 9223]),
            playwright_factory=factory,
            port_probe=lambda p, t: True,
        )
        with driver.open_session() as session:
            assert session.mode is SessionMode.LAUNCHED

        assert pw.chromium.connect_over_cdp.call_count == 2


class TestLaunch:
    def test_launch_when_nothing_to_attach(self, no_preferences: None) -> None:
        factory, pw = _playwright()
        context, page = _launchable(pw)
        config = BrowserConfig(headless=True, args=["--lang=tr"], launch_debug_port=9333)
        driver = BrowserDriver(config, playwright_factory=factory, port_probe=lambda p, t: False)

        with driver.open_session() as session:
            assert session.mode is SessionMode.LAUNCHED
            assert session.page is page
            profile_dir = session.profile_dir
            assert profile_dir is not None and profile_dir.is_dir()

        args, kwargs = pw.chromium.launch_persistent_context.call_args
        assert args[0] == str(profile_dir)
        assert kwargs["headless"] is True
        assert kwargs["args"] == ["--lang=tr", "--remote-debugging-port=9333"]
        assert "channel" not in kwargs
        context.close.assert_called_once()
        assert not profile_dir.exists()
        pw.stop.assert_called_once()

    def test_channel_is_forwarded(self, no_preferences: None) -> None:
        factory, pw = _playwright()
        _launchable(pw)
        driver = BrowserDriver(
            BrowserConfig(channel="chrome"), playwright_factory=factory, port_probe=lambda p, t: False
        )
        with driver.open_session():
            pass
        assert pw.chromium.launch_persistent_context.call_args.kwargs["channel"] == "chrome"

    def test_profile_seeded_from_preferences(self, tmp_path: Path) -> None:
        prefs = tmp_path / "Preferences"
        prefs.write_text('{"profile": {"name": "me"}}')
        factory, pw = _playwright()
        _launchable(pw)
        driver = BrowserDriver(
            BrowserConfig(profile_preferences=prefs),
            playwright_factory=factory,
            port_probe=lambda p, t: False,
        )

        with driver.open_session() as session:
            seeded = session.profile_dir / "Default" / "Preferences"
            assert seeded.read_text() == '{"profile": {"name": "me"}}'

        assert prefs.exists()

    def test_missing_preferences_launches_bare_profile(self, tmp_path: Path) -> None:
        factory, pw = _playwright()
        _launchable(pw)
        driver = BrowserDriver(
            BrowserConfig(profile_preferences=tmp_path / "absent"),
            playwright_factory=factory,
            port_probe=lambda p, t: False,
        )
        with driver.open_session() as session:
            assert not (session.profile_dir / "Default" / "Preferences").exists()

    def test_launch_failure_removes_profile(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, no_preferences: None
    ) -> None:
        profile = tmp_path / "profile"
        profile.mkdir()
        monkeypatch.setattr(
            "tokenbroker.auth.browser_driver.tempfile.mkdtemp", lambda prefix: str(profile)
        )
        factory, pw = _playwright()
        pw.chromium.launch_persistent_context.side_effect = PlaywrightError("no browser")
        driver = BrowserDriver(BrowserConfig(), playwright_factory=factory, port_probe=lambda p, t: False)

        with pytest.raises(AcquisitionError, match="Cannot launch a browser") as excinfo:
            with driver.open_session():
                pass

        assert isinstance(excinfo.value.__cause__, PlaywrightError)
        assert not profile.exists()
        pw.stop.assert_called_once()

    def test_driver_start_failure_is_acquisition_error(self) -> None:
        factory = MagicMock()
        factory.return_value.start.side_effect = PlaywrightError("driver missing")
        driver = BrowserDriver(BrowserConfig(), playwright_factory=factory, port_probe=lambda p, t: False)
        with pytest.raises(AcquisitionError, match="automation driver"):
            with driver.open_session():
                pass


class TestAcquireRawTokenText:
    def _driver(self, factory: MagicMock, **config) -> BrowserDriver:
        return BrowserDriver(
            BrowserConfig(**config), playwright_factory=factory, port_probe=lambda p, t: True
        )

    def test_returns_trimmed_text(self) -> None:
        factory, pw = _playwright()
        page = _attachable(pw)
        locator = _set_token_text(page, "  Kullanıcı : a@b.com  \n")

        raw = self._driver(factory).acquire_raw_token_text(LOGIN_URL, "#anahtar", 300)

        assert raw == "Kullanıcı : a@b.com"
        page.goto.assert_called_once_with(LOGIN_URL, wait_until="networkidle", timeout=60000.0)
        page.locator.assert_called_once_with("#anahtar")
        locator.wait_for.assert_called_once_with(state="visible", timeout=300000)
        page.close.assert_called_once()

    def test_br_separated_markup_parses_end_to_end(self) -> None:
        factory, pw = _playwright()
        page = _attachable(pw)
        _set_token_text(
            page,
            "Kullan&#305;c&#305; : a@b.com<br>"
            "Ge&#231;ici Eri&#351;im Anahtar&#305; : XYZ123ABC456DEF789<br>"
            "Ge&#231;erlilik Biti&#351; : 2026-07-25 22:43<br>"
            "Grup&nbsp;:&nbsp;7",
        )

        raw = self._driver(factory).acquire_raw_token_text(LOGIN_URL, "#anahtar", 5)
        result = parse_token_text(raw, now=datetime(2026, 7, 25, 12, 0).astimezone())
        cred = result.credential

        assert cred.secret == "XYZ123ABC456DEF789"
        assert cred.subject == "a@b.com"
        assert cred.valid_to == "2026-07-25 22:43"
        assert cred.group == "7"
        assert result.used_fallback is False
        page.locator.return_value.first.text_content.assert_not_called()

    def test_falls_back_to_value_attribute(self) -> None:
        factory, pw = _playwright()
        page = _attachable(pw)
        locator = _set_token_text(page, "", value=" KEY-FROM-VALUE ")

        raw = self._driver(factory).acquire_raw_token_text(LOGIN_URL, "#anahtar", 5)

        assert raw == "KEY-FROM-VALUE"
        locator.get_attribute.assert_called_once_with("value")

    def test_empty_element_fails_and_cleans_up(self) -> None:
        factory, pw = _playwright()
        page = _attachable(pw)
        _set_token_text(page, "   ", value=None)

        with pytest.raises(AcquisitionError, match="is empty"):
            self._driver(factory).acquire_raw_token_text(LOGIN_URL, "#anahtar", 5)

        page.close.assert_called_once()
        pw.stop.assert_called_once()

    def test_timeout_fails_and_closes_launched_browser(self, no_preferences: None) -> None:
        factory, pw = _playwright()
        context, page = _launchable(pw)
        page.locator.return_value.first.wait_for.side_effect = PlaywrightTimeoutError("timeout")
        driver = BrowserDriver(BrowserConfig(), playwright_factory=factory, port_probe=lambda p, t: False)

        with pytest.raises(AcquisitionError, match="did not appear within 2s") as excinfo:
            driver.acquire_raw_token_text(LOGIN_URL, "#anahtar", 2)

        assert isinstance(excinfo.value.__cause__, PlaywrightTimeoutError)
        context.close.assert_called_once()
        pw.stop.assert_called_once()

    def test_navigation_failure_wrapped(self) -> None:
        factory, pw = _playwright()
        page = _attachable(pw)
        page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")

        with pytest.raises(AcquisitionError, match="ERR_NAME_NOT_RESOLVED") as excinfo:
            self._driver(factory).acquire_raw_token_text(LOGIN_URL, "#anahtar", 5)

        assert isinstance(excinfo.value.__cause__, PlaywrightError)
        page.close.assert_called_once()

    def test_password_typed_into_first_matching_field(self) -> None:
        factory, pw = _playwright()
        page = _attachable(pw)
        _set_token_text(page, "token text")
        page.wait_for_selector.side_effect = [PlaywrightTimeoutError("absent"), None]

        self._driver(factory).acquire_raw_token_text(
            LOGIN_URL, "#anahtar", 5, password="hunter2"
        )

        probed = [call.args[0] for call in page.wait_for_selector.call_args_list]
        assert probed == ['input[type="password"]', "#password"]
        page.fill.assert_called_once_with("#password", "hunter2")

    def test_missing_password_field_is_not_fatal(self) -> None:
        factory, pw = _playwright()
        page = _attachable(pw)
        _set_token_text(page, "token text")
        page.wait_for_selector.side_effect = PlaywrightTimeoutError("absent")

        raw = self._driver(factory).acquire_raw_token_text(
            LOGIN_URL, "#anahtar", 5, password="hunter2"
        )

        assert raw == "token text"
        assert page.wait_for_selector.call_count == 5
        page.fill.assert_not_called()

    def test_no_password_skips_probing(self) -> None:
        factory, pw = _playwright()
        page = _attachable(pw)
        _set_token_text(page, "token text")

        self._driver(factory).acquire_raw_token_text(LOGIN_URL, "#anahtar", 5)

        page.wait_for_selector.assert_not_called()


class TestProbeDebugPort:
    def test_devtools_endpoint_answers(self) -> None:
        response = httpx.Response(200, json={"webSocketDebuggerUrl": "ws://127.0.0.1:9222/x"})
        with patch("tokenbroker.auth.browser_driver.httpx.get", return_value=response) as get:
            assert probe_debug_port(9222, timeout=0.5) is True
        get.assert_called_once_with("http://127.0.0.1:9222/json/version", timeout=0.5)

    def test_connection_refused(self) -> None:
        with patch(
            "tokenbroker.auth.browser_driver.httpx.get",
            side_effect=httpx.ConnectError("refused"),
        ):
            assert probe_debug_port(9222) is False

    def test_non_devtools_service(self) -> None:
        response = httpx.Response(200, text="<html>hello</html>")
        with patch("tokenbroker.auth.browser_driver.httpx.get", return_value=response):
            assert probe_debug_port(9222) is False

    def test_error_status(self) -> None:
        with patch(
            "tokenbroker.auth.browser_driver.httpx.get", return_value=httpx.Response(404)
        ):
            assert probe_debug_port(9222) is False


class TestDefaultPreferencesPath:
    def test_none_when_chrome_profile_missing(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr("tokenbroker.auth.browser_driver.platform.system", lambda: "Linux")
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))
        assert default_chrome_preferences_path() is None

    def test_linux_chrome_profile(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        prefs = tmp_path / ".config" / "google-chrome" / "Default" / "Preferences"
        prefs.parent.mkdir(parents=True)
        prefs.write_text("{}")
        monkeypatch.setattr("tokenbroker.auth.browser_driver.platform.system", lambda: "Linux")
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))
        assert default_chrome_preferences_path() == prefs
