"""Drive a Chromium-family browser to the access-key page and scrape it.

Two session modes are supported:

**Attach** -- a browser already running with a remote-debugging port is
preferred so that the user's existing ERP login session is reused. Each
port in :attr:`~tokenbroker.models.BrowserConfig.debug_ports` is probed
with ``GET /json/version``; the first answering port is connected via
``connect_over_cdp``. Closing an attached session closes only the page we
opened; the user's browser keeps running.

**Launch** -- otherwise a fresh browser is launched with an isolated,
throwaway profile directory seeded from the user's Chrome ``Preferences``
file (when one exists). Closing a launched session closes the browser and
deletes the temporary profile.

The session is always closed, on success and on every failure path, by
:meth:`BrowserDriver.open_session`.

The acquisition flow is interactive: a human may have to complete the ERP
login in the window. When a password is supplied it is typed into the
first password field that appears, but a missing field is not an error.
"""

from __future__ import annotations

import logging
import os
import platform
import shutil
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import httpx
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from tokenbroker.exceptions import AcquisitionError
from tokenbroker.models import BrowserConfig

logger = logging.getLogger(__name__)

PASSWORD_SELECTORS: tuple[str, ...] = (
    'input[type="password"]',
    "#password",
    "#Password",
    '[name="password"]',
    '[name="Password"]',
)

PROFILE_DIR_PREFIX = "tokenbroker-profile-"


class SessionMode(str, Enum):
    """How a :class:`BrowserSession` was obtained."""

    ATTACHED = "attached"
    LAUNCHED = "launched"


@dataclass
class BrowserSession:
    """A page inside an attached or launched browser.

    Attributes:
        mode: Whether the browser was attached to or launched.
        page: The Playwright page used for the acquisition.
        profile_dir: Temporary profile directory (launched sessions only).
        closer: Releases whatever this session owns.
    """

    mode: SessionMode
    page: Any
    profile_dir: Optional[Path] = None
    closer: Optional[Callable[[], None]] = field(default=None, repr=False)
    _closed: bool = field(default=False, init=False, repr=False)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release the session. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self.closer is not None:
            self.closer()


def default_chrome_preferences_path() -> Optional[Path]:
    """Return the ``Preferences`` file of the default Chrome profile, if any."""
    system = platform.system()
    home = Path.home()
    if system == "Windows":
        local = os.environ.get("LOCALAPPDATA")
        base = Path(local) if local else home / "AppData" / "Local"
        candidate = base / "Google" / "Chrome" / "User Data" / "Default" / "Preferences"
    elif system == "Darwin":
        candidate = (
            home / "Library" / "Application Support" / "Google" / "Chrome"
            / "Default" / "Preferences"
        )
    else:
        candidate = home / ".config" / "google-chrome" / "Default" / "Preferences"
    return candidate if candidate.is_file() else None


def probe_debug_port(port: int, timeout: float = 2.0) -> bool:
    """Return ``True`` when a DevTools endpoint answers on ``127.0.0.1:port``."""
    try:
        response = httpx.get(f"http://127.0.0.1:{port}/json/version", timeout=timeout)
    except httpx.HTTPError:
        return False
    if response.status_code != 200:
        return False
    try:
        info = response.json()
    except ValueError:
        return False
    return isinstance(info, dict) and "webSocketDebuggerUrl" in info


class BrowserDriver:
    """Obtain a browser page and scrape the access key from it.

    Args:
        config: Attach/launch settings.
        playwright_factory: Callable returning a Playwright context manager;
            defaults to :func:`playwright.sync_api.sync_playwright`.
        port_probe: Callable ``(port, timeout) -> bool`` used to find an
            attachable browser; defaults to :func:`probe_debug_port`.

    Example::

        driver = BrowserDriver(settings.browser)
        raw = driver.acquire_raw_token_text(
            settings.effective_login_url(), "#anahtar", timeout_seconds=300
        )
    """

    def __init__(
        self,
        config: BrowserConfig,
        playwright_factory: Callable[[], Any] = sync_playwright,
        port_probe: Callable[[int, float], bool] = probe_debug_port,
    ) -> None:
        self._config = config
        self._playwright_factory = playwright_factory
        self._port_probe = port_probe

    # -- session lifecycle -------------------------------------------------

    @contextmanager
    def open_session(self) -> Iterator[BrowserSession]:
        """Attach to a running browser or launch one, and always clean up.

        Raises:
            AcquisitionError: If neither attach nor launch succeeds.
        """
        try:
            playwright = self._playwright_factory().start()
        except PlaywrightError as exc:
            raise AcquisitionError(f"Cannot start the browser automation driver: {exc}") from exc

        session: Optional[BrowserSession] = None
        try:
            try:
                session = self._attach(playwright)
                if session is None:
                    session = self._launch(playwright)
            except PlaywrightError as exc:
                raise AcquisitionError(f"Cannot open a browser page: {exc}") from exc
            logger.info("Browser session %s", session.mode.value)
            yield session
        finally:
            try:
                if session is not None:
                    session.close()
            finally:
                playwright.stop()

    def _attach(self, playwright: Any) -> Optional[BrowserSession]:
        for port in self._config.debug_ports:
            if not self._port_probe(port, self._config.attach_timeout_seconds):
                logger.debug("No debuggable browser on port %d", port)
                continue
            endpoint = f"http://127.0.0.1:{port}"
            try:
                browser = playwright.chromium.connect_over_cdp(endpoint)
            except PlaywrightError as exc:
                logger.warning("Attach to %s failed: %s", endpoint, exc)
                continue
            context = browser.contexts[0] if browser.contexts else browser.new_context()
            page = context.new_page()
            logger.debug("Attached to browser on port %d", port)
            return BrowserSession(
                mode=SessionMode.ATTACHED,
                page=page,
                closer=lambda page=page: _close_page_quietly(page),
            )
        return None

    def _seed_profile(self, profile_dir: Path) -> None:
        preferences = self._config.profile_preferences or default_chrome_preferences_path()
        if preferences is None or not Path(preferences).is_file():
            logger.debug("No browser preferences to seed the profile with")
            return
        target = profile_dir / "Default" / "Preferences"
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy2(preferences, target)
        except OSError as exc:
            logger.warning("Could not seed browser profile from %s: %s", preferences, exc)

    def _launch(self, playwright: Any) -> BrowserSession:
        profile_dir = Path(tempfile.mkdtemp(prefix=PROFILE_DIR_PREFIX))
        self._seed_profile(profile_dir)

        args = list(self._config.args)
        args.append(f"--remote-debugging-port={self._config.launch_debug_port}")
        launch_kwargs: dict[str, Any] = {
            "headless": self._config.headless,
            "args": args,
            "no_viewport": True,
        }
        if self._config.channel:
            launch_kwargs["channel"] = self._config.channel

        try:
            context = playwright.chromium.launch_persistent_context(
                str(profile_dir), **launch_kwargs
            )
        except PlaywrightError as exc:
            shutil.rmtree(profile_dir, ignore_errors=True)
            raise AcquisitionError(f"Cannot launch a browser: {exc}") from exc

        page = context.pages[0] if context.pages else context.new_page()

        def _close() -> None:
            try:
                context.close()
            except PlaywrightError as exc:
                logger.debug("Browser close raised: %s", exc)
            finally:
                shutil.rmtree(profile_dir, ignore_errors=True)

        logger.debug("Launched browser with profile %s", profile_dir)
        return BrowserSession(
            mode=SessionMode.LAUNCHED, page=page, profile_dir=profile_dir, closer=_close
        )

    # -- acquisition -------------------------------------------------------

    def _fill_password(self, page: Any, password: str) -> bool:
        timeout_ms = self._config.password_field_timeout_seconds * 1000
        for selector in PASSWORD_SELECTORS:
            try:
                page.wait_for_selector(selector, state="visible", timeout=timeout_ms)
            except PlaywrightTimeoutError:
                continue
            page.fill(selector, password)
            logger.info("Password entered into %s", selector)
            return True
        logger.info("No password field found; waiting for manual login")
        return False

    def read_token_text(self, page: Any, token_selector: str, timeout_seconds: float) -> str:
        """Wait for *token_selector* to become visible and return its text.

        The element's inner HTML is returned so that ``<br>`` line breaks
        reach the parser; the ``value`` attribute is used when it is empty.

        Raises:
            AcquisitionError: On timeout or when the element is empty.
        """
        locator = page.locator(token_selector).first
        try:
            locator.wait_for(state="visible", timeout=timeout_seconds * 1000)
        except PlaywrightTimeoutError as exc:
            raise AcquisitionError(
                f"Token element {token_selector!r} did not appear within "
                f"{timeout_seconds:g}s"
            ) from exc

        text = (locator.inner_html() or "").strip()
        if not text:
            text = (locator.get_attribute("value") or "").strip()
        if not text:
            raise AcquisitionError(f"Token element {token_selector!r} is empty")
        return text

    def acquire_raw_token_text(
        self,
        login_url: str,
        token_selector: str,
        timeout_seconds: float,
        password: Optional[str] = None,
    ) -> str:
        """Open the access-key page and return the token element's raw text.

        Args:
            login_url: Page that renders the access key after login.
            token_selector: CSS selector of the token-bearing element.
            timeout_seconds: How long to wait for the element to appear,
                including the time a human needs to log in.
            password: Optional password typed into the first password field.

        Raises:
            AcquisitionError: If the browser cannot be obtained, navigation
                fails, or the element never appears or is empty.
        """
        with self.open_session() as session:
            page = session.page
            try:
                page.goto(
                    login_url,
                    wait_until="networkidle",
                    timeout=self._config.navigation_timeout_seconds * 1000,
                )
                logger.info("Opened %s; waiting for %s", login_url, token_selector)
                if password:
                    self._fill_password(page, password)
                return self.read_token_text(page, token_selector, timeout_seconds)
            except AcquisitionError:
                raise
            except PlaywrightError as exc:
                raise AcquisitionError(f"Browser automation failed: {exc}") from exc


def _close_page_quietly(page: Any) -> None:
    try:
        page.close()
    except PlaywrightError as exc:
        logger.debug("Page close raised: %s", exc)
