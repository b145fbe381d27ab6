"""The single entry point for obtaining a usable ERP credential.

:class:`CredentialBroker` ties the :class:`~tokenbroker.auth.credential_store.CredentialStore`,
the :mod:`~tokenbroker.auth.token_parser` and the
:class:`~tokenbroker.auth.browser_driver.BrowserDriver` together and owns
the reuse-or-acquire decision:

1. Load the cached credential. If it exists and has not expired, return it
   without touching the browser.
2. Otherwise clear any expired record, run the browser acquisition flow,
   parse the scraped text, persist the result and return it.

Acquisition is serialised by a lock, so within one process a second caller
waits for the first acquisition and then reuses its result instead of
opening another browser.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Optional

from tokenbroker.auth.browser_driver import BrowserDriver
from tokenbroker.auth.credential_store import Credential, CredentialStore
from tokenbroker.auth.token_parser import TokenParseResult, parse_token_text
from tokenbroker.config import resolve_secret
from tokenbroker.exceptions import AuthError, StoreError
from tokenbroker.models import BrokerSettings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialBroker:
    """Decide between the cached credential and a fresh browser acquisition.

    Args:
        settings: Effective settings (login URL, selector, lifetimes, browser).
        store: Credential cache; defaults to the one configured in *settings*.
        driver: Browser driver; defaults to one built from ``settings.browser``.
        clock: Returns the current time; injectable for tests.

    Example::

        broker = CredentialBroker(resolve_settings())
        headers = {"Authorization": f"Bearer {broker.get_credential()}"}
    """

    def __init__(
        self,
        settings: BrokerSettings,
        store: Optional[CredentialStore] = None,
        driver: Optional[BrowserDriver] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings
        self._store = store if store is not None else CredentialStore.from_settings(settings)
        self._driver = driver if driver is not None else BrowserDriver(settings.browser)
        self._clock = clock
        self._lock = threading.Lock()
        self.last_parse: Optional[TokenParseResult] = None

    @property
    def store(self) -> CredentialStore:
        return self._store

    def current_credential(self, include_expired: bool = False) -> Optional[Credential]:
        """Return the cached credential if it is still valid, else ``None``.

        Never acquires; an expired record is reported as absent but left in
        place. With *include_expired* the record is returned regardless of
        its expiry, for display.
        """
        credential = self._store.load()
        if credential is None:
            return None
        if not include_expired and credential.is_expired(self._clock()):
            return None
        return credential

    def get_credential(self, password: Optional[str] = None) -> str:
        """Return a usable access key, acquiring one if necessary."""
        return self.get_credential_record(password).secret

    def get_credential_record(self, password: Optional[str] = None) -> Credential:
        """Like :meth:`get_credential` but return the full :class:`Credential`.

        Args:
            password: Typed into the login form when acquisition is needed.
                When omitted, ``settings.password_source`` is consulted, and
                only if the browser actually has to be driven.

        Raises:
            AcquisitionError: If the browser flow fails.
            TokenParseError: If the page text holds no access key.
            AuthError: If the freshly issued credential is already expired.
        """
        with self._lock:
            now = self._clock()
            cached = self._store.load()
            if cached is not None and not cached.is_expired(now):
                logger.debug(
                    "Reusing cached credential %s (%s left)",
                    cached.masked_secret,
                    cached.remaining(now),
                )
                return cached

            if cached is not None:
                logger.info("Cached credential expired at %s; discarding it", cached.expires_at)
                try:
                    self._store.clear()
                except StoreError as exc:
                    logger.warning("Could not remove expired credential: %s", exc)

            return self._acquire(password)

    def _acquire(self, password: Optional[str]) -> Credential:
        if password is None and self._settings.password_source:
            password = resolve_secret(self._settings.password_source)

        logger.info("Acquiring a new credential via the browser")
        raw = self._driver.acquire_raw_token_text(
            self._settings.effective_login_url(),
            self._settings.token_selector,
            self._settings.wait_timeout_seconds,
            password=password,
        )
        return self._accept(raw)

    def inject_credential(self, raw_token_text: str) -> Credential:
        """Parse operator-supplied token text and cache it without a browser.

        Raises:
            TokenParseError: If the text holds no access key.
            AuthError: If the text describes an already-expired credential.
        """
        with self._lock:
            return self._accept(raw_token_text)

    def delete_credential(self) -> None:
        """Remove the cached credential. Succeeds when nothing is cached."""
        with self._lock:
            self._store.clear()
        logger.info("Cached credential deleted")

    def _accept(self, raw: str) -> Credential:
        now = self._clock()
        result = parse_token_text(
            raw,
            default_lifetime_minutes=self._settings.default_lifetime_minutes,
            now=now,
        )
        self.last_parse = result
        credential = result.credential

        if credential.is_expired(now):
            raise AuthError(
                f"Credential {credential.masked_secret} expired at "
                f"{credential.expires_at.isoformat()} before it could be used"
            )

        try:
            self._store.save(credential)
        except StoreError as exc:
            logger.warning("Credential obtained but not cached: %s", exc)

        logger.info(
            "Obtained credential %s for %s, valid until %s",
            credential.masked_secret,
            credential.subject or "unknown user",
            credential.expires_at.isoformat(),
        )
        return credential
