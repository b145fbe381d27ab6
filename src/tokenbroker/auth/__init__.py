"""Session credential brokering for the ERP.

The ERP has no programmatic login: a human-facing page renders a temporary
access key after the user logs in. This package turns that flow into a
reusable bearer credential.

The main entry points are:

- :class:`CredentialBroker` -- reuse-or-acquire policy; the one place other
  code asks for a credential.
- :class:`CredentialStore` -- single-slot, atomically written credential cache.
- :class:`BrowserDriver` -- attaches to or launches a browser and scrapes the
  access-key element.
- :func:`parse_token_text` -- extracts the credential fields from scraped text.

Typical usage::

    from tokenbroker.auth import CredentialBroker

    broker = CredentialBroker(settings)
    secret = broker.get_credential()
"""

from tokenbroker.auth.broker import CredentialBroker
from tokenbroker.auth.browser_driver import BrowserDriver, BrowserSession, SessionMode
from tokenbroker.auth.credential_store import Credential, CredentialStore, mask_secret
from tokenbroker.auth.token_parser import TokenParseResult, parse_token_text

__all__ = [
    "BrowserDriver",
    "BrowserSession",
    "Credential",
    "CredentialBroker",
    "CredentialStore",
    "SessionMode",
    "TokenParseResult",
    "mask_secret",
    "parse_token_text",
]
