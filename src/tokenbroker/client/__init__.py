"""HTTP dispatch of ERP API requests.

:class:`RequestDispatcher` wraps :mod:`httpx` with bearer-credential
injection from the :class:`~tokenbroker.auth.broker.CredentialBroker`,
dry-run mode, retry with exponential backoff and status-to-exception
mapping.

Example::

    from tokenbroker.client import RequestDispatcher

    with RequestDispatcher(settings, broker) as dispatcher:
        data = dispatcher.call(request)
"""

from tokenbroker.client.dispatcher import RequestDispatcher

__all__ = ["RequestDispatcher"]
