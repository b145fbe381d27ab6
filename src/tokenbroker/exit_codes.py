"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~tokenbroker.exceptions.TokenBrokerError` subclass.
Shell wrappers can inspect the exit code to tell a failed browser flow apart
from a changed token page layout without parsing stderr.

Example::

    $ tokenbroker token get
    $ echo $?
    9   # EXIT_TOKEN_PARSE_ERROR -- the page format changed
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required fields."""

EXIT_AUTH_FAILURE = 3
"""The ERP rejected the credential, or no usable credential is available."""

EXIT_NOT_FOUND = 4
"""The requested resource was not found (HTTP 404)."""

EXIT_SERVER_ERROR = 5
"""The remote API returned an error status."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_ACQUISITION_FAILURE = 8
"""The browser flow failed: no attach or launch, navigation error, or timeout."""

EXIT_TOKEN_PARSE_ERROR = 9
"""The browser flow worked but no access key could be read from the page text."""

EXIT_STORE_ERROR = 11
"""The credential file could not be written or removed."""
