"""Exception hierarchy for tokenbroker.

All exceptions inherit from :class:`TokenBrokerError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`tokenbroker.exit_codes`.
The top-level error handler in :func:`tokenbroker.app.main` catches
``TokenBrokerError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Messages never contain a full access key. Callers that need to mention a
credential use :func:`~tokenbroker.auth.credential_store.mask_secret`.

Subclass hierarchy::

    TokenBrokerError (exit 1)
    +-- InvalidUsageError   (exit 2)
    +-- AuthError           (exit 3)
    +-- NotFoundError       (exit 4)
    +-- ServerError         (exit 5)
    +-- ConnectionError_    (exit 6)
    +-- AcquisitionError    (exit 8)
    +-- TokenParseError     (exit 9)
    +-- StoreError          (exit 11)
    +-- ConfigError         (exit 1)
"""

from tokenbroker.exit_codes import (
    EXIT_ACQUISITION_FAILURE,
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
    EXIT_STORE_ERROR,
    EXIT_TOKEN_PARSE_ERROR,
)


class TokenBrokerError(Exception):
    """Base exception for all tokenbroker errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`tokenbroker.exit_codes`.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(TokenBrokerError):
    """Raised for invalid CLI arguments or missing required operation fields."""

    exit_code = EXIT_INVALID_USAGE


class AuthError(TokenBrokerError):
    """Raised when the ERP rejects a credential or none can be used."""

    exit_code = EXIT_AUTH_FAILURE


class NotFoundError(TokenBrokerError):
    """Raised when the API returns HTTP 404."""

    exit_code = EXIT_NOT_FOUND


class ServerError(TokenBrokerError):
    """Raised when the API returns an error status other than 401/403/404."""

    exit_code = EXIT_SERVER_ERROR


class ConnectionError_(TokenBrokerError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class AcquisitionError(TokenBrokerError):
    """Raised when the browser flow cannot produce raw token text.

    Covers attach/launch failures, navigation errors, and the token element
    never becoming visible within the wait timeout.
    """

    exit_code = EXIT_ACQUISITION_FAILURE


class TokenParseError(TokenBrokerError):
    """Raised when no access key can be extracted from scraped token text."""

    exit_code = EXIT_TOKEN_PARSE_ERROR


class StoreError(TokenBrokerError):
    """Raised when the credential file cannot be written or removed."""

    exit_code = EXIT_STORE_ERROR


class ConfigError(TokenBrokerError):
    """Raised for configuration problems (invalid settings file, bad secret sources)."""

    exit_code = EXIT_GENERIC_FAILURE
