"""Execute ERP API requests with a broker-supplied bearer credential.

:class:`RequestDispatcher` wraps :class:`httpx.Client` and layers on:

- **Credential injection** -- every call asks the
  :class:`~tokenbroker.auth.broker.CredentialBroker` for the current access
  key and sends it as ``Authorization: Bearer``. The broker reuses its
  cached credential, so this is cheap except when the key has expired.
- **Dry-run mode** -- prints the request to stderr with the credential
  masked and returns a synthetic 200 response without acquiring a
  credential or sending traffic.
- **Retry with backoff** -- GET requests are retried on 5xx and network
  errors with exponential delay (1 s, 2 s, 4 s, ...). Other methods create
  records and are sent exactly once.
- **Error mapping** -- 401/403, 404 and other 4xx/5xx statuses become
  :class:`~tokenbroker.exceptions.AuthError`,
  :class:`~tokenbroker.exceptions.NotFoundError` and
  :class:`~tokenbroker.exceptions.ServerError`.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional

import httpx

from tokenbroker.auth.broker import CredentialBroker
from tokenbroker.exceptions import AuthError, ConnectionError_, NotFoundError, ServerError
from tokenbroker.models import BrokerSettings
from tokenbroker.operations import ApiRequest
from tokenbroker.output import get_output

logger = logging.getLogger(__name__)

_ERROR_EXCERPT_CHARS = 200


class RequestDispatcher:
    """Send :class:`~tokenbroker.operations.ApiRequest` objects to the ERP.

    Must be used as a context manager so that the underlying connection
    pool is opened and closed.

    Args:
        settings: Supplies ``base_url`` and the request timeout, SSL and
            retry settings.
        broker: Source of the bearer credential.
        password: Forwarded to the broker if a new credential is needed.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
        dry_run: Print requests instead of sending them.
        sleep: Backoff sleep function; injectable for tests.

    Example::

        with RequestDispatcher(settings, broker) as dispatcher:
            data = dispatcher.call(build_request(get_operation("stock-list"), {}))
    """

    def __init__(
        self,
        settings: BrokerSettings,
        broker: CredentialBroker,
        password: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
        dry_run: bool = False,
        sleep: Any = time.sleep,
    ) -> None:
        self._settings = settings
        self._broker = broker
        self._password = password
        self._transport = transport
        self._dry_run = dry_run
        self._sleep = sleep
        self._client: Optional[httpx.Client] = None

    def __enter__(self) -> RequestDispatcher:
        config = self._settings.request
        kwargs: dict[str, Any] = {
            "base_url": self._settings.base_url,
            "timeout": config.timeout,
            "verify": config.verify_ssl,
            "follow_redirects": True,
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        self._client = httpx.Client(**kwargs)
        return self

    def __exit__(self, *args: object) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def invoke(self, request: ApiRequest) -> httpx.Response:
        """Send *request* and return the successful response.

        Raises:
            AuthError: On 401 / 403.
            NotFoundError: On 404.
            ServerError: On other error statuses, after retries for 5xx.
            ConnectionError_: On network / timeout errors after all retries.
        """
        if self._dry_run:
            return self._print_dry_run(request)

        credential = self._broker.get_credential(self._password)
        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {credential}",
        }
        logger.info("ERP API call: %s %s", request.method, request.endpoint)
        response = self._execute_with_retry(request, headers)
        self._map_response_error(response)
        return response

    def call(self, request: ApiRequest) -> Any:
        """Send *request* and return the decoded JSON body (or text)."""
        response = self.invoke(request)
        try:
            return response.json()
        except ValueError:
            return response.text

    def _execute_with_retry(
        self, request: ApiRequest, headers: dict[str, str]
    ) -> httpx.Response:
        assert self._client is not None, "Dispatcher not initialised -- use as context manager"

        max_retries = self._settings.request.max_retries if request.method == "GET" else 0
        kwargs: dict[str, Any] = {
            "method": request.method,
            "url": request.endpoint,
            "headers": headers,
            "params": request.params or None,
        }
        if request.method != "GET" and request.body is not None:
            kwargs["json"] = request.body

        for attempt in range(max_retries + 1):
            try:
                response = self._client.request(**kwargs)
            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                if attempt < max_retries:
                    delay = 2 ** attempt
                    logger.debug(
                        "Connection error: %s, retrying in %ss (attempt %d/%d)",
                        exc, delay, attempt + 1, max_retries,
                    )
                    self._sleep(delay)
                    continue
                attempts = max_retries + 1
                raise ConnectionError_(
                    f"Connection failed after {attempts} attempt"
                    f"{'s' if attempts != 1 else ''}: {exc}"
                ) from exc

            if response.status_code >= 500 and attempt < max_retries:
                delay = 2 ** attempt
                logger.debug(
                    "Server error %d, retrying in %ss (attempt %d/%d)",
                    response.status_code, delay, attempt + 1, max_retries,
                )
                self._sleep(delay)
                continue
            return response

        raise ServerError("Request failed after all retries")  # pragma: no cover

    def _map_response_error(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        try:
            detail = response.json()
            if isinstance(detail, dict):
                msg = detail.get("Mesaj") or detail.get("message") or detail.get("error") or ""
                if not msg:
                    msg = json.dumps(detail, ensure_ascii=False)[:_ERROR_EXCERPT_CHARS]
            else:
                msg = str(detail)[:_ERROR_EXCERPT_CHARS]
        except ValueError:
            msg = response.text[:_ERROR_EXCERPT_CHARS] if response.text else ""

        prefix = f"HTTP {status}"
        if response.reason_phrase:
            prefix = f"{prefix} {response.reason_phrase}"
        full_msg = f"{prefix}: {msg}" if msg else prefix

        if status in (401, 403):
            raise AuthError(full_msg)
        if status == 404:
            raise NotFoundError(full_msg)
        raise ServerError(full_msg)

    def _print_dry_run(self, request: ApiRequest) -> httpx.Response:
        output = get_output()
        url = f"{self._settings.base_url.rstrip('/')}{request.endpoint}"
        output.info(f"[dry-run] {request.method} {url}")
        output.info("  Header: Authorization: Bearer <credential>")
        for key, value in request.params.items():
            output.info(f"  Param: {key}={value}")
        if request.body is not None:
            output.info(f"  Body (JSON): {json.dumps(request.body, indent=2, ensure_ascii=False)}")

        return httpx.Response(
            status_code=200,
            headers={"content-type": "application/json"},
            json={"dry_run": True, "message": "Request was not sent"},
            request=httpx.Request(method=request.method, url=url),
        )
