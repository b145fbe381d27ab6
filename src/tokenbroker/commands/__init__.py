"""Built-in CLI sub-commands for tokenbroker.

* :mod:`~tokenbroker.commands.token` -- get, show, delete and inject the
  cached credential.
* :mod:`~tokenbroker.commands.call` -- list and call named ERP operations,
  or call an arbitrary endpoint.
* :mod:`~tokenbroker.commands.config` -- view and modify settings.

The helpers below are shared by the command modules. Commands look them up
at call time from their own module namespace, so tests can patch
``tokenbroker.commands.<module>.build_broker`` and friends.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

import typer

from tokenbroker.auth.broker import CredentialBroker
from tokenbroker.client.dispatcher import RequestDispatcher
from tokenbroker.config import resolve_secret, resolve_settings
from tokenbroker.exceptions import TokenBrokerError
from tokenbroker.models import BrokerSettings
from tokenbroker.output import error


def context_flag(ctx: typer.Context, name: str, default: object = None) -> object:
    """Read a global option stored by the root callback in ``ctx.obj``."""
    return ctx.obj.get(name, default) if ctx.obj else default


def settings_from_context(ctx: typer.Context) -> BrokerSettings:
    """Resolve settings, applying the root command's override flags."""
    return resolve_settings(
        cli_base_url=context_flag(ctx, "base_url"),  # type: ignore[arg-type]
        cli_login_url=context_flag(ctx, "login_url"),  # type: ignore[arg-type]
        cli_headless=context_flag(ctx, "headless"),  # type: ignore[arg-type]
    )


def build_broker(settings: BrokerSettings) -> CredentialBroker:
    return CredentialBroker(settings)


def build_dispatcher(
    settings: BrokerSettings,
    broker: CredentialBroker,
    password: Optional[str] = None,
    dry_run: bool = False,
) -> RequestDispatcher:
    return RequestDispatcher(settings, broker, password=password, dry_run=dry_run)


def password_from_source(source: Optional[str]) -> Optional[str]:
    """Resolve ``--password-source`` (``env:VAR``, ``file:/path``, ``prompt``)."""
    if not source:
        return None
    return resolve_secret(source)


@contextmanager
def exit_on_error() -> Iterator[None]:
    """Print a :class:`TokenBrokerError` and exit with its code."""
    try:
        yield
    except TokenBrokerError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
