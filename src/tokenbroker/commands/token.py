"""Token commands -- obtain, inspect and manage the cached ERP credential.

Typical workflow::

    tokenbroker token get                  # cached token, or log in via the browser
    tokenbroker token show                 # masked summary of the cached token
    tokenbroker token inject page.txt      # seed the cache from copied page text
    tokenbroker token delete --force       # forget the cached token

``token get`` prints only the access key on stdout so it can be used in
command substitution; everything else goes to stderr.
"""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer

from tokenbroker.auth.credential_store import Credential
from tokenbroker.commands import (
    build_broker,
    context_flag,
    exit_on_error,
    password_from_source,
    settings_from_context,
)
from tokenbroker.exceptions import InvalidUsageError
from tokenbroker.output import format_response, get_output, info, print_data, success, suggest, warning

token_app = typer.Typer(no_args_is_help=True)


def _format_remaining(credential: Credential) -> str:
    remaining = credential.remaining(datetime.now(timezone.utc))
    if remaining.total_seconds() <= 0:
        return "expired"
    minutes = int(remaining.total_seconds() // 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m" if hours else f"{minutes}m"


@token_app.command("get")
def token_get(
    ctx: typer.Context,
    password_source: Optional[str] = typer.Option(
        None,
        "--password-source",
        "-s",
        help="Login password source: env:VAR, file:/path, prompt.",
    ),
    meta: bool = typer.Option(
        False, "--meta", help="Print the full credential record instead of the key."
    ),
) -> None:
    """Print a usable access key, opening a browser only if needed.

    A cached, unexpired key is printed immediately. Otherwise the ERP's
    access-key page is opened (attaching to a browser started with a
    remote-debugging port when one is running) and the command waits for
    you to log in.

    Example::

        tokenbroker token get
        tokenbroker token get --password-source env:ERP_PASSWORD
        curl -H "Authorization: Bearer $(tokenbroker token get)" ...
    """
    with exit_on_error():
        settings = settings_from_context(ctx)
        password = password_from_source(password_source)
        broker = build_broker(settings)
        credential = broker.get_credential_record(password)

    if broker.last_parse is not None and broker.last_parse.used_fallback:
        warning(
            "The access key label was not found on the page; the longest "
            "token-like text was used instead."
        )
        suggest("Check it with: tokenbroker token show")

    if meta:
        format_response(credential.model_dump(mode="json", exclude={"raw_source_text"}))
    else:
        print_data(credential.secret)


@token_app.command("show")
def token_show(ctx: typer.Context) -> None:
    """Show the cached credential with its secret masked.

    Example::

        tokenbroker token show
        tokenbroker --json token show
    """
    with exit_on_error():
        settings = settings_from_context(ctx)
        broker = build_broker(settings)
    credential = broker.current_credential(include_expired=True)
    if credential is None:
        info("No cached credential.")
        suggest("Get one: tokenbroker token get")
        return

    expired = credential.is_expired()
    rows = [
        ["Secret", credential.masked_secret],
        ["Subject", credential.subject or "-"],
        ["Group", credential.group or "-"],
        ["Valid From", credential.valid_from or "-"],
        ["Valid To", credential.valid_to or "-"],
        ["Issued At", credential.issued_at.isoformat(timespec="seconds")],
        ["Expires At", credential.expires_at.isoformat(timespec="seconds")],
        ["Remaining", _format_remaining(credential)],
        ["Status", "expired" if expired else "valid"],
        ["File", str(broker.store.path)],
    ]
    get_output().print_table(["Field", "Value"], rows, title="Cached Credential")
    if expired:
        suggest("It will be replaced on the next: tokenbroker token get")


@token_app.command("delete")
def token_delete(ctx: typer.Context) -> None:
    """Delete the cached credential. Succeeds when nothing is cached.

    Asks for confirmation unless ``--force`` is active.

    Example::

        tokenbroker token delete
        tokenbroker --force token delete
    """
    with exit_on_error():
        settings = settings_from_context(ctx)
        broker = build_broker(settings)
        if not broker.store.path.exists():
            info("No cached credential.")
            broker.delete_credential()
            return

        if not context_flag(ctx, "force", False):
            if not typer.confirm("Delete the cached credential?"):
                info("Cancelled.")
                raise typer.Exit()

        broker.delete_credential()
    success("Cached credential deleted.")


@token_app.command("inject")
def token_inject(
    ctx: typer.Context,
    source: str = typer.Argument(
        "-", help="File holding the copied access-key page text, or '-' for stdin."
    ),
) -> None:
    """Seed the cache from access-key page text without opening a browser.

    Useful when the page was opened elsewhere: copy the whole access-key
    block (user, key and validity lines) and pipe or save it.

    Example::

        tokenbroker token inject page.txt
        pbpaste | tokenbroker token inject
    """
    with exit_on_error():
        if source == "-":
            raw = sys.stdin.read()
        else:
            path = Path(source).expanduser()
            if not path.is_file():
                raise InvalidUsageError(f"File not found: {path}")
            raw = path.read_text(encoding="utf-8")

        settings = settings_from_context(ctx)
        broker = build_broker(settings)
        credential = broker.inject_credential(raw)

    if broker.last_parse is not None and broker.last_parse.missing_fields:
        info(f"Not found in the text: {', '.join(broker.last_parse.missing_fields)}")
    success(
        f"Cached credential {credential.masked_secret}, valid until "
        f"{credential.expires_at.isoformat(timespec='minutes')}."
    )
