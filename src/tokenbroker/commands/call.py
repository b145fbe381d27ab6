"""Operation commands -- call the ERP API with the brokered credential.

* ``tokenbroker operations [NAME]`` lists the named operations, or the
  fields of one operation.
* ``tokenbroker call NAME KEY=VALUE ...`` runs a named operation.
* ``tokenbroker api ENDPOINT`` calls any endpoint directly.

Every call obtains its credential through the broker, so the first call
after expiry opens the browser and the following calls reuse the new key.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import typer

from tokenbroker.commands import (
    build_broker,
    build_dispatcher,
    context_flag,
    exit_on_error,
    password_from_source,
    settings_from_context,
)
from tokenbroker.exceptions import InvalidUsageError
from tokenbroker.operations import ApiRequest, build_request, get_operation, list_operations
from tokenbroker.output import format_response, get_output


def parse_assignments(items: Optional[list[str]]) -> dict[str, str]:
    """Turn ``["A=1", "B=x=y"]`` into ``{"A": "1", "B": "x=y"}``.

    Raises:
        InvalidUsageError: If an item has no ``=`` or an empty key.
    """
    result: dict[str, str] = {}
    for item in items or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise InvalidUsageError(f"Expected KEY=VALUE, got: {item!r}")
        result[key.strip()] = value
    return result


def parse_json_body(body: Optional[str]) -> Any:
    if body is None:
        return None
    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise InvalidUsageError(f"--body is not valid JSON: {exc}") from exc


def _dispatch(ctx: typer.Context, request: ApiRequest, password_source: Optional[str]) -> None:
    settings = settings_from_context(ctx)
    password = password_from_source(password_source)
    broker = build_broker(settings)
    dry_run = bool(context_flag(ctx, "dry_run", False))
    with build_dispatcher(settings, broker, password=password, dry_run=dry_run) as dispatcher:
        data = dispatcher.call(request)
    format_response(data)


def operations_command(
    name: Optional[str] = typer.Argument(None, help="Show the fields of this operation."),
) -> None:
    """List named operations, or the fields of one operation.

    Example::

        tokenbroker operations
        tokenbroker operations stock-create
    """
    output = get_output()
    if name is None:
        rows = [
            [op.name, op.method, op.endpoint, ", ".join(op.required) or "-", op.description]
            for op in list_operations()
        ]
        output.print_table(
            ["Name", "Method", "Endpoint", "Required", "Description"], rows, title="Operations"
        )
        return

    with exit_on_error():
        op = get_operation(name)
    rows = [
        [
            field.name,
            field.kind,
            "yes" if field.name in op.required else "",
            field.description,
        ]
        for field in op.fields
    ]
    output.print_table(
        ["Field", "Type", "Required", "Description"],
        rows,
        title=f"{op.name}: {op.method} {op.endpoint}",
    )


def call_command(
    ctx: typer.Context,
    name: str = typer.Argument(help="Operation name (see `tokenbroker operations`)."),
    assignments: Optional[list[str]] = typer.Argument(
        None, help="Operation fields as KEY=VALUE."
    ),
    body: Optional[str] = typer.Option(
        None, "--body", "-b", help="Extra fields as a JSON object."
    ),
    password_source: Optional[str] = typer.Option(
        None, "--password-source", "-s", help="Login password source if a new token is needed."
    ),
) -> None:
    """Run a named ERP operation.

    Example::

        tokenbroker call stock-list EsnekAramaKisiti=vida Sayfa=1
        tokenbroker call stock-create StokKodu=S-001 StokAdi="M6 vida"
        tokenbroker --dry-run call account-create CariKodu=C1 CariAdi=Acme
    """
    with exit_on_error():
        op = get_operation(name)
        args: dict[str, Any] = dict(parse_assignments(assignments))
        extra = parse_json_body(body)
        if extra is not None:
            if not isinstance(extra, dict):
                raise InvalidUsageError("--body must be a JSON object")
            args.update(extra)
        request = build_request(op, args)
        _dispatch(ctx, request, password_source)


def api_command(
    ctx: typer.Context,
    endpoint: str = typer.Argument(help="API path, e.g. /api/Stok."),
    method: str = typer.Option("GET", "--method", "-X", help="HTTP method: GET or POST."),
    params: Optional[list[str]] = typer.Option(
        None, "--param", "-p", help="Query parameter as KEY=VALUE (repeatable)."
    ),
    body: Optional[str] = typer.Option(None, "--body", "-b", help="JSON request body."),
    password_source: Optional[str] = typer.Option(
        None, "--password-source", "-s", help="Login password source if a new token is needed."
    ),
) -> None:
    """Call any ERP endpoint with the brokered credential.

    Example::

        tokenbroker api /api/Stok --param Sayfa=1
        tokenbroker api /api/Cari -X POST --param KayitTipi=1 --body '{"CariKodu": "C1"}'
    """
    with exit_on_error():
        verb = method.upper()
        if verb not in ("GET", "POST"):
            raise InvalidUsageError(f"Unsupported method {method!r}; use GET or POST")
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        request = ApiRequest(
            endpoint=endpoint,
            method=verb,  # type: ignore[arg-type]
            params=parse_assignments(params),
            body=parse_json_body(body),
        )
        _dispatch(ctx, request, password_source)
