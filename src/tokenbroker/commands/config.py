"""Config commands -- view and modify tokenbroker settings.

Provides the ``tokenbroker config`` group for reading, updating and
resetting :class:`~tokenbroker.models.BrokerSettings`, persisted as
``settings.json`` in the config directory.
"""

from __future__ import annotations

from typing import Any

import typer

from tokenbroker.output import error, format_response, info, success

config_app = typer.Typer(no_args_is_help=True)


def _coerce(key: str, current: Any, value: str) -> Any:
    """Convert *value* to the type of the field's current value.

    Raises:
        typer.Exit: With code 2 if the value does not fit the field.
    """
    if value.lower() in ("none", "null") and not isinstance(current, (bool, int, float, list)):
        return None
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes", "on")
    if isinstance(current, (int, float)):
        try:
            return type(current)(value)
        except ValueError:
            error(f"Expected {type(current).__name__} for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    if isinstance(current, list):
        items = [item.strip() for item in value.split(",") if item.strip()]
        if current and all(isinstance(item, int) for item in current):
            try:
                return [int(item) for item in items]
            except ValueError:
                error(f"Expected comma-separated integers for {key}, got: {value}")
                raise typer.Exit(code=2) from None
        return items
    return value


@config_app.command("show")
def config_show() -> None:
    """Show the saved settings.

    Environment variables (``TOKENBROKER_*``) and command-line flags are
    applied on top of these at run time.

    Example::

        tokenbroker config show
        tokenbroker --json config show
    """
    from tokenbroker.config import get_config_dir, load_settings

    settings = load_settings()
    info(f"Config directory: {get_config_dir()}")
    format_response(settings.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Setting key (dot notation, e.g. 'browser.headless')."
    ),
    value: str = typer.Argument(help="Value to set ('none' clears optional settings)."),
) -> None:
    """Set a setting value.

    The value is coerced to the type of the existing field; lists take
    comma-separated items. The result is validated before saving.

    Example::

        tokenbroker config set base_url https://erp.example.com
        tokenbroker config set browser.headless true
        tokenbroker config set browser.debug_ports 9222,9333
        tokenbroker config set password_source env:ERP_PASSWORD
    """
    from tokenbroker.config import load_settings, save_settings
    from tokenbroker.models import BrokerSettings

    settings = load_settings()
    data = settings.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid setting key: {key}")
            raise typer.Exit(code=2)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target:
        error(f"Unknown setting key: {key}")
        raise typer.Exit(code=2)

    coerced = _coerce(key, target[final_key], value)
    target[final_key] = coerced

    try:
        new_settings = BrokerSettings.model_validate(data)
    except ValueError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_settings(new_settings)
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Reset settings to defaults. Asks for confirmation unless ``--force``.

    The cached credential is not touched; use ``tokenbroker token delete``.
    """
    from tokenbroker.config import save_settings
    from tokenbroker.models import BrokerSettings

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        if not typer.confirm("Reset all settings to defaults?"):
            info("Cancelled.")
            raise typer.Exit()

    save_settings(BrokerSettings())
    success("Settings reset to defaults.")
