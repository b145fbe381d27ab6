"""Typer application and CLI entry point for tokenbroker.

This module wires the root Typer application, its global flags and the
built-in sub-commands (``token``, ``operations``, ``call``, ``api``,
``config``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs a SIGINT handler, invokes the Typer app and
maps :class:`~tokenbroker.exceptions.TokenBrokerError` to its exit code.
Unhandled exceptions are written to a crash log under the data directory.

See Also:
    :mod:`tokenbroker.config`: Settings resolution.
    :mod:`tokenbroker.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer

from tokenbroker import __version__
from tokenbroker.commands.call import api_command, call_command, operations_command
from tokenbroker.commands.config import config_app
from tokenbroker.commands.token import token_app
from tokenbroker.exit_codes import EXIT_GENERIC_FAILURE

app = typer.Typer(
    name="tokenbroker",
    help="Reuse browser-issued ERP access keys for API calls.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tokenbroker {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    base_url: Optional[str] = typer.Option(
        None, "--base-url", help="ERP API root URL (overrides settings)."
    ),
    login_url: Optional[str] = typer.Option(
        None, "--login-url", help="Access-key page URL (overrides settings)."
    ),
    headless: Optional[bool] = typer.Option(
        None, "--headless/--headed", help="Run a launched browser without a window."
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
    dry_run: bool = typer.Option(
        False, "--dry-run", "-n", help="Print API requests without sending them."
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmations."),
    output_file: Optional[str] = typer.Option(
        None, "-o", "--output", help="Write response data to this file."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~tokenbroker.output.OutputManager`, routes
    log records to stderr, and stores the shared flags in ``ctx.obj`` for
    the sub-commands.
    """
    from tokenbroker.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(
        format=fmt,
        no_color=no_color,
        quiet=quiet,
        verbose=verbose,
        output_file=output_file,
    )
    set_output(output)
    output.configure_logging()

    ctx.ensure_object(dict)
    ctx.obj["base_url"] = base_url
    ctx.obj["login_url"] = login_url
    ctx.obj["headless"] = headless
    ctx.obj["dry_run"] = dry_run
    ctx.obj["force"] = force
    ctx.obj["verbose"] = verbose


app.add_typer(token_app, name="token", help="Obtain and manage the cached access key.")
app.add_typer(config_app, name="config", help="Settings management.")
app.command("operations")(operations_command)
app.command("call")(call_command)
app.command("api")(api_command)


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write the current traceback under ``<data dir>/logs`` and return its path."""
    from tokenbroker.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``tokenbroker`` console script.

    Unhandled :class:`~tokenbroker.exceptions.TokenBrokerError` instances
    exit with the error's ``exit_code``. All other exceptions produce a
    crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from tokenbroker.exceptions import TokenBrokerError
        from tokenbroker.output import error

        if isinstance(exc, TokenBrokerError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
