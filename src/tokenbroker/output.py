"""Where tokenbroker's output goes.

Anything a script may capture goes to stdout: the bare access key from
``token get``, ERP response payloads, operation tables. This keeps
``curl -H "Authorization: Bearer $(tokenbroker token get)" ...`` working.
Everything else (progress notes, warnings, errors and records from the
``tokenbroker`` logger) goes to stderr.

One :class:`OutputManager` is built by :func:`~tokenbroker.app.main_callback`
from the global flags and installed with :func:`set_output`; commands use
the module-level helpers below.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

LOGGER_NAME = "tokenbroker"

_PLAIN_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


class OutputFormat(str, Enum):
    """``--json`` / ``--plain`` selection; ``AUTO`` picks by terminal."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


def _parse_if_json(data: Any) -> Any:
    """ERP endpoints sometimes answer JSON with a text content type."""
    if not isinstance(data, str):
        return data
    try:
        return json.loads(data)
    except (json.JSONDecodeError, TypeError):
        return data


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


class OutputManager:
    """Holds the output flags and the two Rich consoles.

    Args:
        format: ``AUTO`` becomes ``RICH`` on an interactive, coloured
            terminal and ``PLAIN`` otherwise.
        no_color: ``--no-color``; ``NO_COLOR`` and ``TERM=dumb`` also apply.
        quiet: Hide info, success and hint lines; errors still show.
        verbose: Show ``[debug]`` lines and DEBUG log records.
        output_file: ``--output`` path receiving data instead of stdout.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
        output_file: Optional[str] = None,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose
        self._output_file = output_file

        if format != OutputFormat.AUTO:
            self._format = format
        elif _is_tty() and not self._no_color:
            self._format = OutputFormat.RICH
        else:
            self._format = OutputFormat.PLAIN

        rich_stdout = self._format == OutputFormat.RICH
        self._stdout = Console(file=sys.stdout, no_color=self._no_color, force_terminal=rich_stdout)
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    def configure_logging(self) -> logging.Handler:
        """Attach a stderr handler to the ``tokenbroker`` logger.

        The threshold is DEBUG with ``--verbose``, ERROR with ``--quiet`` and
        WARNING otherwise. Re-running swaps the handler instead of adding a
        second one.
        """
        level = logging.WARNING
        if self._verbose:
            level = logging.DEBUG
        elif self._quiet:
            level = logging.ERROR

        handler: logging.Handler
        if self._no_color:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(_PLAIN_LOG_FORMAT))
        else:
            handler = RichHandler(console=self._stderr, show_path=False, show_time=self._verbose)
        handler.set_name(LOGGER_NAME)

        logger = logging.getLogger(LOGGER_NAME)
        for stale in [h for h in logger.handlers if h.get_name() == LOGGER_NAME]:
            logger.removeHandler(stale)
        logger.addHandler(handler)
        logger.setLevel(level)
        return handler

    # ------------------------------------------------------------------ #
    # stdout
    # ------------------------------------------------------------------ #

    def format_response(self, data: Any) -> None:
        """Render an ERP response body (``--output`` replaces the file)."""
        if self._output_file:
            self._write_file(_dump(data) if isinstance(data, (dict, list)) else str(data), "w")
            return

        data = _parse_if_json(data)
        if self._format == OutputFormat.JSON:
            self.print_data(data if isinstance(data, str) else _dump(data))
        elif self._format == OutputFormat.PLAIN:
            for line in _plain_lines(data):
                self.print_data(line)
        elif isinstance(data, (dict, list)):
            self._stdout.print(Syntax(_dump(data), "json", theme="monokai", word_wrap=True))
        else:
            self._stdout.print(str(data))

    def print_data(self, text: str) -> None:
        """Emit one piece of data; ``--output`` appends to the file."""
        if self._output_file:
            self._write_file(text, "a")
        else:
            print(text, file=sys.stdout, flush=True)

    def print_table(
        self,
        headers: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
    ) -> None:
        if self._format == OutputFormat.JSON:
            self.print_data(json.dumps([dict(zip(headers, row)) for row in rows], indent=2, ensure_ascii=False))
            return
        if self._format == OutputFormat.PLAIN:
            for row in [headers, *rows]:
                self.print_data("\t".join(row))
            return

        table = Table(title=title, show_header=True, header_style="bold cyan")
        for header in headers:
            table.add_column(header)
        for row in rows:
            table.add_row(*row)
        self._stdout.print(table)

    # ------------------------------------------------------------------ #
    # stderr
    # ------------------------------------------------------------------ #

    def info(self, message: str) -> None:
        self._notice(message, quiet_hides=True)

    def success(self, message: str) -> None:
        self._notice(message, style="green", quiet_hides=True)

    def warning(self, message: str) -> None:
        self._notice(message, label="Warning:", label_style="yellow")

    def error(self, message: str) -> None:
        self._notice(message, label="Error:", label_style="bold red")

    def suggest(self, message: str) -> None:
        """Print a ``→ next command`` hint."""
        self._notice(f"→ {message}", style="dim", quiet_hides=True)

    def debug(self, message: str) -> None:
        if self._verbose:
            self._notice(f"[debug] {message}", style="dim")

    def _notice(
        self,
        message: str,
        *,
        style: Optional[str] = None,
        label: Optional[str] = None,
        label_style: Optional[str] = None,
        quiet_hides: bool = False,
    ) -> None:
        if quiet_hides and self._quiet:
            return
        if self._no_color:
            print(f"{label} {message}" if label else message, file=sys.stderr, flush=True)
            return

        markup = escape(message)
        if style:
            markup = f"[{style}]{markup}[/{style}]"
        if label:
            markup = f"[{label_style}]{label}[/{label_style}] {markup}"
        self._stderr.print(markup)

    def _write_file(self, text: str, mode: str) -> None:
        assert self._output_file is not None
        with open(self._output_file, mode, encoding="utf-8") as f:
            f.write(text if text.endswith("\n") else text + "\n")


def _plain_lines(data: Any) -> list[str]:
    """Tab-separated lines: ``key<TAB>value`` for a record, one row per list item."""
    if isinstance(data, dict):
        return [f"{key}\t{value}" for key, value in data.items()]
    if isinstance(data, list):
        return [
            "\t".join(str(v) for v in item.values()) if isinstance(item, dict) else str(item)
            for item in data
        ]
    return [str(data)]


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    if os.environ.get("NO_COLOR") is not None:
        return True
    return os.environ.get("TERM") == "dumb"


# ------------------------------------------------------------------ #
# Process-wide instance
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    global _output
    _output = None


def format_response(data: Any) -> None:
    get_output().format_response(data)


def print_data(text: str) -> None:
    get_output().print_data(text)


def info(message: str) -> None:
    get_output().info(message)


def error(message: str) -> None:
    get_output().error(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def suggest(message: str) -> None:
    get_output().suggest(message)
