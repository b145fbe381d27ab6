"""Tests for the output formatting system.

Covers:
- OutputFormat resolution (auto -> rich/plain based on TTY)
- NO_COLOR / TERM=dumb color disabling
- stdout vs stderr discipline
- Quiet and verbose modes
- format_response and print_table in every format
- Output file redirection
- Log handler installation
- Global instance management
"""

from __future__ import annotations

import json
import logging

import pytest

from tokenbroker import output as output_module
from tokenbroker.output import (
    LOGGER_NAME,
    OutputFormat,
    OutputManager,
    _should_disable_color,
    get_output,
    reset_output,
    set_output,
)


# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def non_tty(monkeypatch):
    """Patch stdout.isatty() to return False."""
    monkeypatch.setattr("tokenbroker.output._is_tty", lambda: False)


@pytest.fixture()
def tty(monkeypatch):
    """Patch stdout.isatty() to return True."""
    monkeypatch.setattr("tokenbroker.output._is_tty", lambda: True)
    monkeypatch.delenv("NO_COLOR", raising=False)
    monkeypatch.delenv("TERM", raising=False)


# ------------------------------------------------------------------ #
# Format and colour resolution
# ------------------------------------------------------------------ #


class TestFormatResolution:
    def test_auto_is_plain_when_piped(self, non_tty):
        assert OutputManager().format == OutputFormat.PLAIN

    def test_auto_is_rich_on_tty(self, tty):
        assert OutputManager().format == OutputFormat.RICH

    def test_auto_is_plain_on_tty_without_color(self, tty):
        assert OutputManager(no_color=True).format == OutputFormat.PLAIN

    def test_explicit_format_is_kept(self, non_tty):
        assert OutputManager(format=OutputFormat.JSON).format == OutputFormat.JSON


class TestColorDisabling:
    def test_no_color_env(self, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "")
        assert _should_disable_color() is True

    def test_term_dumb(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "dumb")
        assert _should_disable_color() is True

    def test_normal_term(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "xterm-256color")
        assert _should_disable_color() is False


# ------------------------------------------------------------------ #
# stdout / stderr discipline
# ------------------------------------------------------------------ #


class TestStreams:
    def test_access_key_goes_to_stdout_only(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.print_data("XYZ123ABC456DEF789")
        captured = capfd.readouterr()
        assert captured.out == "XYZ123ABC456DEF789\n"
        assert captured.err == ""

    @pytest.mark.parametrize("method", ["info", "success", "warning", "error", "suggest"])
    def test_diagnostics_go_to_stderr(self, capfd, non_tty, method):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        getattr(mgr, method)("diagnostic text")
        captured = capfd.readouterr()
        assert captured.out == ""
        assert "diagnostic text" in captured.err

    def test_prefixes_in_no_color(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.warning("w")
        mgr.error("e")
        mgr.suggest("s")
        err = capfd.readouterr().err
        assert "Warning: w" in err
        assert "Error: e" in err
        assert "→ s" in err


class TestQuietAndVerbose:
    def test_quiet_suppresses_info_but_not_errors(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
        mgr.info("hidden")
        mgr.success("hidden too")
        mgr.error("shown")
        mgr.print_data("data")
        captured = capfd.readouterr()
        assert "hidden" not in captured.err
        assert "shown" in captured.err
        assert captured.out == "data\n"

    def test_debug_only_with_verbose(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).debug("quiet debug")
        OutputManager(format=OutputFormat.PLAIN, no_color=True, verbose=True).debug("loud debug")
        err = capfd.readouterr().err
        assert "quiet debug" not in err
        assert "[debug] loud debug" in err


# ------------------------------------------------------------------ #
# format_response / print_table
# ------------------------------------------------------------------ #


class TestFormatResponse:
    def test_json_format(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON, no_color=True)
        mgr.format_response([{"StokKodu": "S-1", "StokAdi": "Vida"}])
        assert json.loads(capfd.readouterr().out) == [{"StokKodu": "S-1", "StokAdi": "Vida"}]

    def test_json_keeps_non_ascii(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON, no_color=True)
        mgr.format_response({"CariAdi": "Çağrı Ltd"})
        assert "Çağrı Ltd" in capfd.readouterr().out

    def test_json_string_is_reparsed(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON, no_color=True)
        mgr.format_response('{"a": 1}')
        assert json.loads(capfd.readouterr().out) == {"a": 1}

    def test_plain_dict(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.format_response({"subject": "a@b.com", "group": "7"})
        assert capfd.readouterr().out == "subject\ta@b.com\ngroup\t7\n"

    def test_plain_list_of_dicts(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.format_response([{"a": 1, "b": 2}, {"a": 3, "b": 4}])
        assert capfd.readouterr().out == "1\t2\n3\t4\n"

    def test_rich_dict_produces_output(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.RICH, no_color=True)
        mgr.format_response({"key": "value"})
        out = capfd.readouterr().out
        assert "key" in out
        assert "value" in out


class TestPrintTable:
    def test_json_mode(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON, no_color=True)
        mgr.print_table(["Field", "Value"], [["Subject", "a@b.com"]])
        assert json.loads(capfd.readouterr().out) == [{"Field": "Subject", "Value": "a@b.com"}]

    def test_plain_mode(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.print_table(["Name", "Endpoint"], [["stock-list", "/api/Stok"]], title="ignored")
        assert capfd.readouterr().out == "Name\tEndpoint\nstock-list\t/api/Stok\n"

    def test_rich_mode(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.RICH, no_color=True)
        mgr.print_table(["Name"], [["stock-list"]], title="Operations")
        captured = capfd.readouterr()
        assert "stock-list" in captured.out
        assert captured.err == ""


class TestOutputFile:
    def test_format_response_writes_file(self, tmp_path, capfd, non_tty):
        target = tmp_path / "out.json"
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, output_file=str(target))
        mgr.format_response({"ok": True})
        assert json.loads(target.read_text(encoding="utf-8")) == {"ok": True}
        assert capfd.readouterr().out == ""

    def test_print_data_appends(self, tmp_path, non_tty):
        target = tmp_path / "keys.txt"
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, output_file=str(target))
        mgr.print_data("first")
        mgr.print_data("second\n")
        assert target.read_text(encoding="utf-8") == "first\nsecond\n"


# ------------------------------------------------------------------ #
# Logging
# ------------------------------------------------------------------ #


class TestConfigureLogging:
    @pytest.mark.parametrize(
        ("kwargs", "level"),
        [({}, logging.WARNING), ({"verbose": True}, logging.DEBUG), ({"quiet": True}, logging.ERROR)],
    )
    def test_levels(self, non_tty, kwargs, level):
        OutputManager(no_color=True, **kwargs).configure_logging()
        assert logging.getLogger(LOGGER_NAME).level == level

    def test_handler_is_replaced_not_stacked(self, non_tty):
        mgr = OutputManager(no_color=True)
        mgr.configure_logging()
        mgr.configure_logging()
        named = [h for h in logging.getLogger(LOGGER_NAME).handlers if h.get_name() == LOGGER_NAME]
        assert len(named) == 1

    def test_records_go_to_stderr(self, capfd, non_tty):
        OutputManager(no_color=True).configure_logging()
        logging.getLogger("tokenbroker.auth.broker").warning("store unavailable")
        captured = capfd.readouterr()
        assert captured.out == ""
        assert "WARNING tokenbroker.auth.broker: store unavailable" in captured.err

    def test_rich_handler_when_colour_enabled(self, tty):
        from rich.logging import RichHandler

        handler = OutputManager().configure_logging()
        assert isinstance(handler, RichHandler)


# ------------------------------------------------------------------ #
# Global instance
# ------------------------------------------------------------------ #


class TestGlobalInstance:
    def test_get_output_creates_default(self):
        reset_output()
        assert isinstance(get_output(), OutputManager)

    def test_set_and_reset(self):
        mgr = OutputManager(quiet=True)
        set_output(mgr)
        assert get_output() is mgr
        reset_output()
        assert get_output() is not mgr

    def test_convenience_functions_delegate(self, capfd, non_tty):
        set_output(OutputManager(format=OutputFormat.PLAIN, no_color=True))
        output_module.print_data("stdout line")
        output_module.info("stderr line")
        captured = capfd.readouterr()
        assert captured.out == "stdout line\n"
        assert "stderr line" in captured.err
