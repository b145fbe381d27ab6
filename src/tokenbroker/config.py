"""Settings management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for tokenbroker:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.tokenbroker/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Settings** -- A single :class:`~tokenbroker.models.BrokerSettings` JSON
  file. Managed via :func:`load_settings` and :func:`save_settings`.
* **Precedence resolution** -- :func:`resolve_settings` layers environment
  variables and CLI flags over the settings file.
* **Secret resolution** -- :func:`resolve_secret` reads the login password
  from env vars, files, or an interactive prompt.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`), which the credential store reuses so that a
concurrent reader never sees a half-written record.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
import tempfile
from pathlib import Path
from typing import Optional

from tokenbroker.exceptions import ConfigError
from tokenbroker.models import BrokerSettings

_APP_NAME = "tokenbroker"
_SETTINGS_FILENAME = "settings.json"
_CREDENTIAL_FILENAME = "credential.json"

ENV_BASE_URL = "TOKENBROKER_BASE_URL"
ENV_LOGIN_URL = "TOKENBROKER_LOGIN_URL"
ENV_CREDENTIAL_FILE = "TOKENBROKER_CREDENTIAL_FILE"
ENV_HEADLESS = "TOKENBROKER_HEADLESS"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform follows the XDG Base Directory layout (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/tokenbroker/`` (default ``~/.config/tokenbroker/``).
    On macOS/Windows: ``~/.tokenbroker/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (cached credential, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/tokenbroker/`` (default ``~/.local/share/tokenbroker/``).
    On macOS/Windows: ``~/.tokenbroker/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def default_credential_path() -> Path:
    """Return the default location of the cached credential record."""
    return get_data_dir() / _CREDENTIAL_FILENAME


def credential_path(settings: BrokerSettings) -> Path:
    """Return the credential file configured in *settings*, or the default."""
    if settings.credential_file is not None:
        return Path(settings.credential_file).expanduser()
    return default_credential_path()


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. When *mode* is given
    it is applied to the temp file before any content is written, so the
    final file never exists with looser permissions. On any failure the
    temp file is removed and the exception propagates.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Settings ---


def _settings_path() -> Path:
    """Path to the settings file."""
    return get_config_dir() / _SETTINGS_FILENAME


def load_settings() -> BrokerSettings:
    """Load settings from the XDG config directory.

    Returns:
        The deserialised :class:`~tokenbroker.models.BrokerSettings`. If the
        file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _settings_path()
    if not path.is_file():
        return BrokerSettings()
    try:
        text = path.read_text(encoding="utf-8")
        return BrokerSettings.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid settings at {path}: {exc}") from exc


def save_settings(settings: BrokerSettings) -> None:
    """Persist settings atomically to disk."""
    data = settings.model_dump(mode="json")
    atomic_write(_settings_path(), json.dumps(data, indent=2) + "\n")


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def resolve_settings(
    cli_base_url: Optional[str] = None,
    cli_login_url: Optional[str] = None,
    cli_headless: Optional[bool] = None,
) -> BrokerSettings:
    """Resolve settings with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_base_url``, ``cli_login_url``, ``cli_headless``)
        2. Environment variables (``TOKENBROKER_BASE_URL``,
           ``TOKENBROKER_LOGIN_URL``, ``TOKENBROKER_CREDENTIAL_FILE``,
           ``TOKENBROKER_HEADLESS``)
        3. User settings (``~/.config/tokenbroker/settings.json``)
        4. Defaults

    Returns:
        The effective :class:`~tokenbroker.models.BrokerSettings`.
    """
    settings = load_settings()

    env_base_url = os.environ.get(ENV_BASE_URL)
    if env_base_url:
        settings.base_url = env_base_url
    env_login_url = os.environ.get(ENV_LOGIN_URL)
    if env_login_url:
        settings.login_url = env_login_url
    env_credential_file = os.environ.get(ENV_CREDENTIAL_FILE)
    if env_credential_file:
        settings.credential_file = Path(env_credential_file)
    env_headless = os.environ.get(ENV_HEADLESS)
    if env_headless:
        settings.browser.headless = _env_flag(env_headless)

    if cli_base_url is not None:
        settings.base_url = cli_base_url
    if cli_login_url is not None:
        settings.login_url = cli_login_url
    if cli_headless is not None:
        settings.browser.headless = cli_headless

    return settings


# --- Secret source resolution ---


def resolve_secret(source: str) -> str:
    """Resolve a secret (the ERP login password) from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts the user interactively (requires a TTY)

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Secret file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read secret file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigError(
                "Cannot prompt for the password: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("ERP password: ")

    raise ConfigError(f"Unknown secret source format: {source}")
