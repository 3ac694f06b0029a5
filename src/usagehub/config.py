"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for usagehub:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/Library/Application Support`` on macOS, ``%APPDATA%`` on Windows.
  See :func:`get_config_dir` and :func:`default_data_dir`.
* **Global config** -- A single :class:`GlobalConfig` JSON file storing the
  plugins directory, data directory, and default provider selection.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables, and the global config into the effective settings.
* **Path helpers** -- :func:`expand_path`, :func:`read_text`,
  :func:`write_text` used by providers for ``~``-relative credential files.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) to prevent a half-written credential file after a
crash.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from usagehub.exceptions import ConfigError

_APP_NAME = "usagehub"
_CONFIG_FILENAME = "config.json"

DEFAULT_PLUGINS_DIR = Path(_APP_NAME) / "plugins"
"""Manifest directory used when none is configured, relative to the working directory."""

ENV_PLUGINS_DIR = "USAGEHUB_PLUGINS_DIR"
ENV_DATA_DIR = "USAGEHUB_DATA_DIR"


class GlobalConfig(BaseModel):
    """User-level settings stored in ``<config_dir>/config.json``."""

    plugins_dir: Optional[str] = Field(
        default=None, description="Directory holding <id>/plugin.json manifests"
    )
    data_dir: Optional[str] = Field(
        default=None, description="Root for per-provider private data"
    )
    default_ids: list[str] = Field(
        default_factory=list,
        description="Provider ids queried when none are given (empty = all)",
    )


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def user_config_base() -> Optional[Path]:
    """Return the platform's per-user configuration root, or ``None`` if unknown.

    Linux/BSD: ``$XDG_CONFIG_HOME`` or ``~/.config``.
    macOS: ``~/Library/Application Support``.
    Windows: ``%APPDATA%``.
    """
    system = platform.system()
    try:
        if _is_xdg_platform():
            return _xdg_base("XDG_CONFIG_HOME", (".config",))
        if system == "Darwin":
            return Path.home() / "Library" / "Application Support"
        if system == "Windows":
            appdata = os.environ.get("APPDATA", "")
            return Path(appdata) if appdata else None
    except RuntimeError:
        # Path.home() raises when no home directory can be determined.
        return None
    return None


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).

    Raises:
        ConfigError: If no per-user configuration root can be determined.
    """
    base = user_config_base()
    if base is None:
        raise ConfigError("Cannot determine the user configuration directory")
    path = base / _APP_NAME
    path.mkdir(parents=True, exist_ok=True)
    return path


def default_data_dir() -> Path:
    """Return the default data root without creating it.

    Ordered fallback: user config dir + ``usagehub``, then ``~/.usagehub``,
    then the relative ``.usagehub``.
    """
    base = user_config_base()
    if base is not None and str(base):
        return base / _APP_NAME
    try:
        return Path.home() / f".{_APP_NAME}"
    except RuntimeError:
        return Path(f".{_APP_NAME}")


# --- Path helpers ---


def expand_path(path: str | Path) -> Path:
    """Expand a leading ``~`` to the user's home directory."""
    return Path(path).expanduser()


def read_text(path: str | Path) -> str:
    """Read a UTF-8 file after expanding ``~``. Raises :class:`OSError`."""
    return expand_path(path).read_text(encoding="utf-8")


def write_text(path: str | Path, content: str) -> None:
    """Atomically write *content* with ``0o600`` permissions after expanding ``~``."""
    atomic_write(expand_path(path), content, mode=0o600)


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    On success the temp file is renamed over *path*; on any failure the temp
    file is cleaned up.

    Args:
        path: Destination file.
        data: Text to write.
        mode: Optional permission bits applied before any content is written.
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


# --- Global config ---


def _global_config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the user config directory.

    Returns:
        The deserialised :class:`GlobalConfig`. If the file does not exist,
        a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk."""
    data = config.model_dump(mode="json")
    atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def resolve_config(
    cli_plugins_dir: Optional[str] = None,
    cli_data_dir: Optional[str] = None,
) -> GlobalConfig:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_plugins_dir``, ``cli_data_dir``)
        2. Environment variables (``USAGEHUB_PLUGINS_DIR``, ``USAGEHUB_DATA_DIR``)
        3. User config (``<config_dir>/usagehub/config.json``)
        4. Defaults (``None``: the manager picks its own fallbacks)

    An explicitly resolved ``plugins_dir`` makes a missing manifest
    directory a hard error in the manager; leaving it ``None`` does not.
    """
    cfg = load_global_config()

    env_plugins = os.environ.get(ENV_PLUGINS_DIR)
    if env_plugins:
        cfg.plugins_dir = env_plugins
    env_data = os.environ.get(ENV_DATA_DIR)
    if env_data:
        cfg.data_dir = env_data

    if cli_plugins_dir is not None:
        cfg.plugins_dir = cli_plugins_dir
    if cli_data_dir is not None:
        cfg.data_dir = cli_data_dir

    return cfg
