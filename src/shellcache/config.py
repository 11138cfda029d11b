"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles the on-disk side of :class:`~shellcache.models.GenerationConfig`:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.shellcache/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_cache_dir`.
* **Config files** -- JSON, or YAML when the file ends in ``.yaml``/``.yml``.
  Loaded with :func:`load_config`, written with :func:`save_config`.
* **Precedence resolution** -- :func:`resolve_config` picks the file to load
  from a CLI flag, an environment variable, the project directory or the
  user config directory, then applies version overrides.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) so a crash never leaves a half-written config.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from shellcache.exceptions import ConfigError
from shellcache.models import GenerationConfig

_APP_NAME = "shellcache"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "shellcache.json"
_YAML_SUFFIXES = (".yaml", ".yml")

ENV_CONFIG = "SHELLCACHE_CONFIG"
ENV_VERSION = "SHELLCACHE_VERSION"


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

    On Linux/BSD: ``$XDG_CONFIG_HOME/shellcache/`` (default ``~/.config/shellcache/``).
    On macOS/Windows: ``~/.shellcache/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the cache directory holding the disk store, creating it if necessary.

    On Linux/BSD: ``$XDG_CACHE_HOME/shellcache/`` (default ``~/.cache/shellcache/``).
    On macOS/Windows: ``~/.shellcache/cache/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CACHE_HOME", (".cache",)) / _APP_NAME
    else:
        path = _fallback_base_dir() / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems.
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
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
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


# --- Loading and saving ---


def _parse(path: Path, text: str) -> Any:
    if path.suffix.lower() in _YAML_SUFFIXES:
        return yaml.safe_load(text)
    return json.loads(text)


def load_config(path: str | Path) -> GenerationConfig:
    """Load and validate a generation config file.

    Args:
        path: A ``.json``, ``.yaml`` or ``.yml`` file.

    Raises:
        ConfigError: If the file is missing, unparsable, or fails validation.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = _parse(path, path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config at {path}: expected a mapping at the top level")
    try:
        return GenerationConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_config(config: GenerationConfig, path: str | Path) -> None:
    """Persist *config* atomically as JSON or YAML (chosen by suffix)."""
    path = Path(path)
    data = config.model_dump(mode="json")
    if path.suffix.lower() in _YAML_SUFFIXES:
        text = yaml.safe_dump(data, sort_keys=False)
    else:
        text = json.dumps(data, indent=2) + "\n"
    _atomic_write(path, text)


def user_config_path() -> Path:
    """Path to the per-user config file."""
    return get_config_dir() / _CONFIG_FILENAME


def project_config_path() -> Path:
    """Path to the project-local config file in the working directory."""
    return Path.cwd() / _PROJECT_CONFIG_FILENAME


# --- Active generation marker ---

_ACTIVE_FILENAME = "active.json"


def load_active_version(store_dir: str | Path) -> Optional[str]:
    """Return the version recorded as active in *store_dir*, if any.

    An unreadable marker is treated as absent.
    """
    path = Path(store_dir) / _ACTIVE_FILENAME
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    version = data.get("version") if isinstance(data, dict) else None
    return version or None


def save_active_version(store_dir: str | Path, version: Optional[str]) -> None:
    """Record *version* as the active generation of *store_dir* (``None`` clears it)."""
    path = Path(store_dir) / _ACTIVE_FILENAME
    if version is None:
        path.unlink(missing_ok=True)
        return
    _atomic_write(path, json.dumps({"version": version}) + "\n")


# --- Precedence resolution ---


def find_config_path(cli_path: Optional[str | Path] = None) -> Path:
    """Pick the config file to load.

    Precedence (high to low):
        1. ``cli_path``
        2. ``$SHELLCACHE_CONFIG``
        3. ``./shellcache.json``
        4. ``<config dir>/config.json``

    Raises:
        ConfigError: If none of them exists.
    """
    if cli_path is not None:
        return Path(cli_path)
    env_path = os.environ.get(ENV_CONFIG)
    if env_path:
        return Path(env_path)
    for candidate in (project_config_path(), user_config_path()):
        if candidate.is_file():
            return candidate
    raise ConfigError(
        f"No configuration found; pass --config, set {ENV_CONFIG}, "
        f"or create ./{_PROJECT_CONFIG_FILENAME}"
    )


def resolve_config(
    cli_path: Optional[str | Path] = None,
    cli_version: Optional[str] = None,
) -> GenerationConfig:
    """Load the effective configuration.

    The file is chosen by :func:`find_config_path`.  The version tag is then
    overridden by ``cli_version`` or, failing that, ``$SHELLCACHE_VERSION``.
    """
    config = load_config(find_config_path(cli_path))
    version = cli_version or os.environ.get(ENV_VERSION)
    if version:
        config = config.model_copy(update={"version": version})
    return config
