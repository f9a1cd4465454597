"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for netpipe:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.netpipe/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_cache_dir`.
* **Global config** -- A single :class:`~netpipe.models.GlobalConfig`
  JSON file storing request, retry, cache and output defaults.
* **Precedence resolution** -- :func:`resolve_config` merges explicit
  arguments, environment variables, and the global config file into the
  final effective configuration.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) so a crash never leaves a half-written config or
cache snapshot behind.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from netpipe.exceptions import ConfigError
from netpipe.models import GlobalConfig

_APP_NAME = "netpipe"
_CONFIG_FILENAME = "config.json"

_TRUTHY = {"1", "true", "yes", "on"}


# --- Directories ---

# kind -> (XDG variable, default under $HOME)
_XDG_DIRS = {
    "config": ("XDG_CONFIG_HOME", ".config"),
    "cache": ("XDG_CACHE_HOME", ".cache"),
}


def _is_xdg_platform() -> bool:
    system = platform.system()
    return system == "Linux" or system.endswith("BSD")


def _app_dir(kind: str) -> Path:
    if _is_xdg_platform():
        env_var, default = _XDG_DIRS[kind]
        root = os.environ.get(env_var) or Path.home() / default
        path = Path(root) / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
        if kind == "cache":
            path = path / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_dir() -> Path:
    """Directory holding ``config.json``; created on first use.

    ``$XDG_CONFIG_HOME/netpipe`` on Linux and BSD, ``~/.netpipe`` elsewhere.
    """
    return _app_dir("config")


def get_cache_dir() -> Path:
    """Directory for cache snapshots and default download targets.

    ``$XDG_CACHE_HOME/netpipe`` on Linux and BSD, ``~/.netpipe/cache``
    elsewhere. Safe to wipe.
    """
    return _app_dir("cache")


def atomic_write(path: Path, data: str) -> None:
    """Replace *path* with *data*; on failure the previous file is left as it was."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = tempfile.NamedTemporaryFile(
        "w",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
        encoding="utf-8",
    )
    try:
        with tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp.name, path)
    except BaseException:
        Path(tmp.name).unlink(missing_ok=True)
        raise


# --- Global config ---


def _global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the XDG config directory.

    Returns:
        The deserialised :class:`~netpipe.models.GlobalConfig`. If the
        file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk."""
    data = config.model_dump(mode="json")
    atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def _env_number(name: str, cast: type) -> Optional[float]:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigError(f"Environment variable {name} must be a number, got {raw!r}") from exc


def resolve_config(
    timeout: Optional[float] = None,
    max_retries: Optional[int] = None,
    cache_name: Optional[str] = None,
    verbose: Optional[bool] = None,
) -> GlobalConfig:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. Explicit arguments
        2. Environment variables (``NETPIPE_TIMEOUT``, ``NETPIPE_MAX_RETRIES``,
           ``NETPIPE_CACHE_NAME``, ``NETPIPE_VERBOSE``)
        3. User config (``~/.config/netpipe/config.json``)
        4. Defaults

    Returns:
        The effective :class:`~netpipe.models.GlobalConfig`.

    Raises:
        ConfigError: If the config file or an environment value is invalid.
    """
    # 4 + 3. Base config (fills in defaults automatically)
    cfg = load_global_config()

    # 2. Environment
    env_timeout = _env_number("NETPIPE_TIMEOUT", float)
    if env_timeout is not None:
        cfg.request.timeout = env_timeout
    env_retries = _env_number("NETPIPE_MAX_RETRIES", int)
    if env_retries is not None:
        cfg.retry.max_retries = int(env_retries)
    env_cache_name = os.environ.get("NETPIPE_CACHE_NAME")
    if env_cache_name:
        cfg.cache.name = env_cache_name
    env_verbose = os.environ.get("NETPIPE_VERBOSE")
    if env_verbose:
        cfg.output.verbose = env_verbose.strip().lower() in _TRUTHY

    # 1. Explicit arguments
    if timeout is not None:
        cfg.request.timeout = timeout
    if max_retries is not None:
        cfg.retry.max_retries = max_retries
    if cache_name is not None:
        cfg.cache.name = cache_name
    if verbose is not None:
        cfg.output.verbose = verbose

    return cfg
