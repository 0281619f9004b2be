"""Configuration manager for loading and caching config."""

import os
import time
from pathlib import Path
from typing import Any

import yaml

CONFIG_PATH_ENV = "ALTWATCH_CONFIG"
DEFAULT_CONFIG_FILENAME = "config.yaml"


class ConfigFileNotFoundError(FileNotFoundError):
    """Raised when a configuration file cannot be found."""

    def __init__(self, filename: str) -> None:
        """Initialize the error with the missing filename."""
        self.filename = filename
        super().__init__(filename)

    def __str__(self) -> str:
        """Return a readable error message."""
        return (
            f"Config file '{self.filename}' not found in current directory or "
            "/etc/secrets/"
        )


class ConfigFileEmptyError(ValueError):
    """Raised when a configuration file is empty or corrupted."""

    def __init__(self, path: Path) -> None:
        """Initialize the error with the invalid config path."""
        self.path = path
        super().__init__(path)

    def __str__(self) -> str:
        """Return a readable error message."""
        return f"Config file is empty or corrupted: {self.path}"


class _ConfigCacheState:
    def __init__(self) -> None:
        self.cache: dict[str, Any] = {}
        self.path: Path | None = None
        self.mtime: float = 0
        self.check_time: float = 0


_CONFIG_STATE = _ConfigCacheState()
CONFIG_CACHE_TTL = 5  # Check file modification time every 5 seconds


def _resolve_config_path(filename: str | None) -> Path:
    requested = filename or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_FILENAME
    candidates = [Path(requested), Path("/etc/secrets") / Path(requested).name]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    raise ConfigFileNotFoundError(requested)


def get_config(filename: str | None = None) -> dict[str, Any]:
    """Load configuration from a YAML file with caching.

    The path is taken from ``filename``, then the ``ALTWATCH_CONFIG``
    environment variable, then ``config.yaml``. Only reloads if the file has
    been modified (checked every `CONFIG_CACHE_TTL` seconds).
    """
    current_time = time.time()

    if (
        current_time - _CONFIG_STATE.check_time > CONFIG_CACHE_TTL
        or not _CONFIG_STATE.cache
    ):
        _CONFIG_STATE.check_time = current_time

        filepath = _resolve_config_path(filename)
        file_mtime = filepath.stat().st_mtime

        if (
            file_mtime != _CONFIG_STATE.mtime
            or filepath != _CONFIG_STATE.path
            or not _CONFIG_STATE.cache
        ):
            _CONFIG_STATE.mtime = file_mtime
            _CONFIG_STATE.path = filepath
            with filepath.open(encoding="utf-8") as file:
                loaded_config = yaml.safe_load(file)
                # Handle empty/corrupted YAML that returns None
                if not isinstance(loaded_config, dict):
                    raise ConfigFileEmptyError(filepath)
                _CONFIG_STATE.cache = loaded_config

    return _CONFIG_STATE.cache


def clear_config_cache() -> None:
    """Clear the config cache to force a reload on next `get_config()` call."""
    _CONFIG_STATE.cache = {}
    _CONFIG_STATE.path = None
    _CONFIG_STATE.mtime = 0
    _CONFIG_STATE.check_time = 0
