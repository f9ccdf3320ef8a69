"""
insurance_config -- single public entrypoint for importer configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime, through
    ``get_active_config()`` for one-off reads and ``ConfigSource`` for the
    long-running scheduler.  No other component reads the configuration
    file or the ``INSURANCE_IMPORTER_CONFIG`` environment variable.

Architecture position:
    Configuration -- sits above ``insurance_kernel`` and below
    ``insurance_batch``.  The kernel never imports from this package.

Invariants enforced:
    - Snapshot semantics: every call returns a frozen ``ImporterConfig``;
      a run holds one snapshot from start to finish.
    - Load-time validation: schedule ranges, tenant ids, and sizes are
      checked before a snapshot exists.

Failure modes:
    - ``ConfigurationError`` -- missing file, malformed YAML, bad values.
    - ``InvalidScheduleError`` -- schedule time out of range.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

from insurance_config.loader import load_config
from insurance_config.schema import (
    AccountCodes,
    DatabaseConfig,
    GatewayConfig,
    ImporterConfig,
    ImporterSettings,
    RetryConfig,
    ScheduleConfig,
)
from insurance_kernel.logging_config import get_logger

logger = get_logger("config")

CONFIG_PATH_ENV = "INSURANCE_IMPORTER_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def resolve_config_path(path: str | Path | None = None) -> Path:
    """Explicit path, else the environment variable, else the bundled defaults."""
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def get_active_config(path: str | Path | None = None) -> ImporterConfig:
    """The public configuration entrypoint.

    Contract:
        Loads, validates, and returns one configuration snapshot.  Emits an
        ``importer_config_loaded`` log entry carrying the path and checksum.

    Non-goals:
        - No caching.  ``ConfigSource`` handles reload-on-change for the
          scheduler.

    Args:
        path: Override the configuration file.  Defaults to
            ``$INSURANCE_IMPORTER_CONFIG`` or the bundled ``defaults.yaml``.

    Raises:
        ConfigurationError: The file is missing or invalid.
        InvalidScheduleError: The schedule time is out of range.
    """
    config_path = resolve_config_path(path)
    config = load_config(config_path)
    logger.info(
        "importer_config_loaded",
        extra={
            "config_path": str(config_path),
            "checksum": config.checksum,
            "tenant_count": len(config.tenants),
        },
    )
    return config


class ConfigSource:
    """
    Reloadable configuration holder.

    ``snapshot()`` re-reads the file when its modification time changed
    since the last load and otherwise returns the cached snapshot.  A
    reload that fails validation raises; the previous snapshot is kept.
    """

    def __init__(self, path: str | Path | None = None):
        self._path = resolve_config_path(path)
        self._lock = threading.Lock()
        self._config: ImporterConfig | None = None
        self._mtime: float | None = None

    @classmethod
    def fixed(cls, config: ImporterConfig) -> "ConfigSource":
        """A source that always returns ``config`` and never touches disk."""
        source = cls.__new__(cls)
        source._path = None
        source._lock = threading.Lock()
        source._config = config
        source._mtime = None
        return source

    @property
    def path(self) -> Path | None:
        return self._path

    def snapshot(self) -> ImporterConfig:
        with self._lock:
            if self._path is None:
                return self._config
            mtime = self._path.stat().st_mtime if self._path.exists() else None
            if self._config is None or mtime != self._mtime:
                previous = self._config
                self._config = get_active_config(self._path)
                self._mtime = mtime
                if previous is not None and previous.checksum != self._config.checksum:
                    logger.info(
                        "importer_config_reloaded",
                        extra={"checksum": self._config.checksum},
                    )
            return self._config


__all__ = [
    "AccountCodes",
    "CONFIG_PATH_ENV",
    "ConfigSource",
    "DatabaseConfig",
    "GatewayConfig",
    "ImporterConfig",
    "ImporterSettings",
    "RetryConfig",
    "ScheduleConfig",
    "get_active_config",
    "resolve_config_path",
]
