"""Configuration dataclasses for certvault.

These dataclasses centralize the tunables of the storage and locking
layers. They can be built from environment variables, from parsed
command-line arguments, or used directly in code and tests.
"""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from certvault.core.constants import (
    DEFAULT_LOCK_POLL_INTERVAL,
    DEFAULT_STALE_LOCK_SECONDS,
    ENV_LOCK_POLL_SECONDS,
    ENV_LOCK_TIMEOUT_SECONDS,
    ENV_LOG_LEVEL,
    ENV_STALE_LOCK_SECONDS,
    LOG_FILE_BACKUP_COUNT,
    LOG_FILE_MAX_BYTES,
    VALID_LOG_FORMATS,
    VALID_LOG_LEVELS,
)
from certvault.core.exceptions import ConfigurationError
from certvault.core.paths import data_dir


@dataclass
class LockConfig:
    """Configuration for cross-process locking.

    Attributes:
        stale_threshold_seconds: Marker age after which it may be reclaimed (default: 2h)
        poll_interval_seconds: Sleep between disk polls under contention (default: 1.0)
        acquire_timeout_seconds: Optional bound on a single lock() call (default: None = wait forever)
    """

    stale_threshold_seconds: float = DEFAULT_STALE_LOCK_SECONDS
    poll_interval_seconds: float = DEFAULT_LOCK_POLL_INTERVAL
    acquire_timeout_seconds: float | None = None

    def validate(self) -> None:
        if self.stale_threshold_seconds <= 0:
            raise ConfigurationError(
                "Stale lock threshold must be positive",
                field="stale_threshold_seconds",
                details=str(self.stale_threshold_seconds),
            )
        if self.poll_interval_seconds <= 0:
            raise ConfigurationError(
                "Lock poll interval must be positive",
                field="poll_interval_seconds",
                details=str(self.poll_interval_seconds),
            )
        if self.acquire_timeout_seconds is not None and self.acquire_timeout_seconds < 0:
            raise ConfigurationError(
                "Lock acquire timeout cannot be negative",
                field="acquire_timeout_seconds",
                details=str(self.acquire_timeout_seconds),
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "stale_threshold_seconds": self.stale_threshold_seconds,
            "poll_interval_seconds": self.poll_interval_seconds,
            "acquire_timeout_seconds": self.acquire_timeout_seconds,
        }


@dataclass
class LogConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level string (default: "INFO")
        format: "text" or "json" (default: "text")
        file: Optional log file path; console only when None
        file_max_bytes: Maximum size per log file (default: 10MB)
        file_backup_count: Number of backup log files (default: 5)
    """

    level: str = "INFO"
    format: str = "text"
    file: str | None = None
    file_max_bytes: int = LOG_FILE_MAX_BYTES
    file_backup_count: int = LOG_FILE_BACKUP_COUNT

    def validate(self) -> None:
        if self.level.upper() not in VALID_LOG_LEVELS:
            raise ConfigurationError("Invalid log level", field="level", details=self.level)
        if self.format.lower() not in VALID_LOG_FORMATS:
            raise ConfigurationError("Invalid log format", field="format", details=self.format)


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"Environment variable {name} must be a number", field=name, details=raw) from e


@dataclass
class StorageConfig:
    """Master configuration for a storage instance.

    Attributes:
        root: Storage root directory
        lock: Locking configuration
        log: Logging configuration
    """

    root: Path = field(default_factory=data_dir)
    lock: LockConfig = field(default_factory=LockConfig)
    log: LogConfig = field(default_factory=LogConfig)

    def validate(self) -> StorageConfig:
        self.lock.validate()
        self.log.validate()
        return self

    @classmethod
    def from_env(cls, root: str | Path | None = None) -> StorageConfig:
        """Create configuration from CERTVAULT_* environment variables."""
        return cls(
            root=Path(root).expanduser() if root else data_dir(),
            lock=LockConfig(
                stale_threshold_seconds=_env_float(ENV_STALE_LOCK_SECONDS, DEFAULT_STALE_LOCK_SECONDS),
                poll_interval_seconds=_env_float(ENV_LOCK_POLL_SECONDS, DEFAULT_LOCK_POLL_INTERVAL),
                acquire_timeout_seconds=_env_float(ENV_LOCK_TIMEOUT_SECONDS, None),
            ),
            log=LogConfig(level=os.environ.get(ENV_LOG_LEVEL, "INFO")),
        ).validate()

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> StorageConfig:
        """Create configuration from parsed command-line arguments.

        Unset arguments fall back to the environment, then to defaults.
        """
        config = cls.from_env(getattr(args, "root", None))
        stale = getattr(args, "stale_threshold", None)
        if stale is not None:
            config.lock.stale_threshold_seconds = stale
        poll = getattr(args, "poll_interval", None)
        if poll is not None:
            config.lock.poll_interval_seconds = poll
        timeout = getattr(args, "timeout", None)
        if timeout is not None:
            config.lock.acquire_timeout_seconds = timeout
        log_level = getattr(args, "log_level", None)
        if log_level:
            config.log.level = log_level
        config.log.format = getattr(args, "log_format", None) or config.log.format
        config.log.file = getattr(args, "log_file", None)
        return config.validate()
