"""Core module - Foundation components shared by storage, locks and the CLI.

This module provides the basic building blocks used throughout the package:
- Version information
- Custom exceptions
- Configuration dataclasses
- Constants and defaults
"""

from certvault.core.version import __version__

from certvault.core.exceptions import (
    CertVaultError,
    ConfigurationError,
    StorageError,
    KeyNotFoundError,
    InvalidKeyError,
    LockError,
    LockNotHeldError,
    LockAcquireError,
    LockTimeoutError,
    LockCancelledError,
    LockReleaseError,
)

from certvault.core.config import (
    LockConfig,
    LogConfig,
    StorageConfig,
)

from certvault.core.constants import (
    DEFAULT_STALE_LOCK_SECONDS,
    DEFAULT_LOCK_POLL_INTERVAL,
    LOCK_FILE_SUFFIX,
    LOCKS_DIR_NAME,
)

__all__ = [
    # Version
    '__version__',
    # Exceptions
    'CertVaultError',
    'ConfigurationError',
    'StorageError',
    'KeyNotFoundError',
    'InvalidKeyError',
    'LockError',
    'LockNotHeldError',
    'LockAcquireError',
    'LockTimeoutError',
    'LockCancelledError',
    'LockReleaseError',
    # Config dataclasses
    'LockConfig',
    'LogConfig',
    'StorageConfig',
    # Constants
    'DEFAULT_STALE_LOCK_SECONDS',
    'DEFAULT_LOCK_POLL_INTERVAL',
    'LOCK_FILE_SUFFIX',
    'LOCKS_DIR_NAME',
]
