"""
certvault - durable filesystem storage for credentials and certificates

Values are stored under a hierarchical key namespace on disk. Independent
processes sharing the same storage root (including over a network share)
coordinate writers through named, staleness-reclaimable file locks.
"""

from certvault.core.exceptions import (
    CertVaultError,
    InvalidKeyError,
    KeyNotFoundError,
    LockError,
    LockNotHeldError,
    LockTimeoutError,
    StorageError,
)
from certvault.core.locks import FileLocker
from certvault.core.version import __version__
from certvault.storage import FileStorage, KeyInfo

__all__ = [
    "__version__",
    "CertVaultError",
    "FileLocker",
    "FileStorage",
    "InvalidKeyError",
    "KeyInfo",
    "KeyNotFoundError",
    "LockError",
    "LockNotHeldError",
    "LockTimeoutError",
    "StorageError",
]
