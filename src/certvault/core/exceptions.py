"""Custom exceptions for certvault.

All exception classes carry the key or path they relate to so callers
(and the CLI) can report what failed without parsing messages.
"""

from __future__ import annotations


class CertVaultError(Exception):
    """Base exception for all certvault errors."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(CertVaultError):
    """Exception raised for invalid configuration values.

    Examples:
        - Non-numeric value in an environment override
        - Non-positive stale threshold or poll interval
        - Unknown log level or format
    """

    def __init__(self, message: str, field: str | None = None, details: str | None = None):
        self.field = field
        super().__init__(message, details)


class StorageError(CertVaultError):
    """Exception raised for key-value storage failures."""

    def __init__(
        self,
        message: str,
        key: str | None = None,
        path: str | None = None,
        details: str | None = None,
        original_error: Exception | None = None,
    ):
        self.key = key
        self.path = path
        self.original_error = original_error
        super().__init__(message, details)


class KeyNotFoundError(StorageError):
    """Raised when a key does not exist in storage."""

    def __init__(self, key: str, path: str | None = None):
        super().__init__(f"Key '{key}' does not exist", key=key, path=path)


class InvalidKeyError(StorageError):
    """Raised when a key cannot be mapped to a location under the storage root.

    Examples:
        - Empty key
        - Absolute key such as ``/etc/passwd``
        - Key containing ``..`` segments
    """

    def __init__(self, key: str, reason: str):
        self.reason = reason
        super().__init__(f"Invalid key '{key}'", key=key, details=reason)


class LockError(CertVaultError):
    """Base exception for lock acquisition and release failures."""

    def __init__(self, message: str, key: str, details: str | None = None):
        self.key = key
        super().__init__(message, details)


class LockNotHeldError(LockError):
    """Raised when releasing a key this process never locked (or already released)."""

    def __init__(self, key: str):
        super().__init__(f"No lock to release for '{key}'", key)


class LockAcquireError(LockError):
    """Raised when an unexpected filesystem error aborts lock acquisition."""

    def __init__(self, key: str, original_error: Exception):
        self.original_error = original_error
        super().__init__(f"Failed to acquire lock for '{key}'", key, details=str(original_error))


class LockTimeoutError(LockError):
    """Raised when a lock cannot be obtained before the caller's deadline."""

    def __init__(self, key: str, timeout: float):
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:g}s waiting for lock '{key}'", key)


class LockCancelledError(LockError):
    """Raised when a pending acquisition is cancelled before the lock is obtained."""

    def __init__(self, key: str, reason: str | None = None):
        super().__init__(f"Lock acquisition for '{key}' was cancelled", key, details=reason)


class LockReleaseError(LockError):
    """Raised when the lock marker could not be removed during release.

    The in-process bookkeeping is already cleaned up when this is raised;
    the marker stays on disk until it is removed or becomes stale.
    """

    def __init__(self, key: str, original_error: Exception):
        self.original_error = original_error
        super().__init__(f"Failed to remove lock marker for '{key}'", key, details=str(original_error))
