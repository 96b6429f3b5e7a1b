"""Filesystem-backed key-value storage.

Keys are slash-separated logical names (``certificates/acme/example.com.crt``)
mapped onto a directory tree under a single root. Values are opaque bytes.
Locks for coordinating writers live in the ``locks`` sub-directory of the
same root and are managed by :class:`~certvault.core.locks.FileLocker`.
"""

from __future__ import annotations

import contextlib
import logging
import os
import posixpath
import re
import threading
import uuid
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath

from certvault.core.config import StorageConfig
from certvault.core.constants import DIR_MODE, FILE_MODE, LOCKS_DIR_NAME
from certvault.core.exceptions import InvalidKeyError, KeyNotFoundError, StorageError
from certvault.core.locks import FileLocker

_TEMP_FILE_PATTERN = re.compile(r"^\..+\.[0-9a-f]{32}\.tmp$")


@dataclass(frozen=True)
class KeyInfo:
    """Metadata about a stored key."""

    key: str
    modified: datetime
    size: int
    is_terminal: bool


class FileStorage:
    """Key-value store rooted at a directory, with cross-process key locks.

    Args:
        path: Storage root. Defaults to ``config.root``.
        config: Storage configuration; defaults to ``StorageConfig.from_env()``
        logger: Optional logger for storage and lock events
    """

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        config: StorageConfig | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config or StorageConfig.from_env(path)
        self.path = Path(path).expanduser() if path is not None else Path(self.config.root)
        self.logger = logger or logging.getLogger(__name__)
        self._locker = FileLocker(
            self.lock_dir(),
            stale_threshold_seconds=self.config.lock.stale_threshold_seconds,
            poll_interval_seconds=self.config.lock.poll_interval_seconds,
            logger=self.logger,
        )

    # ==================== KEY RESOLUTION ====================

    def filename(self, key: str) -> Path:
        """Return the path on disk for ``key``."""
        return self._resolve(key, allow_root=False)

    def _resolve(self, key: str, *, allow_root: bool) -> Path:
        if not key:
            if allow_root:
                return self.path
            raise InvalidKeyError(key, "key must not be empty")
        if PurePosixPath(key).is_absolute() or os.path.isabs(key) or os.path.splitdrive(key)[0]:
            raise InvalidKeyError(key, "key must be relative to the storage root")
        parts = [part for part in key.split("/") if part not in ("", ".")]
        if ".." in parts:
            raise InvalidKeyError(key, "key must not contain '..' segments")
        # Markers are managed only through the locker; case-folded for case-insensitive shares.
        if parts and parts[0].casefold() == LOCKS_DIR_NAME:
            raise InvalidKeyError(key, f"'{LOCKS_DIR_NAME}' is reserved for lock markers")
        if not parts:
            if allow_root:
                return self.path
            raise InvalidKeyError(key, "key does not name anything under the storage root")
        return self.path.joinpath(*parts)

    def lock_dir(self) -> Path:
        return self.path / LOCKS_DIR_NAME

    # ==================== KEY-VALUE OPERATIONS ====================

    def exists(self, key: str) -> bool:
        """Return True if ``key`` exists (as a value or a key prefix)."""
        return self.filename(key).exists()

    def store(self, key: str, value: bytes) -> None:
        """Save ``value`` at ``key`` via atomic write-then-rename."""
        target = self.filename(key)
        tmp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        try:
            target.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
            fd = os.open(str(tmp_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, FILE_MODE)
            with os.fdopen(fd, "wb") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, target)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
            raise StorageError(
                f"Failed to store key '{key}'", key=key, path=str(target), details=str(e), original_error=e
            ) from e
        self.logger.debug("Stored %d bytes at '%s'", len(value), key)

    def load(self, key: str) -> bytes:
        """Retrieve the value stored at ``key``."""
        target = self.filename(key)
        try:
            return target.read_bytes()
        except FileNotFoundError as e:
            raise KeyNotFoundError(key, path=str(target)) from e
        except OSError as e:
            raise StorageError(
                f"Failed to load key '{key}'", key=key, path=str(target), details=str(e), original_error=e
            ) from e

    def delete(self, key: str) -> None:
        """Delete ``key`` and any directories the deletion leaves empty."""
        target = self.filename(key)
        try:
            if target.is_dir() and not target.is_symlink():
                target.rmdir()
            else:
                target.unlink()
        except FileNotFoundError as e:
            raise KeyNotFoundError(key, path=str(target)) from e
        except OSError as e:
            raise StorageError(
                f"Failed to delete key '{key}'", key=key, path=str(target), details=str(e), original_error=e
            ) from e
        self._prune_empty_parents(target.parent)
        self.logger.debug("Deleted '%s'", key)

    def _prune_empty_parents(self, directory: Path) -> None:
        root = self.path
        while directory != root and root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                # Not empty, or a concurrent writer just used it.
                return
            directory = directory.parent

    def list(self, prefix: str = "", recursive: bool = False) -> list[str]:
        """Return all keys under ``prefix``.

        Without ``recursive`` only direct children are returned; directories
        are listed but not descended into.
        """
        base = self._resolve(prefix, allow_root=True)
        if not base.exists():
            raise KeyNotFoundError(prefix, path=str(base))
        normalized_prefix = "/".join(part for part in prefix.split("/") if part not in ("", "."))
        keys: list[str] = []
        try:
            self._collect(base, normalized_prefix, recursive, keys)
        except OSError as e:
            raise StorageError(
                f"Failed to list keys under '{prefix}'", key=prefix, path=str(base), details=str(e), original_error=e
            ) from e
        return keys

    def _collect(self, directory: Path, prefix: str, recursive: bool, keys: list[str]) -> None:
        if not directory.is_dir():
            return
        for entry in sorted(directory.iterdir(), key=lambda p: p.name):
            if directory == self.path and entry.name == LOCKS_DIR_NAME:
                continue
            if _TEMP_FILE_PATTERN.match(entry.name):
                continue
            key = posixpath.join(prefix, entry.name) if prefix else entry.name
            keys.append(key)
            if recursive and entry.is_dir() and not entry.is_symlink():
                self._collect(entry, key, recursive, keys)

    def stat(self, key: str) -> KeyInfo:
        """Return metadata about ``key``."""
        target = self.filename(key)
        try:
            info = target.stat()
        except FileNotFoundError as e:
            raise KeyNotFoundError(key, path=str(target)) from e
        except OSError as e:
            raise StorageError(
                f"Failed to stat key '{key}'", key=key, path=str(target), details=str(e), original_error=e
            ) from e
        return KeyInfo(
            key=key,
            modified=datetime.fromtimestamp(info.st_mtime, UTC),
            size=info.st_size,
            is_terminal=not target.is_dir(),
        )

    # ==================== LOCKING ====================

    @property
    def locker(self) -> FileLocker:
        return self._locker

    def lock(
        self,
        key: str,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Obtain the lock named by ``key``, blocking until it is available.

        ``timeout`` defaults to the configured acquire timeout (None = wait forever).
        """
        if timeout is None:
            timeout = self.config.lock.acquire_timeout_seconds
        self._locker.lock(key, timeout=timeout, cancel_event=cancel_event)

    def unlock(self, key: str) -> None:
        """Release the lock for ``key``."""
        self._locker.unlock(key)

    def unlock_all_obtained(self) -> list[str]:
        """Release all locks obtained by this instance; returns keys that failed."""
        return self._locker.unlock_all_obtained()

    @contextlib.contextmanager
    def locked(self, key: str, timeout: float | None = None) -> Iterator[FileStorage]:
        """Hold the lock for ``key`` for the duration of a ``with`` block."""
        if timeout is None:
            timeout = self.config.lock.acquire_timeout_seconds
        with self._locker.locked(key, timeout=timeout):
            yield self

    def __str__(self) -> str:
        return f"FileStorage:{self.path}"

    def __repr__(self) -> str:
        return f"FileStorage({str(self.path)!r})"
