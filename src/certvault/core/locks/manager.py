"""Cross-process named locks backed by exclusively-created marker files."""

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Iterator
from pathlib import Path

from certvault.core.constants import DEFAULT_LOCK_POLL_INTERVAL, DEFAULT_STALE_LOCK_SECONDS
from certvault.core.exceptions import (
    ConfigurationError,
    LockAcquireError,
    LockCancelledError,
    LockError,
    LockNotHeldError,
    LockReleaseError,
)
from certvault.core.locks.markers import LockInfo, MarkerFileBackend
from certvault.core.locks.staleness import stat_is_stale
from certvault.core.locks.waiter import Deadline, Waiter, check_interrupted, pause
from certvault.core.logging import with_log_context


class FileLocker:
    """Named locks shared by every process that uses the same locks directory.

    Within one process, callers contending for a key queue behind a single
    :class:`Waiter` so only one thread polls the disk. Across processes the
    marker file created with ``O_EXCL`` is the only source of truth.

    Usage:
        locker = FileLocker(root / "locks")
        with locker.locked("cert/example.com"):
            ...  # renew and store the certificate

    Args:
        lock_dir: Directory holding the lock markers
        stale_threshold_seconds: Marker age after which it is reclaimed
        poll_interval_seconds: Sleep between disk polls under contention
        logger: Optional logger; defaults to this module's logger
    """

    def __init__(
        self,
        lock_dir: Path,
        *,
        stale_threshold_seconds: float = DEFAULT_STALE_LOCK_SECONDS,
        poll_interval_seconds: float = DEFAULT_LOCK_POLL_INTERVAL,
        logger: logging.Logger | None = None,
    ):
        if stale_threshold_seconds <= 0:
            raise ConfigurationError("Stale lock threshold must be positive", field="stale_threshold_seconds")
        if poll_interval_seconds <= 0:
            raise ConfigurationError("Lock poll interval must be positive", field="poll_interval_seconds")
        self.backend = MarkerFileBackend(Path(lock_dir))
        self.stale_threshold_seconds = stale_threshold_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.logger = logger or logging.getLogger(__name__)

        self._waiters: dict[str, Waiter] = {}
        self._waiters_lock = threading.Lock()

    @property
    def lock_dir(self) -> Path:
        return self.backend.lock_dir

    def lock_path(self, key: str) -> Path:
        return self.backend.path_for(key)

    def lock(
        self,
        key: str,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Block until this process holds the lock for ``key``.

        Args:
            key: Logical key to lock
            timeout: Optional limit in seconds; None waits indefinitely
            cancel_event: Optional event that aborts the wait when set

        Raises:
            LockTimeoutError: ``timeout`` elapsed first
            LockCancelledError: ``cancel_event`` was set, or the pending
                acquisition was released via :meth:`unlock`
            LockAcquireError: An unexpected filesystem error occurred
        """
        deadline = Deadline.after(timeout)
        path = self.lock_path(key)
        log = with_log_context(self.logger, lock_key=key)

        while True:
            with self._waiters_lock:
                waiter = self._waiters.get(key)
                if waiter is None:
                    waiter = Waiter(key=key, filename=path)
                    self._waiters[key] = waiter
                    break
            log.debug("Lock '%s' is already in use by this process; waiting for it", key)
            waiter.join_wait(
                self.stale_threshold_seconds,
                self.poll_interval_seconds,
                deadline=deadline,
                cancel_event=cancel_event,
            )

        try:
            self._acquire(waiter, log, deadline, cancel_event)
        except BaseException:
            self._discard(waiter)
            raise

    def _acquire(
        self,
        waiter: Waiter,
        log: logging.Logger | logging.LoggerAdapter,
        deadline: Deadline | None,
        cancel_event: threading.Event | None,
    ) -> None:
        info = LockInfo.for_current_process(waiter.key)
        while True:
            if waiter.cancelled:
                raise LockCancelledError(waiter.key, "released before acquisition completed")

            try:
                self.backend.ensure_dir()
            except OSError as e:
                log.warning("Cannot create lock directory %s: %s; retrying", self.lock_dir, e)
                pause(waiter.key, self.poll_interval_seconds, deadline, cancel_event)
                continue

            try:
                created = self.backend.try_create(waiter.filename, info)
            except OSError as e:
                log.error("Unexpected error creating lock file %s: %s", waiter.filename, e)
                raise LockAcquireError(waiter.key, e) from e

            if created:
                self._mark_held(waiter)
                log.debug("Obtained lock '%s' (%s)", waiter.key, waiter.filename)
                return

            # At least one create attempt is made, so timeout=0 means "try once".
            check_interrupted(waiter.key, deadline, cancel_event)

            try:
                marker = self.backend.stat(waiter.filename)
            except FileNotFoundError:
                # Released between our create attempt and the stat.
                continue
            except OSError as e:
                log.debug("Cannot stat lock file %s: %s", waiter.filename, e)
                pause(waiter.key, self.poll_interval_seconds, deadline, cancel_event)
                continue

            if stat_is_stale(marker, self.stale_threshold_seconds):
                log.warning(
                    "Lock for '%s' is stale; removing then retrying: %s",
                    waiter.key,
                    waiter.filename,
                )
                try:
                    self.backend.remove(waiter.filename)
                except OSError as e:
                    log.warning("Cannot remove stale lock file %s: %s", waiter.filename, e)
                    pause(waiter.key, self.poll_interval_seconds, deadline, cancel_event)
                continue

            pause(waiter.key, self.poll_interval_seconds, deadline, cancel_event)

    def _mark_held(self, waiter: Waiter) -> None:
        with self._waiters_lock:
            if not waiter.cancelled and self._waiters.get(waiter.key) is waiter:
                waiter.held = True
                return
        # unlock() gave up on this attempt while the marker was being created.
        with contextlib.suppress(OSError):
            self.backend.remove(waiter.filename)
        raise LockCancelledError(waiter.key, "released before acquisition completed")

    def _discard(self, waiter: Waiter) -> None:
        """Drop a waiter whose acquisition failed and wake its joiners."""
        with self._waiters_lock:
            if self._waiters.get(waiter.key) is waiter:
                del self._waiters[waiter.key]
            waiter.signal(failed=True)

    def unlock(self, key: str) -> None:
        """Release a lock obtained (or still being obtained) via :meth:`lock`.

        Raises:
            LockNotHeldError: No lock for ``key`` is tracked by this instance
            LockReleaseError: The marker could not be deleted; the in-process
                state is released regardless
        """
        error: OSError | None = None
        with self._waiters_lock:
            waiter = self._waiters.get(key)
            if waiter is None:
                raise LockNotHeldError(key)
            del self._waiters[key]

            if not waiter.held:
                waiter.cancelled = True
                waiter.signal(failed=True)
                self.logger.info("Cancelled pending acquisition of lock '%s'", key)
                return

            try:
                self.backend.remove(waiter.filename)
            except OSError as e:
                error = e
            finally:
                waiter.signal()

        if error is not None:
            raise LockReleaseError(key, error) from error

    def unlock_all_obtained(self) -> list[str]:
        """Release every lock tracked by this instance.

        Failures are logged and do not stop the remaining releases.

        Returns:
            Keys whose release failed
        """
        with self._waiters_lock:
            keys = list(self._waiters)

        failed: list[str] = []
        for key in keys:
            try:
                self.unlock(key)
            except LockError as e:
                self.logger.error("Releasing obtained lock for %s: %s", key, e)
                failed.append(key)
        return failed

    @contextlib.contextmanager
    def locked(self, key: str, timeout: float | None = None) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of a ``with`` block.

        If the block raises, that exception propagates even when releasing
        the lock also fails; the release failure is logged instead.
        """
        self.lock(key, timeout=timeout)
        try:
            yield
        except BaseException:
            try:
                self.unlock(key)
            except LockError as e:
                self.logger.error("Releasing lock for %s after error: %s", key, e)
            raise
        self.unlock(key)

    def is_held(self, key: str) -> bool:
        with self._waiters_lock:
            waiter = self._waiters.get(key)
            return waiter is not None and waiter.held

    def held_keys(self) -> list[str]:
        with self._waiters_lock:
            return sorted(key for key, waiter in self._waiters.items() if waiter.held)

    def __repr__(self) -> str:
        return f"FileLocker({str(self.lock_dir)!r})"
