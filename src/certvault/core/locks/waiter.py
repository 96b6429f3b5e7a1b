"""Process-local lock waiters.

One :class:`Waiter` exists per key that this process is acquiring or
holding. Other threads in the same process that want the same key attach
to it instead of polling the disk themselves. The waiter only proves that
*this process* finished with the key; the marker file stays authoritative.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path

from certvault.core.exceptions import LockCancelledError, LockTimeoutError
from certvault.core.locks.staleness import stat_is_stale


@dataclass(frozen=True)
class Deadline:
    """Monotonic point in time after which a lock wait gives up."""

    timeout: float
    expires_at: float

    @classmethod
    def after(cls, timeout: float | None) -> Deadline | None:
        if timeout is None:
            return None
        return cls(timeout=timeout, expires_at=time.monotonic() + timeout)

    def remaining(self) -> float:
        return self.expires_at - time.monotonic()


def check_interrupted(key: str, deadline: Deadline | None, cancel_event: threading.Event | None) -> None:
    """Raise if the caller cancelled or ran out of time."""
    if cancel_event is not None and cancel_event.is_set():
        raise LockCancelledError(key, "cancel event set")
    if deadline is not None and deadline.remaining() <= 0:
        raise LockTimeoutError(key, deadline.timeout)


def pause(
    key: str,
    seconds: float,
    deadline: Deadline | None = None,
    cancel_event: threading.Event | None = None,
) -> None:
    """Sleep for one poll interval, waking early on cancellation or deadline."""
    if deadline is not None:
        seconds = min(seconds, max(0.0, deadline.remaining()))
    if cancel_event is not None:
        cancel_event.wait(seconds)
    elif seconds > 0:
        time.sleep(seconds)
    check_interrupted(key, deadline, cancel_event)


@dataclass
class Waiter:
    """Bookkeeping for one in-flight or held lock in this process."""

    key: str
    filename: Path
    held: bool = False
    failed: bool = False
    cancelled: bool = False
    _done: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def signal(self, failed: bool = False) -> None:
        """Wake every joiner. Only the first call has any effect."""
        if self._done.is_set():
            return
        self.failed = failed
        self._done.set()

    def join_wait(
        self,
        stale_threshold: float,
        poll_interval: float,
        deadline: Deadline | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Block until the holding attempt finishes and its marker looks free.

        After the completion signal the marker is polled until it is gone or
        stale, but never longer than ``stale_threshold`` measured from when
        this wait began. Returning does not prove the lock is free: another
        process may have recreated the marker in the meantime.
        """
        start = time.monotonic()
        while not self._done.wait(self._slice(poll_interval, deadline)):
            check_interrupted(self.key, deadline, cancel_event)

        while time.monotonic() - start < stale_threshold:
            try:
                info = self.filename.stat()
            except OSError:
                return
            if stat_is_stale(info, stale_threshold):
                return
            pause(self.key, poll_interval, deadline, cancel_event)

    @staticmethod
    def _slice(poll_interval: float, deadline: Deadline | None) -> float:
        if deadline is None:
            return poll_interval
        return max(0.0, min(poll_interval, deadline.remaining()))
