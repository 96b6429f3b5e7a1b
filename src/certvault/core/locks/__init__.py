"""Locking subsystem for cross-process coordination.

Locks are named by logical keys and represented on disk by marker files
in a shared locks directory. See :class:`FileLocker` for the protocol.
"""

from certvault.core.locks.keys import marker_filename, safe_lock_name
from certvault.core.locks.manager import FileLocker
from certvault.core.locks.markers import LockInfo, MarkerFileBackend
from certvault.core.locks.staleness import is_stale, marker_age_seconds, marker_is_stale
from certvault.core.locks.waiter import Deadline, Waiter

__all__ = [
    "Deadline",
    "FileLocker",
    "LockInfo",
    "MarkerFileBackend",
    "Waiter",
    "is_stale",
    "marker_age_seconds",
    "marker_filename",
    "marker_is_stale",
    "safe_lock_name",
]
