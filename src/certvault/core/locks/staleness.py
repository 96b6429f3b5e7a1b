"""Staleness predicate for lock markers.

A marker's modification time is its age. Markers older than the stale
threshold are presumed abandoned by a crashed holder and may be reclaimed
by any contender. This is a heuristic: a live holder that keeps a lock
past the threshold can still have it taken away.
"""

from __future__ import annotations

import os
import time
from pathlib import Path


def is_stale(modified: float | None, threshold_seconds: float, now: float | None = None) -> bool:
    """Return True if a marker last modified at ``modified`` is past the threshold.

    Args:
        modified: Marker mtime as a POSIX timestamp, or None if unknown
        threshold_seconds: Stale threshold in seconds
        now: Current POSIX timestamp (defaults to ``time.time()``)
    """
    if modified is None:
        # Missing or unreadable marker: nothing left to protect.
        return True
    if now is None:
        now = time.time()
    return now - modified > threshold_seconds


def stat_is_stale(info: os.stat_result | None, threshold_seconds: float) -> bool:
    return is_stale(info.st_mtime if info is not None else None, threshold_seconds)


def marker_age_seconds(path: Path) -> float | None:
    """Seconds since ``path`` was last modified, or None if it cannot be stat'ed."""
    try:
        modified = path.stat().st_mtime
    except OSError:
        return None
    return max(0.0, time.time() - modified)


def marker_is_stale(path: Path, threshold_seconds: float) -> bool:
    try:
        info = path.stat()
    except OSError:
        return True
    return stat_is_stale(info, threshold_seconds)
