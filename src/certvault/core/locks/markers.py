"""On-disk lock markers.

Design principles:
- Holding a lock means having exclusively created its marker file.
- The marker's mtime is its age; staleness is judged from it alone.
- Marker contents are diagnostic metadata only and must never be treated
  as lock truth. Writing them is best-effort.
"""

from __future__ import annotations

import contextlib
import json
import os
import socket
import uuid
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from certvault.core.constants import DIR_MODE, LOCK_FILE_MODE, LOCK_FILE_SUFFIX
from certvault.core.locks.keys import marker_filename


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


def _write_all(fd: int, payload: bytes) -> None:
    """Write complete payload to fd, handling short writes."""
    total_written = 0
    while total_written < len(payload):
        written = os.write(fd, payload[total_written:])
        if written <= 0:
            raise OSError("short write while persisting lock metadata")
        total_written += written


@dataclass
class LockInfo:
    """Serializable marker metadata for diagnostics."""

    key: str
    lock_id: str
    pid: int
    host: str
    acquired_at: str
    version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def for_current_process(cls, key: str) -> LockInfo:
        return cls(
            key=key,
            lock_id=str(uuid.uuid4()),
            pid=os.getpid(),
            host=socket.gethostname(),
            acquired_at=_utcnow_iso(),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockInfo | None:
        try:
            return cls(
                key=str(data["key"]),
                lock_id=str(data["lock_id"]),
                pid=int(data["pid"]),
                host=str(data["host"]),
                acquired_at=str(data["acquired_at"]),
                version=int(data.get("version", 1)),
            )
        except (KeyError, TypeError, ValueError):
            return None


class MarkerFileBackend:
    """Create, inspect and remove lock markers under one locks directory."""

    def __init__(self, lock_dir: Path):
        self.lock_dir = Path(lock_dir)

    def path_for(self, key: str) -> Path:
        return self.lock_dir / marker_filename(key)

    def ensure_dir(self) -> None:
        self.lock_dir.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)

    def try_create(self, path: Path, info: LockInfo | None = None) -> bool:
        """Atomically create ``path`` if it does not exist.

        Returns:
            True if this call created the marker, False if it already existed.

        Raises:
            OSError: Any failure other than the marker already existing.
        """
        try:
            fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, LOCK_FILE_MODE)
        except FileExistsError:
            return False
        try:
            if info is not None:
                payload = (json.dumps(info.to_dict(), sort_keys=True) + "\n").encode("utf-8")
                # The marker is already ours; losing its metadata only affects diagnostics.
                with contextlib.suppress(OSError):
                    _write_all(fd, payload)
        finally:
            os.close(fd)
        return True

    @staticmethod
    def stat(path: Path) -> os.stat_result:
        return path.stat()

    @staticmethod
    def remove(path: Path) -> bool:
        """Delete ``path``. Returns False if it was already gone; other errors propagate."""
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    @staticmethod
    def read_info(path: Path) -> LockInfo | None:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            return None
        if not isinstance(data, dict):
            return None
        return LockInfo.from_dict(data)

    def iter_markers(self) -> list[Path]:
        """All marker files currently present, sorted by name."""
        try:
            entries = list(self.lock_dir.iterdir())
        except FileNotFoundError:
            return []
        return sorted(p for p in entries if p.name.endswith(LOCK_FILE_SUFFIX) and p.is_file())
