"""Pytest configuration and fixtures for certvault tests"""

import logging
import os
import time
from pathlib import Path

import pytest

from certvault.core.config import LockConfig, StorageConfig
from certvault.core.locks import FileLocker
from certvault.core.logging import SensitiveDataFilter
from certvault.storage import FileStorage

FAST_POLL_SECONDS = 0.02


@pytest.fixture(autouse=True)
def restore_root_logging():
    """Remove handlers installed by setup_logging() inside a test."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in root.handlers[:]:
        if any(isinstance(f, SensitiveDataFilter) for f in handler.filters):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def lock_dir(tmp_path: Path) -> Path:
    return tmp_path / "locks"


@pytest.fixture
def locker(lock_dir: Path) -> FileLocker:
    """Locker with a fast poll interval and the default 2h stale threshold."""
    return FileLocker(lock_dir, poll_interval_seconds=FAST_POLL_SECONDS)


@pytest.fixture
def storage(tmp_path: Path) -> FileStorage:
    root = tmp_path / "store"
    config = StorageConfig(root=root, lock=LockConfig(poll_interval_seconds=FAST_POLL_SECONDS))
    return FileStorage(root, config=config)


def write_marker(path: Path, age_seconds: float = 0.0) -> Path:
    """Create a foreign lock marker, optionally back-dated by ``age_seconds``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("", encoding="utf-8")
    if age_seconds:
        past = time.time() - age_seconds
        os.utime(path, (past, past))
    return path


def wait_until(predicate, timeout_seconds: float = 3.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
