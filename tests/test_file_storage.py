"""Tests for FileStorage key-value operations and its lock integration."""

import os
import stat
import threading
import time

import pytest
from conftest import wait_until

from certvault.core.exceptions import InvalidKeyError, KeyNotFoundError, LockTimeoutError, StorageError
from certvault.storage import FileStorage, KeyInfo


def test_store_then_load(storage: FileStorage) -> None:
    storage.store("certificates/acme/example.com.crt", b"-----BEGIN CERTIFICATE-----")

    assert storage.load("certificates/acme/example.com.crt") == b"-----BEGIN CERTIFICATE-----"
    assert storage.exists("certificates/acme/example.com.crt")
    assert storage.exists("certificates/acme")


def test_store_overwrites_and_leaves_no_temp_files(storage: FileStorage) -> None:
    storage.store("a/b", b"one")
    storage.store("a/b", b"two")

    assert storage.load("a/b") == b"two"
    assert [p.name for p in (storage.path / "a").iterdir()] == ["b"]


def test_store_empty_value(storage: FileStorage) -> None:
    storage.store("empty", b"")
    assert storage.load("empty") == b""
    assert storage.stat("empty").size == 0


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_store_uses_private_permissions(storage: FileStorage) -> None:
    storage.store("keys/account.key", b"secret")

    assert stat.S_IMODE(storage.filename("keys/account.key").stat().st_mode) == 0o600
    assert stat.S_IMODE((storage.path / "keys").stat().st_mode) == 0o700


def test_store_wraps_os_errors(storage: FileStorage) -> None:
    storage.store("file", b"x")
    with pytest.raises(StorageError) as exc_info:
        storage.store("file/child", b"y")
    assert exc_info.value.key == "file/child"
    assert exc_info.value.original_error is not None


def test_load_missing_key(storage: FileStorage) -> None:
    with pytest.raises(KeyNotFoundError) as exc_info:
        storage.load("nope")
    assert exc_info.value.key == "nope"
    assert not storage.exists("nope")


def test_delete_removes_key_and_empty_parents(storage: FileStorage) -> None:
    storage.store("a/b/c", b"1")
    storage.store("a/keep", b"2")

    storage.delete("a/b/c")

    assert not storage.exists("a/b/c")
    assert not storage.exists("a/b")
    assert storage.exists("a/keep")
    assert storage.path.is_dir()


def test_delete_missing_key(storage: FileStorage) -> None:
    with pytest.raises(KeyNotFoundError):
        storage.delete("missing")


def test_delete_non_empty_directory_fails(storage: FileStorage) -> None:
    storage.store("dir/file", b"1")
    with pytest.raises(StorageError):
        storage.delete("dir")
    assert storage.load("dir/file") == b"1"


def test_list_direct_children(storage: FileStorage) -> None:
    storage.store("certs/a.crt", b"a")
    storage.store("certs/b.crt", b"b")
    storage.store("certs/sub/c.crt", b"c")

    assert storage.list("certs") == ["certs/a.crt", "certs/b.crt", "certs/sub"]
    assert storage.list("certs/") == ["certs/a.crt", "certs/b.crt", "certs/sub"]


def test_list_recursive(storage: FileStorage) -> None:
    storage.store("certs/a.crt", b"a")
    storage.store("certs/sub/c.crt", b"c")

    assert storage.list("certs", recursive=True) == ["certs/a.crt", "certs/sub", "certs/sub/c.crt"]


def test_list_root_hides_lock_directory(storage: FileStorage) -> None:
    storage.store("one", b"1")
    storage.lock("one")
    try:
        assert storage.list() == ["one"]
        assert storage.list("", recursive=True) == ["one"]
    finally:
        storage.unlock("one")


def test_list_missing_prefix(storage: FileStorage) -> None:
    with pytest.raises(KeyNotFoundError):
        storage.list("nothing-here")


def test_stat_file_and_directory(storage: FileStorage) -> None:
    before = time.time()
    storage.store("dir/value", b"12345")

    info = storage.stat("dir/value")
    assert isinstance(info, KeyInfo)
    assert info.key == "dir/value"
    assert info.size == 5
    assert info.is_terminal
    assert info.modified.tzinfo is not None
    assert info.modified.timestamp() >= before - 2

    assert storage.stat("dir").is_terminal is False


def test_stat_missing_key(storage: FileStorage) -> None:
    with pytest.raises(KeyNotFoundError):
        storage.stat("missing")


@pytest.mark.parametrize("key", ["", "/etc/passwd", "../outside", "a/../../b", ".", "a//.."])
def test_invalid_keys_rejected(storage: FileStorage, key: str) -> None:
    with pytest.raises(InvalidKeyError):
        storage.filename(key)


def test_filename_normalizes_redundant_separators(storage: FileStorage) -> None:
    assert storage.filename("a//b/./c") == storage.path / "a" / "b" / "c"


def test_lock_marker_lives_under_root(storage: FileStorage) -> None:
    storage.lock("certificates/example.com")
    try:
        markers = list(storage.lock_dir().iterdir())
        assert len(markers) == 1
        assert markers[0].name.endswith(".lock")
        assert storage.lock_dir() == storage.path / "locks"
    finally:
        storage.unlock("certificates/example.com")
    assert list(storage.lock_dir().iterdir()) == []


def test_locked_context_serializes_writers(storage: FileStorage) -> None:
    order: list[str] = []
    storage.lock("shared")

    def writer() -> None:
        with storage.locked("shared"):
            order.append("writer")
            storage.store("value", b"writer")

    thread = threading.Thread(target=writer)
    thread.start()
    time.sleep(0.1)
    order.append("owner")
    storage.store("value", b"owner")
    storage.unlock("shared")
    thread.join(timeout=5)

    assert order == ["owner", "writer"]
    assert storage.load("value") == b"writer"


def test_two_storages_on_same_root_share_locks(storage: FileStorage) -> None:
    other = FileStorage(storage.path, config=storage.config)
    acquired = threading.Event()
    storage.lock("k")

    def contender() -> None:
        other.lock("k")
        acquired.set()
        other.unlock("k")

    thread = threading.Thread(target=contender)
    thread.start()
    assert not acquired.wait(0.2)
    storage.unlock("k")
    assert wait_until(acquired.is_set)
    thread.join(timeout=5)


def test_lock_uses_configured_timeout(storage: FileStorage) -> None:
    storage.config.lock.acquire_timeout_seconds = 0.1
    other = FileStorage(storage.path, config=storage.config)
    other.lock("k")
    try:
        with pytest.raises(LockTimeoutError):
            storage.lock("k")
    finally:
        other.unlock("k")


def test_unlock_all_obtained(storage: FileStorage) -> None:
    storage.lock("a")
    storage.lock("b")

    assert storage.unlock_all_obtained() == []
    assert list(storage.lock_dir().iterdir()) == []


def test_str_includes_root(storage: FileStorage) -> None:
    assert str(storage) == f"FileStorage:{storage.path}"


@pytest.mark.parametrize("key", ["locks", "locks/", "locks/cert%2Fexample%2Ecom.lock", "./locks/x.lock", "Locks/x.lock"])
def test_lock_area_is_not_addressable_as_keys(storage: FileStorage, key: str) -> None:
    storage.lock("cert/example.com")
    try:
        for operation in (storage.exists, storage.load, storage.delete, storage.stat, storage.list):
            with pytest.raises(InvalidKeyError):
                operation(key)
        with pytest.raises(InvalidKeyError):
            storage.store(key, b"forged")
        assert storage.locker.lock_path("cert/example.com").exists()
    finally:
        storage.unlock("cert/example.com")


def test_other_instance_cannot_steal_marker_through_key_api(storage: FileStorage) -> None:
    other = FileStorage(storage.path, config=storage.config)
    storage.lock("cert/example.com")
    marker_key = "locks/" + storage.locker.lock_path("cert/example.com").name
    try:
        with pytest.raises(InvalidKeyError):
            other.delete(marker_key)
        with pytest.raises(LockTimeoutError):
            other.lock("cert/example.com", timeout=0.2)
        assert not other.locker.is_held("cert/example.com")
    finally:
        storage.unlock("cert/example.com")


def test_nested_locks_segment_is_an_ordinary_key(storage: FileStorage) -> None:
    storage.store("certs/locks/readme", b"ok")
    assert storage.list("certs/locks") == ["certs/locks/readme"]


def test_zero_configured_timeout_still_acquires_free_lock(storage: FileStorage) -> None:
    storage.config.lock.acquire_timeout_seconds = 0
    storage.config.lock.validate()
    with storage.locked("free"):
        assert storage.locker.is_held("free")
    assert not storage.locker.is_held("free")
