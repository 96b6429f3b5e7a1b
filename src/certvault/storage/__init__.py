"""Filesystem key-value storage with cross-process key locks."""

from certvault.storage.filestorage import FileStorage, KeyInfo

__all__ = ["FileStorage", "KeyInfo"]
