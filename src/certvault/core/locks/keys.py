"""Mapping of logical lock keys to marker file names."""

from __future__ import annotations

import hashlib
import re

from certvault.core.constants import LOCK_FILE_SUFFIX, LOCK_NAME_DIGEST_CHARS, MAX_LOCK_NAME_LENGTH
from certvault.core.exceptions import InvalidKeyError

# Anything outside this set is escaped, including upper case, so two keys that
# differ only by case still map to different names on case-insensitive shares.
_UNSAFE_CHARS = re.compile(r"[^a-z0-9_-]")


def _escape(match: re.Match[str]) -> str:
    return "".join(f"%{byte:02X}" for byte in match.group(0).encode("utf-8"))


def safe_lock_name(key: str) -> str:
    """Return a filesystem-safe, collision-free basename for ``key``.

    Examples:
        >>> safe_lock_name("cert/example.com")
        'cert%2Fexample%2Ecom'
        >>> safe_lock_name("Issue_1")
        '%49ssue_1'
    """
    if not key:
        raise InvalidKeyError(key, "lock key must not be empty")
    try:
        name = _UNSAFE_CHARS.sub(_escape, key)
    except UnicodeEncodeError as e:
        raise InvalidKeyError(key, f"lock key is not valid Unicode: {e.reason}") from e
    if len(name) > MAX_LOCK_NAME_LENGTH:
        digest = hashlib.sha256(name.encode("ascii")).hexdigest()[:LOCK_NAME_DIGEST_CHARS]
        name = f"{name[: MAX_LOCK_NAME_LENGTH - LOCK_NAME_DIGEST_CHARS - 1]}~{digest}"
    return name


def marker_filename(key: str) -> str:
    """Marker file name (basename plus suffix) for ``key``."""
    return safe_lock_name(key) + LOCK_FILE_SUFFIX
