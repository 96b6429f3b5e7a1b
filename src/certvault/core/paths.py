"""Default storage root resolution."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from certvault.core.constants import ENV_HOME


def home_dir() -> Path:
    """Best guess of the current user's home directory from the environment.

    Returns ``.`` (the current directory) when nothing usable is set.
    """
    home = os.environ.get("HOME", "")
    if not home and sys.platform == "win32":
        drive = os.environ.get("HOMEDRIVE", "")
        path = os.environ.get("HOMEPATH", "")
        home = drive + path
        if not drive or not path:
            home = os.environ.get("USERPROFILE", "")
    return Path(home or ".")


def data_dir() -> Path:
    """Get the default storage root (``$CERTVAULT_HOME`` or the XDG data dir).

    Returns:
        Path to the certvault data directory
    """
    override = os.environ.get(ENV_HOME)
    if override:
        return Path(override).expanduser()
    base_dir = home_dir() / ".local" / "share"
    xdg_data = os.environ.get("XDG_DATA_HOME")
    if xdg_data:
        base_dir = Path(xdg_data)
    return base_dir / "certvault"
