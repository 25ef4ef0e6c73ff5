from __future__ import annotations

import os
import sys
from pathlib import Path

APP_DIR_NAME = "FocusFix"


def data_directory() -> Path:
    override = os.environ.get("FOCUSFIX_HOME")
    if override:
        return Path(override)
    if sys.platform == "win32":
        local_appdata = os.environ.get("LOCALAPPDATA")
        base = Path(local_appdata) if local_appdata else Path.home() / "AppData" / "Local"
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share")
    return base / APP_DIR_NAME


def database_path() -> Path:
    return data_directory() / "focusfix.sqlite3"


def ensure_directories() -> None:
    data_directory().mkdir(parents=True, exist_ok=True)
