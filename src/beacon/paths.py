"""Helpers for locating application directories."""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import PlatformDirs


APP_NAME = "Beacon"
DATA_DIR_ENV = "BEACON_DATA_DIR"


def get_data_dir() -> Path:
    """Return the base directory for persistent data.

    ``BEACON_DATA_DIR`` replaces the platform default when set.
    """
    override = os.getenv(DATA_DIR_ENV)
    if override:
        path = Path(override).expanduser()
    else:
        path = Path(PlatformDirs(appname=APP_NAME, appauthor=False, roaming=True).user_data_path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_db_path() -> Path:
    return get_data_dir() / "beacon.sqlite3"


def get_log_path() -> Path:
    return get_data_dir() / "beacon.log"
