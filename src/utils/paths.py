"""File path resolution using platformdirs.

ISUITE_DATA_DIR overrides the location; otherwise the platform user data
directory is used:
  macOS: ~/Library/Application Support/isuite/
  Linux: ~/.local/share/isuite/
  Windows: %LOCALAPPDATA%/isuite/
"""

import os
from pathlib import Path

import platformdirs

APP_NAME = "isuite"


def get_data_dir() -> Path:
    """Return the directory for persistent data (transcript DB)."""
    override = os.environ.get("ISUITE_DATA_DIR", "").strip()
    if override:
        return Path(override)
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))


def get_default_db_path() -> Path:
    """Return the default SQLite database file path, creating its directory."""
    data_dir = get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir / "isuite.db"
