"""Where rchatd keeps its files.

Everything lives under one home directory (`RCHATD_HOME`, else ~/.rchatd).
Relative paths written in the config file are taken relative to the
directory holding that file, so a hub home can be moved as a unit.
"""

from __future__ import annotations

import os
from pathlib import Path

CONFIG_FILE = "rchatd.toml"
IDENTITY_FILE = "hub_identity"
DATABASE_FILE = "chat.db"


def rchatd_home() -> Path:
    override = os.environ.get("RCHATD_HOME")
    return Path(override).expanduser() if override else Path.home() / ".rchatd"


def default_config_path() -> Path:
    return rchatd_home() / CONFIG_FILE


def default_identity_path() -> Path:
    return rchatd_home() / IDENTITY_FILE


def default_database_path() -> Path:
    return rchatd_home() / DATABASE_FILE


def resolve_config_relative(value: str | None, config_path: str) -> str | None:
    """Anchor a relative path from the config file at the config's directory.

    None, empty, absolute and `~` paths are returned unchanged.
    """
    if not value:
        return value
    p = Path(value)
    if p.is_absolute() or value.startswith("~"):
        return value
    return str(Path(config_path).expanduser().parent / p)


def ensure_private_dir(path: Path) -> None:
    """Create `path` (and parents) and restrict it to the owner."""
    path.mkdir(parents=True, exist_ok=True)
    try:
        os.chmod(path, 0o700)
    except OSError:
        # Not every filesystem supports POSIX modes.
        pass
