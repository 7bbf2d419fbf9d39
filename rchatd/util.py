from __future__ import annotations

import os
import time
import uuid

from .constants import MAX_IDENTITY_CHARS


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


def normalize_identity(value) -> str | None:
    """Return the identity if it is a usable user id, else None."""
    if not isinstance(value, str):
        return None

    if not value or len(value) > MAX_IDENTITY_CHARS:
        return None

    # Identities are join keys; reject anything that would be ambiguous once
    # trimmed or that breaks log lines.
    if value != value.strip():
        return None
    if any(ch.isspace() or ord(ch) < 0x20 for ch in value):
        return None

    return value


def fmt_id(value, *, prefix: int = 8) -> str:
    if isinstance(value, str) and value:
        return value if prefix <= 0 else value[: min(prefix, len(value))]
    return "-"
