from __future__ import annotations

from ..util import expand_path
from .base import ChatStore
from .memory import MemoryStore
from .sqlite import SQLiteStore

__all__ = ["ChatStore", "MemoryStore", "SQLiteStore", "open_store"]


def open_store(backend: str, database_path: str | None = None) -> ChatStore:
    name = str(backend or "").strip().lower()
    if name == "memory":
        return MemoryStore()
    if name == "sqlite":
        if not database_path:
            raise ValueError("database_path is required for the sqlite store")
        return SQLiteStore(expand_path(database_path))
    raise ValueError(f"unknown store backend {backend!r}")
