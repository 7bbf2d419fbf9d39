"""Logging setup for the hub process.

Every component logs under `rchatd.<component>` (hub, lifecycle, registry,
presence, router, typing, broadcast, store, transport, worker, ...). The
`[logging]` table sets the root level, the RNS level and the handlers, and
its `[logging.levels]` sub-table tunes single components, for example
`router = "DEBUG"` while everything else stays at INFO.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from .config import HubRuntimeConfig

FALLBACK_FORMAT = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"


def parse_level(value: Any, default: int) -> int:
    """Accept a level name ("debug", "WARN"), a number or a numeric string."""
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if not text:
        return default
    if text == "WARN":
        text = "WARNING"
    level = logging.getLevelName(text)
    if isinstance(level, int):
        return level
    try:
        return int(text)
    except ValueError:
        return default


def component_logger_name(name: str) -> str:
    """Map a `[logging.levels]` key to a logger name.

    Bare component names live under `rchatd.`; dotted names and `RNS` are
    taken as given.
    """
    name = str(name).strip()
    if name == "RNS" or name == "rchatd" or "." in name:
        return name
    return f"rchatd.{name}"


def _optional(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def _open_log_file(log_file: str) -> logging.Handler:
    path = Path(os.path.expanduser(log_file))
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    try:
        # Logs carry user ids.
        os.chmod(path, 0o600)
    except OSError:
        pass
    return handler


def _apply_component_levels(levels: Any) -> dict[str, int]:
    applied: dict[str, int] = {}
    if not isinstance(levels, Mapping):
        return applied
    for key, value in levels.items():
        name = component_logger_name(key)
        level = parse_level(value, logging.NOTSET)
        logging.getLogger(name).setLevel(level)
        applied[name] = level
    return applied


def configure_logging(
    cfg: HubRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> dict[str, int]:
    """Install handlers and levels from `cfg`, replacing any earlier setup.

    `override_file=""` turns file logging off even when the config names a
    file. Returns the per-component levels that were applied.
    """
    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())

    log_file = _optional(cfg.log_file if override_file is None else override_file)
    if log_file:
        handlers.append(_open_log_file(log_file))

    formatter = logging.Formatter(
        fmt=str(cfg.log_format).strip() or FALLBACK_FORMAT,
        datefmt=_optional(cfg.log_datefmt),
    )
    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    root.setLevel(parse_level(override_level or cfg.log_level, logging.INFO))
    logging.getLogger("RNS").setLevel(parse_level(cfg.log_rns_level, logging.WARNING))
    applied = _apply_component_levels(cfg.log_levels)

    logging.captureWarnings(True)
    return applied
