from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any


@dataclass(frozen=True)
class HubRuntimeConfig:
    config_path: str | None = None
    configdir: str | None = None
    identity_path: str | None = None
    dest_name: str = "rchat.hub"
    announce_on_start: bool = True
    announce_period_s: float = 0.0
    hub_name: str = "rchat"
    store_backend: str = "sqlite"
    database_path: str | None = None
    require_known_users: bool = True
    enforce_sender_identity: bool = True
    close_superseded_links: bool = True
    rate_limit_msgs_per_minute: int = 240
    inbound_queue_size: int = 256
    max_resource_bytes: int = 5 * 1024 * 1024  # images travel as data URLs
    history_limit: int = 50
    log_level: str = "INFO"
    log_rns_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None
    # logger name (relative to "rchatd.") -> level, e.g. {"router": "DEBUG"}
    log_levels: dict[str, str] = field(default_factory=dict)


# [logging] table key -> config field
_LOGGING_KEYS = {
    "level": "log_level",
    "rns_level": "log_rns_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
    "levels": "log_levels",
}

# [store] table key -> config field
_STORE_KEYS = {
    "backend": "store_backend",
    "path": "database_path",
    "history_limit": "history_limit",
}

_EMPTY_MEANS_NONE = ("configdir", "database_path", "log_file", "log_datefmt")


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: HubRuntimeConfig, data: dict) -> HubRuntimeConfig:
    """Overlay values from a parsed TOML document onto `base`."""
    hub = data.get("hub") if isinstance(data, dict) else None
    if isinstance(hub, dict):
        data = {**data, **hub}

    for table, keys in (("logging", _LOGGING_KEYS), ("store", _STORE_KEYS)):
        section = data.get(table)
        if isinstance(section, dict):
            mapped: dict[str, Any] = {
                name: section[key] for key, name in keys.items() if key in section
            }
            data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for key in _EMPTY_MEANS_NONE:
        if key in updates and updates[key] == "":
            updates[key] = None

    return replace(base, **updates) if updates else base
