from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path

import RNS
import tomlkit

from .config import HubRuntimeConfig, apply_config_data, load_toml
from .logging_config import configure_logging
from .paths import (
    default_config_path,
    default_database_path,
    default_identity_path,
    ensure_private_dir,
    resolve_config_relative,
)
from .service import HubService
from .store import open_store


def _default_config_document(identity_path: str, database_path: str) -> tomlkit.TOMLDocument:
    defaults = HubRuntimeConfig()
    doc = tomlkit.document()
    doc.add(tomlkit.comment("rchatd configuration (TOML)"))
    doc.add(tomlkit.comment(""))
    doc.add(tomlkit.comment("This file was created on first run."))
    doc.add(tomlkit.comment("Edit it, then start rchatd again."))
    doc.add(tomlkit.nl())

    hub = tomlkit.table()
    hub.add(tomlkit.comment("Optional: Reticulum configuration directory (empty = RNS default)."))
    hub.add("configdir", "")
    hub.add(tomlkit.comment("Where rchatd stores its persistent Reticulum identity."))
    hub.add("identity_path", identity_path)
    hub.add("dest_name", defaults.dest_name)
    hub.add("hub_name", defaults.hub_name)
    hub.add(tomlkit.nl())
    hub.add(tomlkit.comment("announce_period_s > 0 re-announces periodically."))
    hub.add("announce_on_start", defaults.announce_on_start)
    hub.add("announce_period_s", defaults.announce_period_s)
    hub.add(tomlkit.nl())
    hub.add(tomlkit.comment("Only users present in the store may authenticate."))
    hub.add(tomlkit.comment("Add users with `rchatd --add-user` (sqlite store only)."))
    hub.add("require_known_users", defaults.require_known_users)
    hub.add(tomlkit.comment("Drop chat/typing events whose sender is not the link's user."))
    hub.add("enforce_sender_identity", defaults.enforce_sender_identity)
    hub.add(tomlkit.comment("Tear down the older link when a user authenticates again elsewhere."))
    hub.add("close_superseded_links", defaults.close_superseded_links)
    hub.add(tomlkit.nl())
    hub.add(tomlkit.comment("Per-link inbound limits (0 disables rate limiting)."))
    hub.add("rate_limit_msgs_per_minute", defaults.rate_limit_msgs_per_minute)
    hub.add("inbound_queue_size", defaults.inbound_queue_size)
    hub.add(tomlkit.comment("Largest event accepted or sent as an RNS.Resource."))
    hub.add("max_resource_bytes", defaults.max_resource_bytes)
    doc.add("hub", hub)

    store = tomlkit.table()
    store.add(tomlkit.comment('backend: "sqlite" or "memory" (memory loses everything on exit)'))
    store.add(tomlkit.comment("The memory store starts with no users, so no one can authenticate"))
    store.add(tomlkit.comment("against it while require_known_users is on."))
    store.add("backend", defaults.store_backend)
    store.add("path", database_path)
    store.add("history_limit", defaults.history_limit)
    doc.add("store", store)

    logging_table = tomlkit.table()
    logging_table.add("level", defaults.log_level)
    logging_table.add("rns_level", defaults.log_rns_level)
    logging_table.add("console", defaults.log_console)
    logging_table.add(tomlkit.comment("Optional file path for logs (leave empty to disable)."))
    logging_table.add("file", "")
    logging_table.add("format", defaults.log_format)
    logging_table.add("datefmt", "")
    levels = tomlkit.table()
    levels.add(tomlkit.comment('Per-component levels, e.g. router = "DEBUG" or store = "WARNING".'))
    logging_table.add("levels", levels)
    doc.add("logging", logging_table)
    return doc


def _write_default_config(config_path: str, identity_path: str, database_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    doc = _default_config_document(identity_path, database_path)
    with open(config_path, "w", encoding="utf-8") as f:
        f.write(tomlkit.dumps(doc))


def _ensure_first_run_files(config_path: str, identity_path: str, database_path: str) -> bool:
    created_any = False

    if not os.path.exists(config_path):
        _write_default_config(config_path, identity_path, database_path)
        created_any = True

    if not os.path.exists(identity_path):
        storage_dir = os.path.dirname(identity_path)
        if storage_dir:
            ensure_private_dir(Path(storage_dir))
        ident = RNS.Identity()
        ident.to_file(identity_path)
        try:
            os.chmod(identity_path, 0o600)
        except OSError:
            pass
        created_any = True

    return created_any


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rchatd", description="Run a one-on-one chat hub")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--configdir", default=None, help="Reticulum config directory")
    p.add_argument(
        "--identity",
        default=str(default_identity_path()),
        help="Path to hub identity file (created on first run)",
    )
    p.add_argument(
        "--dest-name", default=None, help="Destination app name (default: rchat.hub)"
    )
    p.add_argument(
        "--no-announce",
        action="store_true",
        help="Disable announce on start (does not affect periodic announce)",
    )
    p.add_argument(
        "--announce-period",
        type=float,
        default=None,
        help="Periodic announce interval seconds (0 disables)",
    )
    p.add_argument("--hub-name", default=None, help="Hub name in announces")

    p.add_argument(
        "--store", choices=("sqlite", "memory"), default=None, help="Store backend"
    )
    p.add_argument("--database", default=None, help="SQLite database path")
    p.add_argument(
        "--allow-unknown-users",
        action="store_true",
        help="Accept auth for user ids that are not in the store",
    )
    p.add_argument(
        "--rate-limit-msgs-per-minute",
        type=int,
        default=None,
        help="Per-link inbound event rate limit (0 disables)",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    user = p.add_argument_group("user management")
    user.add_argument(
        "--add-user",
        metavar="USERNAME",
        default=None,
        help="Create a user in the store and exit",
    )
    user.add_argument("--display-name", default=None, help="Display name for --add-user")
    user.add_argument(
        "--password-hash",
        default=None,
        help="Pre-computed credential hash for --add-user (hashing happens elsewhere)",
    )

    return p


def _add_user(cfg: HubRuntimeConfig, args: argparse.Namespace) -> int:
    if not args.password_hash:
        print("--add-user requires --password-hash", file=sys.stderr)
        return 2
    if cfg.store_backend != "sqlite":
        print(
            f"--add-user needs the sqlite store (store backend is {cfg.store_backend!r})",
            file=sys.stderr,
        )
        return 2

    store = open_store(cfg.store_backend, cfg.database_path)
    try:
        user = store.create_user(
            args.add_user,
            args.password_hash,
            args.display_name or args.add_user,
        )
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 1
    finally:
        store.close()

    print(user.id)
    return 0


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    identity_path = str(args.identity)
    database_path = str(args.database or default_database_path())

    if _ensure_first_run_files(config_path, identity_path, database_path):
        print(
            "Created default rchatd files. Edit the configuration before starting:\n"
            f"- Config:   {config_path}\n"
            f"- Identity: {identity_path}\n"
            "\nThen re-run rchatd.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = HubRuntimeConfig(
        config_path=config_path,
        configdir=args.configdir,
        identity_path=identity_path,
        database_path=database_path,
    )
    cfg = apply_config_data(cfg, load_toml(config_path))
    cfg = replace(
        cfg,
        database_path=resolve_config_relative(cfg.database_path, config_path),
        log_file=resolve_config_relative(cfg.log_file, config_path),
    )

    if args.dest_name is not None:
        cfg = replace(cfg, dest_name=args.dest_name)
    if args.no_announce:
        cfg = replace(cfg, announce_on_start=False)
    if args.announce_period is not None:
        cfg = replace(cfg, announce_period_s=float(args.announce_period))
    if args.hub_name is not None:
        cfg = replace(cfg, hub_name=args.hub_name)
    if args.store is not None:
        cfg = replace(cfg, store_backend=args.store)
    if args.database is not None:
        cfg = replace(cfg, database_path=str(args.database))
    if args.allow_unknown_users:
        cfg = replace(cfg, require_known_users=False)
    if args.rate_limit_msgs_per_minute is not None:
        cfg = replace(
            cfg, rate_limit_msgs_per_minute=int(args.rate_limit_msgs_per_minute)
        )
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    component_levels = configure_logging(
        cfg, override_level=args.log_level, override_file=args.log_file
    )
    if component_levels:
        logging.getLogger("rchatd.hub").info(
            "Component log levels %s",
            " ".join(
                f"{name}={logging.getLevelName(lvl)}" for name, lvl in component_levels.items()
            ),
        )

    if args.add_user is not None:
        raise SystemExit(_add_user(cfg, args))

    svc = HubService(cfg)
    svc.start()
    svc.run_forever()


if __name__ == "__main__":
    main()
