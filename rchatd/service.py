from __future__ import annotations

import logging
import os
import signal
import threading
import time
from typing import Any

import RNS

from . import __version__
from .codec import encode
from .config import HubRuntimeConfig
from .constants import (
    P_CONVERSATIONS,
    P_ME,
    P_MESSAGES,
    P_ONLINE_USERS,
    P_PROFILE,
    P_STATS,
)
from .core import ChatCore
from .errors import StoreUnavailable, ValidationError
from .lifecycle import AUTHENTICATED, ConnectionHandler, ConnectionWorker
from .queries import ConversationQueries
from .stats import StatsManager
from .store import ChatStore, open_store
from .transport import LinkConnection, fmt_link_id
from .util import expand_path, fmt_id


class _LinkEntry:
    __slots__ = ("connection", "handler", "worker")

    def __init__(
        self, connection: LinkConnection, handler: ConnectionHandler, worker: ConnectionWorker
    ) -> None:
        self.connection = connection
        self.handler = handler
        self.worker = worker


class HubService:
    def __init__(self, config: HubRuntimeConfig, store: ChatStore | None = None) -> None:
        self.config = config
        self.log = logging.getLogger("rchatd.hub")
        self.stats = StatsManager()

        if store is None:
            store = open_store(config.store_backend, config.database_path)
            if config.store_backend == "memory" and config.require_known_users:
                self.log.warning(
                    "The memory store starts empty and require_known_users is on: "
                    "no user can authenticate until users are created in-process"
                )
        self.store = store

        self.core = ChatCore(store, config, stats=self.stats)
        self.queries = ConversationQueries(store, history_limit=config.history_limit)

        # Link bookkeeping is touched from RNS callbacks and request handlers.
        self._links_lock = threading.Lock()
        self._links: dict[bytes, _LinkEntry] = {}  # link_id -> entry

        self._shutdown = threading.Event()
        self._announce_thread: threading.Thread | None = None

        self.identity: RNS.Identity | None = None
        self.destination: RNS.Destination | None = None

    def start(self) -> None:
        self.log.info("Starting Reticulum")
        self.stats.set_start_time()
        RNS.Reticulum(configdir=self.config.configdir, require_shared_instance=False)

        if not self.config.identity_path:
            raise RuntimeError("identity_path is not set")
        self.identity = self._load_identity(self.config.identity_path)

        parts = [p for p in str(self.config.dest_name).split(".") if p]
        if not parts:
            raise ValueError("dest_name must not be empty")
        app_name, aspects = parts[0], parts[1:]

        self.destination = RNS.Destination(
            self.identity,
            RNS.Destination.IN,
            RNS.Destination.SINGLE,
            app_name,
            *aspects,
        )
        self.destination.set_link_established_callback(self._on_link)
        for path in (P_ME, P_ONLINE_USERS, P_PROFILE, P_CONVERSATIONS, P_MESSAGES, P_STATS):
            self.destination.register_request_handler(
                path,
                response_generator=self._on_request,
                allow=RNS.Destination.ALLOW_ALL,
            )

        if self.config.announce_on_start:
            self._announce_once()

        if self.config.announce_period_s and self.config.announce_period_s > 0:
            self._announce_thread = threading.Thread(
                target=self._announce_loop,
                name="rchatd-announce",
                daemon=True,
            )
            self._announce_thread.start()

        self.log.info(
            "Hub running dest_name=%s dest_hash=%s store=%s",
            self.config.dest_name,
            self.destination.hash.hex() if self.destination else "-",
            self.config.store_backend,
        )
        self.log.info(
            "Policy require_known_users=%s enforce_sender_identity=%s "
            "close_superseded_links=%s rate_limit_msgs_per_minute=%s",
            self.config.require_known_users,
            self.config.enforce_sender_identity,
            self.config.close_superseded_links,
            self.config.rate_limit_msgs_per_minute,
        )

    def _announce_once(self) -> None:
        if self.destination is None:
            return
        try:
            self.destination.announce(
                app_data=encode({"proto": "rchat", "v": 1, "hub": self.config.hub_name})
            )
        except Exception:
            self.log.exception("Announce failed")

    def _announce_loop(self) -> None:
        while not self._shutdown.is_set():
            period = float(self.config.announce_period_s)
            if self._shutdown.wait(period if period > 0 else 1.0):
                break
            if period > 0:
                self._announce_once()

    def run_forever(self) -> None:
        if self.destination is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()

        with self._links_lock:
            entries = list(self._links.values())
            self._links.clear()

        # Workers run each handler's close (unbind, offline, broadcast) after
        # draining what is already queued.
        for entry in entries:
            entry.worker.close()
        for entry in entries:
            entry.worker.join(timeout=2.0)
            entry.connection.close()

        self.core.registry.clear_all()
        try:
            self.store.close()
        except StoreUnavailable:
            self.log.warning("Store close failed", exc_info=True)

        self.log.info(
            "Hub stopped\n%s",
            self.stats.format_stats(connections=0, version=__version__),
        )

    def _load_identity(self, path: str) -> RNS.Identity:
        p = expand_path(path)
        if not os.path.exists(p):
            raise RuntimeError(f"Identity not found at {p}")
        ident = RNS.Identity.from_file(p)
        if ident is None:
            raise RuntimeError(f"Failed to load identity from {p}")
        return ident

    # Link callbacks

    def _on_link(self, link: RNS.Link) -> None:
        connection = LinkConnection(
            link, max_resource_bytes=self.config.max_resource_bytes, stats=self.stats
        )
        handler = self.core.open_connection(connection)
        worker = ConnectionWorker(handler, max_pending=self.config.inbound_queue_size)

        with self._links_lock:
            self._links[bytes(link.link_id)] = _LinkEntry(connection, handler, worker)

        connection.configure_callbacks(
            on_payload=worker.submit,
            on_closed=lambda: self._on_close(link),
        )
        worker.start()
        self.log.info("Link established link_id=%s", connection.connection_id)

    def _on_close(self, link: RNS.Link) -> None:
        with self._links_lock:
            entry = self._links.pop(bytes(link.link_id), None)
        if entry is None:
            return
        entry.worker.close()
        self.log.info(
            "Link closed user=%s link_id=%s",
            fmt_id(entry.handler.user_id),
            fmt_link_id(link),
        )

    # Requests

    def _on_request(
        self,
        path: str,
        data: Any,
        request_id: bytes,
        link_id: bytes,
        remote_identity: RNS.Identity | None,
        requested_at: float,
    ) -> Any:
        with self._links_lock:
            entry = self._links.get(bytes(link_id))

        handler = entry.handler if entry is not None else None
        if handler is None or handler.state != AUTHENTICATED or handler.user_id is None:
            return {"error": "not authenticated"}

        user_id = handler.user_id
        try:
            return self._answer(path, user_id, data)
        except ValidationError as e:
            return {"error": str(e), "fields": e.fields}
        except StoreUnavailable as e:
            self.log.warning(
                "Request failed path=%s user=%s err=%s", path, fmt_id(user_id), e
            )
            return {"error": "store unavailable"}

    def _answer(self, path: str, user_id: str, data: Any) -> Any:
        if path == P_ME:
            return self.queries.me(user_id) or {"error": "user not found"}
        if path == P_ONLINE_USERS:
            return self.queries.online_users()
        if path == P_PROFILE:
            return self.queries.update_profile(user_id, data) or {"error": "user not found"}
        if path == P_CONVERSATIONS:
            return self.queries.conversations(user_id)
        if path == P_MESSAGES:
            return self.queries.messages(user_id, data)
        if path == P_STATS:
            return self.stats.format_stats(
                connections=len(self.core.registry), version=__version__
            )
        return {"error": f"unknown path {path}"}
