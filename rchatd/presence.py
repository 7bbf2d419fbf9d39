from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from .constants import T_USER_OFFLINE, T_USER_ONLINE, T_USER_STATUS_UPDATE
from .errors import StoreUnavailable
from .models import PresenceEvent
from .stats import StatsManager
from .store.base import ChatStore
from .util import fmt_id, now_ms


class PresenceTracker:
    """
    Writes presence transitions through to the store.

    Each call returns the PresenceEvent to broadcast, or None when the store
    write failed. A failed write is logged and nothing else is undone: the
    registry stays the authority for reachability, and the next auth or
    heartbeat rewrites the row.

    `guard(user_id)` serializes one identity's bind or unbind, store write
    and broadcast across connection workers, so a reconnect cannot interleave
    with the old link's offline transition. It is separate from the registry
    lock and is reentrant.
    """

    def __init__(
        self,
        store: ChatStore,
        *,
        stats: StatsManager | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.stats = stats or StatsManager()
        self._clock = clock
        self.log = logging.getLogger("rchatd.presence")
        self._guards_lock = threading.Lock()
        self._guards: dict[str, threading.RLock] = {}

    def guard(self, user_id: str) -> threading.RLock:
        with self._guards_lock:
            lock = self._guards.get(user_id)
            if lock is None:
                lock = self._guards[user_id] = threading.RLock()
            return lock

    def _write(self, user_id: str, is_online: bool, kind: str) -> PresenceEvent | None:
        try:
            self.store.update_user_online_status(user_id, is_online)
        except StoreUnavailable as e:
            self.stats.inc("store_failures")
            self.log.warning(
                "Presence write failed user=%s kind=%s err=%s", fmt_id(user_id), kind, e
            )
            return None

        self.log.debug("Presence user=%s kind=%s", fmt_id(user_id), kind)
        return PresenceEvent(
            kind=kind, user_id=user_id, timestamp=self._clock(), is_online=is_online
        )

    def mark_online(self, user_id: str) -> PresenceEvent | None:
        return self._write(user_id, True, T_USER_ONLINE)

    def mark_offline(self, user_id: str) -> PresenceEvent | None:
        return self._write(user_id, False, T_USER_OFFLINE)

    def touch_last_seen(self, user_id: str) -> PresenceEvent | None:
        return self._write(user_id, True, T_USER_STATUS_UPDATE)
