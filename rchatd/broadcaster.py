from __future__ import annotations

import logging

from .connection import Connection, deliver
from .events import encode_event, presence_event
from .models import PresenceEvent
from .registry import ConnectionRegistry
from .stats import StatsManager
from .util import fmt_id


class EventBroadcaster:
    """
    Fans presence events out to every bound connection.

    Delivery is at-most-once and best-effort: each write is independent, a
    dead or failing connection is skipped, and the fan-out carries on.
    Recipient order is whatever the registry snapshot yields.
    """

    def __init__(
        self, registry: ConnectionRegistry, *, stats: StatsManager | None = None
    ) -> None:
        self.registry = registry
        self.stats = stats or StatsManager()
        self.log = logging.getLogger("rchatd.broadcast")

    def broadcast(self, event: PresenceEvent) -> int:
        """Send `event` to all bound connections. Returns how many got it."""
        env = presence_event(event)
        payload = encode_event(env)
        delivered = 0
        skipped = 0

        def _send_one(user_id: str, conn: Connection) -> None:
            nonlocal delivered, skipped
            if deliver(conn, env, payload=payload):
                delivered += 1
            else:
                skipped += 1

        self.registry.for_each_connection(_send_one)

        self.stats.inc("broadcasts")
        self.stats.inc("broadcast_writes", delivered)
        self.log.debug(
            "Broadcast kind=%s user=%s delivered=%s skipped=%s",
            event.kind,
            fmt_id(event.user_id),
            delivered,
            skipped,
        )
        return delivered
