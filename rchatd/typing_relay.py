from __future__ import annotations

import logging

from .connection import deliver
from .events import typing_event
from .registry import ConnectionRegistry
from .stats import StatsManager
from .util import fmt_id


class TypingRelay:
    """Forwards typing state to a live receiver. Never persisted, never an error."""

    def __init__(
        self, registry: ConnectionRegistry, *, stats: StatsManager | None = None
    ) -> None:
        self.registry = registry
        self.stats = stats or StatsManager()
        self.log = logging.getLogger("rchatd.typing")

    def relay(self, sender_id: str, receiver_id: str, is_typing: bool) -> bool:
        conn = self.registry.lookup(receiver_id)
        if deliver(conn, typing_event(sender_id, is_typing)):
            self.stats.inc("typing_relayed")
            return True

        self.stats.inc("typing_dropped")
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Dropped typing from=%s to=%s (receiver offline)",
                fmt_id(sender_id),
                fmt_id(receiver_id),
            )
        return False
