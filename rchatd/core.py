from __future__ import annotations

from .broadcaster import EventBroadcaster
from .config import HubRuntimeConfig
from .connection import Connection
from .lifecycle import ConnectionHandler
from .presence import PresenceTracker
from .registry import ConnectionRegistry
from .router import MessageRouter
from .stats import StatsManager
from .store.base import ChatStore
from .typing_relay import TypingRelay


class ChatCore:
    """
    The presence and delivery core, independent of any transport.

    Owns the single ConnectionRegistry and hands it to every component that
    needs it. The hub service (or a test) creates one ConnectionHandler per
    accepted connection through `open_connection`.
    """

    def __init__(
        self,
        store: ChatStore,
        config: HubRuntimeConfig | None = None,
        *,
        stats: StatsManager | None = None,
    ) -> None:
        self.config = config or HubRuntimeConfig()
        self.store = store
        self.stats = stats or StatsManager()

        self.registry = ConnectionRegistry()
        self.presence = PresenceTracker(store, stats=self.stats)
        self.router = MessageRouter(self.registry, store, stats=self.stats)
        self.typing = TypingRelay(self.registry, stats=self.stats)
        self.broadcaster = EventBroadcaster(self.registry, stats=self.stats)

    def open_connection(self, connection: Connection) -> ConnectionHandler:
        return ConnectionHandler(self, connection)
