from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .connection import Connection
from .constants import F_SENDER_ID
from .errors import ProtocolError, StoreUnavailable, ValidationError
from .events import (
    AuthEvent,
    ChatMessageEvent,
    InboundEvent,
    TypingEvent,
    UpdateLastSeenEvent,
    decode_event,
)
from .util import fmt_id

if TYPE_CHECKING:
    from .core import ChatCore


UNAUTHENTICATED = "unauthenticated"
AUTHENTICATED = "authenticated"
CLOSED = "closed"

# state -> event classes accepted in that state
TRANSITIONS: dict[str, tuple[type, ...]] = {
    UNAUTHENTICATED: (AuthEvent,),
    AUTHENTICATED: (AuthEvent, ChatMessageEvent, TypingEvent, UpdateLastSeenEvent),
    CLOSED: (),
}


@dataclass
class _RateState:
    """Token bucket state for rate limiting."""

    tokens: float
    last_refill: float


class ConnectionHandler:
    """
    Per-connection state machine.

    UNAUTHENTICATED accepts only `auth`; AUTHENTICATED accepts chat, typing
    and heartbeat events; CLOSED is terminal. Events not accepted in the
    current state are logged and dropped; the connection stays open.

    Calls must come from one thread at a time (the connection's worker), so
    events are handled in arrival order. `close()` is safe from any thread.
    """

    def __init__(self, core: ChatCore, connection: Connection) -> None:
        self.core = core
        self.connection = connection
        self.log = logging.getLogger("rchatd.lifecycle")
        self.state = UNAUTHENTICATED
        self.user_id: str | None = None
        self._state_lock = threading.Lock()

        per_min = int(core.config.rate_limit_msgs_per_minute)
        self._rate = _RateState(tokens=float(per_min), last_refill=time.monotonic())

        self._dispatch: dict[type, Callable[[InboundEvent], None]] = {
            AuthEvent: self._on_auth,
            ChatMessageEvent: self._on_chat_message,
            TypingEvent: self._on_typing,
            UpdateLastSeenEvent: self._on_update_last_seen,
        }

    # Inbound

    def handle_payload(self, data: bytes) -> None:
        """Decode one raw inbound payload and handle it."""
        stats = self.core.stats
        stats.inc("bytes_in", len(data))

        if self.state == CLOSED:
            return

        if not self._refill_and_take(1.0):
            stats.inc("rate_limited")
            self.log.debug(
                "Rate limited user=%s conn=%s",
                fmt_id(self.user_id),
                self.connection.connection_id,
            )
            return

        try:
            event = decode_event(data)
        except ProtocolError as e:
            stats.inc("events_bad")
            self.log.info(
                "Dropped malformed event conn=%s bytes=%s err=%s",
                self.connection.connection_id,
                len(data),
                e,
            )
            return

        self.handle_event(event)

    def handle_event(self, event: InboundEvent) -> None:
        accepted = TRANSITIONS[self.state]
        if not isinstance(event, accepted):
            self.core.stats.inc("events_dropped")
            self.log.info(
                "Dropped %s in state=%s conn=%s",
                type(event).__name__,
                self.state,
                self.connection.connection_id,
            )
            return

        self.core.stats.inc("events_in")
        try:
            self._dispatch[type(event)](event)
        except ValidationError as e:
            self.log.info(
                "Dropped invalid chat message user=%s fields=%s",
                fmt_id(self.user_id),
                ",".join(e.fields),
            )
        except StoreUnavailable as e:
            self.core.stats.inc("store_failures")
            self.log.warning(
                "Store unavailable handling %s user=%s err=%s",
                type(event).__name__,
                fmt_id(self.user_id),
                e,
            )

    def _on_auth(self, event: AuthEvent) -> None:
        core = self.core

        if self.state == AUTHENTICATED and event.user_id != self.user_id:
            self.log.warning(
                "Ignoring auth as user=%s on conn=%s already bound to user=%s",
                fmt_id(event.user_id),
                self.connection.connection_id,
                fmt_id(self.user_id),
            )
            return

        if core.config.require_known_users and core.store.get_user(event.user_id) is None:
            self.log.info(
                "Rejected auth for unknown user=%s conn=%s",
                fmt_id(event.user_id),
                self.connection.connection_id,
            )
            return

        with core.presence.guard(event.user_id):
            with self._state_lock:
                if self.state == CLOSED:
                    return
                repeat = (
                    self.state == AUTHENTICATED
                    and core.registry.lookup(event.user_id) is self.connection
                )
                superseded = core.registry.bind(event.user_id, self.connection)
                self.user_id = event.user_id
                self.state = AUTHENTICATED

            core.stats.inc("auths")
            self.log.info(
                "Authenticated user=%s conn=%s repeat=%s",
                fmt_id(event.user_id),
                self.connection.connection_id,
                repeat,
            )

            presence = core.presence.mark_online(event.user_id)
            # A repeated handshake on the same connection refreshes the store
            # but is not a new presence transition.
            if presence is not None and not repeat:
                core.broadcaster.broadcast(presence)

        if superseded is not None and core.config.close_superseded_links:
            self.log.info(
                "Closing superseded conn=%s for user=%s",
                superseded.connection_id,
                fmt_id(event.user_id),
            )
            superseded.close()

    def _on_chat_message(self, event: ChatMessageEvent) -> None:
        data = event.data
        if (
            self.core.config.enforce_sender_identity
            and isinstance(data, dict)
            and data.get(F_SENDER_ID) != self.user_id
        ):
            self.core.stats.inc("messages_rejected")
            self.log.warning(
                "Dropped chat message with foreign senderId user=%s conn=%s",
                fmt_id(self.user_id),
                self.connection.connection_id,
            )
            return

        self.core.router.route(data, reply_to=self.connection)

    def _on_typing(self, event: TypingEvent) -> None:
        if event.sender_id != self.user_id:
            self.log.debug(
                "Dropped typing with foreign senderId user=%s", fmt_id(self.user_id)
            )
            return
        self.core.typing.relay(event.sender_id, event.receiver_id, event.is_typing)

    def _on_update_last_seen(self, event: UpdateLastSeenEvent) -> None:
        if event.user_id != self.user_id:
            self.log.debug(
                "Dropped heartbeat for foreign user=%s on user=%s",
                fmt_id(event.user_id),
                fmt_id(self.user_id),
            )
            return
        presence = self.core.presence.touch_last_seen(event.user_id)
        if presence is not None:
            self.core.broadcaster.broadcast(presence)

    # Close

    def close(self) -> None:
        """Enter CLOSED. Only the first call has side effects."""
        with self._state_lock:
            if self.state == CLOSED:
                return
            previous = self.state
            self.state = CLOSED
            user_id = self.user_id

        if previous != AUTHENTICATED or user_id is None:
            self.log.debug("Closed unauthenticated conn=%s", self.connection.connection_id)
            return

        core = self.core
        with core.presence.guard(user_id):
            # A superseded connection no longer owns the binding; its close
            # must not take the user offline.
            if not core.registry.unbind(user_id, self.connection):
                self.log.info(
                    "Closed superseded conn=%s user=%s",
                    self.connection.connection_id,
                    fmt_id(user_id),
                )
                return

            self.log.info(
                "Closed conn=%s user=%s", self.connection.connection_id, fmt_id(user_id)
            )
            presence = core.presence.mark_offline(user_id)

            # The user came back on another connection before the offline
            # write landed: restore the row and keep user_online as the last
            # word peers saw.
            if core.registry.lookup(user_id) is not None:
                self.log.info(
                    "User rebound during close user=%s conn=%s",
                    fmt_id(user_id),
                    self.connection.connection_id,
                )
                core.presence.mark_online(user_id)
                return

            if presence is not None:
                core.broadcaster.broadcast(presence)

    def _refill_and_take(self, cost: float = 1.0) -> bool:
        """
        Token bucket rate limiting.

        Refills tokens based on elapsed time and attempts to take `cost` tokens.
        A limit of 0 disables rate limiting.
        """
        per_min = float(self.core.config.rate_limit_msgs_per_minute)
        if per_min <= 0:
            return True

        state = self._rate
        now = time.monotonic()
        elapsed = max(0.0, now - state.last_refill)
        state.tokens = min(per_min, state.tokens + elapsed * (per_min / 60.0))
        state.last_refill = now

        if state.tokens < cost:
            return False

        state.tokens -= cost
        return True


_CLOSE = object()


class ConnectionWorker:
    """
    Ordered dispatch loop for one connection.

    Transport callbacks only enqueue; a dedicated thread drains the queue into
    the handler. A slow store write therefore stalls this connection alone.
    """

    def __init__(self, handler: ConnectionHandler, *, max_pending: int = 256) -> None:
        self.handler = handler
        self.max_pending = max(1, int(max_pending))
        self.log = logging.getLogger("rchatd.worker")
        self._queue: queue.Queue = queue.Queue()
        self._closing = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"rchatd-conn-{handler.connection.connection_id[:8]}",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def submit(self, data: bytes) -> bool:
        if self._closing.is_set():
            return False
        if self._queue.qsize() >= self.max_pending:
            self.handler.core.stats.inc("events_dropped")
            self.log.warning(
                "Inbound queue full, dropping event conn=%s pending=%s",
                self.handler.connection.connection_id,
                self._queue.qsize(),
            )
            return False
        self._queue.put(data)
        return True

    def close(self) -> None:
        """Close after already-queued events have been handled."""
        if self._closing.is_set():
            return
        self._closing.set()
        self._queue.put(_CLOSE)

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _CLOSE:
                break
            try:
                self.handler.handle_payload(item)
            except Exception:
                self.log.exception(
                    "Unhandled error conn=%s", self.handler.connection.connection_id
                )

        try:
            self.handler.close()
        except Exception:
            self.log.exception(
                "Error closing conn=%s", self.handler.connection.connection_id
            )
