from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from .connection import Connection
from .util import fmt_id


@dataclass(frozen=True)
class ConnectionBinding:
    user_id: str
    connection: Connection
    bound_at: float


class ConnectionRegistry:
    """
    Maps a user identity to its single live connection.

    This class is responsible for:
    - Binding and unbinding identities to connections
    - O(1) lookups by identity and by connection
    - Snapshot iteration for broadcast

    It performs no I/O. The internal lock only guards the two dicts and is
    never held while calling back into other code.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("rchatd.registry")
        self._lock = threading.Lock()
        self._by_identity: dict[str, ConnectionBinding] = {}
        self._by_connection: dict[int, str] = {}  # id(connection) -> identity

    def bind(self, user_id: str, connection: Connection) -> Connection | None:
        """
        Bind `user_id` to `connection`, replacing any prior binding.

        Returns the superseded connection, if a different one was bound.
        """
        binding = ConnectionBinding(user_id, connection, time.time())
        with self._lock:
            prior = self._by_identity.get(user_id)
            if prior is not None and prior.connection is not connection:
                self._by_connection.pop(id(prior.connection), None)

            # A connection carries at most one identity.
            other = self._by_connection.get(id(connection))
            if other is not None and other != user_id:
                self._by_identity.pop(other, None)

            self._by_identity[user_id] = binding
            self._by_connection[id(connection)] = user_id

        superseded = None
        if prior is not None and prior.connection is not connection:
            superseded = prior.connection
            self.log.info(
                "Rebound user=%s conn=%s superseded=%s",
                fmt_id(user_id),
                connection.connection_id,
                superseded.connection_id,
            )
        else:
            self.log.debug("Bound user=%s conn=%s", fmt_id(user_id), connection.connection_id)
        return superseded

    def unbind(self, user_id: str, connection: Connection | None = None) -> bool:
        """
        Remove the binding for `user_id`. No-op if absent.

        When `connection` is given the binding is only removed if it still
        points at that connection. Returns True if a binding was removed.
        """
        with self._lock:
            binding = self._by_identity.get(user_id)
            if binding is None:
                return False
            if connection is not None and binding.connection is not connection:
                return False
            self._by_identity.pop(user_id, None)
            self._by_connection.pop(id(binding.connection), None)

        self.log.debug(
            "Unbound user=%s conn=%s", fmt_id(user_id), binding.connection.connection_id
        )
        return True

    def lookup(self, user_id: str) -> Connection | None:
        with self._lock:
            binding = self._by_identity.get(user_id)
        return binding.connection if binding is not None else None

    def find_identity(self, connection: Connection) -> str | None:
        with self._lock:
            return self._by_connection.get(id(connection))

    def bound_at(self, user_id: str) -> float | None:
        with self._lock:
            binding = self._by_identity.get(user_id)
        return binding.bound_at if binding is not None else None

    def identities(self) -> list[str]:
        with self._lock:
            return list(self._by_identity.keys())

    def for_each_connection(self, fn: Callable[[str, Connection], None]) -> None:
        """Call `fn(user_id, connection)` for every binding in a snapshot."""
        with self._lock:
            snapshot = [(b.user_id, b.connection) for b in self._by_identity.values()]
        for user_id, connection in snapshot:
            fn(user_id, connection)

    def clear_all(self) -> list[Connection]:
        with self._lock:
            connections = [b.connection for b in self._by_identity.values()]
            self._by_identity.clear()
            self._by_connection.clear()
        return connections

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_identity)
