"""The transport-facing connection interface used by the hub core."""

from __future__ import annotations

import logging
from typing import Protocol

from .errors import DeadTransport
from .events import encode_event

log = logging.getLogger("rchatd.connection")


class Connection(Protocol):
    """A live, bidirectional transport to a single client."""

    connection_id: str

    def is_alive(self) -> bool: ...

    def send(self, payload: bytes) -> None:
        """Write one encoded event. Raises DeadTransport if unwritable."""
        ...

    def close(self) -> None: ...


def deliver(conn: Connection | None, env: dict, *, payload: bytes | None = None) -> bool:
    """
    Best-effort write of one event to one connection.

    Returns True if the write was handed to the transport. A missing
    connection, a failed liveness check or a send failure all return False;
    callers treat those the same as "recipient offline".
    """
    if conn is None:
        return False

    if not conn.is_alive():
        log.debug("Skipping dead transport conn=%s", conn.connection_id)
        return False

    if payload is None:
        payload = encode_event(env)

    try:
        conn.send(payload)
    except DeadTransport:
        log.debug("Transport died during send conn=%s", conn.connection_id)
        return False
    except OSError as e:
        log.warning(
            "Send failed conn=%s bytes=%s err=%s",
            conn.connection_id,
            len(payload),
            e,
        )
        return False
    except Exception:
        log.debug(
            "Send failed conn=%s bytes=%s",
            conn.connection_id,
            len(payload),
            exc_info=True,
        )
        return False
    return True
