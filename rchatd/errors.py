"""Error taxonomy for the chat hub core.

None of these are fatal: the connection worker that hits one logs it and
moves on to the next event.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for hub errors."""


class ValidationError(ChatError):
    """A chat payload failed validation; nothing was persisted or delivered."""

    def __init__(self, fields: list[str] | tuple[str, ...]) -> None:
        self.fields = sorted(set(fields))
        super().__init__("invalid fields: " + ", ".join(self.fields))


class StoreUnavailable(ChatError):
    """The durable store rejected or failed a read/write."""


class DeadTransport(ChatError):
    """A write targeted a connection that is closed or unwritable."""


class ProtocolError(ChatError):
    """An inbound event could not be decoded or has an unrecognized type."""
