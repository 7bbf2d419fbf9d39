"""Inbound event decoding and outbound event construction.

Inbound payloads are decoded once, at the transport boundary, into one of the
event classes below. Everything past this module dispatches on the class, not
on strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from .codec import decode_map, encode
from .constants import (
    F_DATA,
    F_IS_ONLINE,
    F_IS_TYPING,
    F_LAST_SEEN,
    F_MESSAGE,
    F_RECEIVER_ID,
    F_SENDER_ID,
    F_USER_ID,
    K_TYPE,
    T_AUTH,
    T_CHAT_MESSAGE,
    T_MESSAGE_SENT,
    T_NEW_MESSAGE,
    T_TYPING,
    T_UPDATE_LAST_SEEN,
    T_USER_STATUS_UPDATE,
)
from .errors import ProtocolError
from .models import ChatMessage, PresenceEvent
from .util import normalize_identity


@dataclass(frozen=True)
class AuthEvent:
    user_id: str


@dataclass(frozen=True)
class ChatMessageEvent:
    # Left raw; the message router owns chat payload validation.
    data: Any


@dataclass(frozen=True)
class TypingEvent:
    sender_id: str
    receiver_id: str
    is_typing: bool


@dataclass(frozen=True)
class UpdateLastSeenEvent:
    user_id: str


InboundEvent = Union[AuthEvent, ChatMessageEvent, TypingEvent, UpdateLastSeenEvent]


def _require_identity(env: dict, key: str) -> str:
    ident = normalize_identity(env.get(key))
    if ident is None:
        raise ProtocolError(f"{env.get(K_TYPE)} requires a valid {key}")
    return ident


def parse_event(env: dict) -> InboundEvent:
    t = env.get(K_TYPE)
    if not isinstance(t, str):
        raise ProtocolError("event type must be a string")

    if t == T_AUTH:
        return AuthEvent(user_id=_require_identity(env, F_USER_ID))

    if t == T_CHAT_MESSAGE:
        return ChatMessageEvent(data=env.get(F_DATA))

    if t == T_TYPING:
        is_typing = env.get(F_IS_TYPING)
        if not isinstance(is_typing, bool):
            raise ProtocolError("typing requires a boolean isTyping")
        return TypingEvent(
            sender_id=_require_identity(env, F_SENDER_ID),
            receiver_id=_require_identity(env, F_RECEIVER_ID),
            is_typing=is_typing,
        )

    if t == T_UPDATE_LAST_SEEN:
        return UpdateLastSeenEvent(user_id=_require_identity(env, F_USER_ID))

    raise ProtocolError(f"unrecognized event type {t!r}")


def decode_event(data: bytes) -> InboundEvent:
    return parse_event(decode_map(data))


def message_event(kind: str, message: ChatMessage) -> dict:
    if kind not in (T_NEW_MESSAGE, T_MESSAGE_SENT):
        raise ValueError(f"not a message event kind: {kind}")
    return {K_TYPE: kind, F_MESSAGE: message.to_wire()}


def typing_event(sender_id: str, is_typing: bool) -> dict:
    return {K_TYPE: T_TYPING, F_SENDER_ID: sender_id, F_IS_TYPING: bool(is_typing)}


def presence_event(event: PresenceEvent) -> dict:
    env: dict[str, Any] = {K_TYPE: event.kind, F_USER_ID: event.user_id}
    if event.kind == T_USER_STATUS_UPDATE:
        env[F_LAST_SEEN] = event.timestamp
        env[F_IS_ONLINE] = event.is_online
    return env


def encode_event(env: dict) -> bytes:
    return encode(env)
