from __future__ import annotations

import logging
from typing import Any

from .connection import Connection, deliver
from .constants import (
    F_CONTENT,
    F_DATA,
    F_IMAGE_URL,
    F_MESSAGE_TYPE,
    F_RECEIVER_ID,
    F_SENDER_ID,
    MAX_CONTENT_CHARS,
    MESSAGE_TYPES,
    MSG_IMAGE,
    MSG_TEXT,
    T_MESSAGE_SENT,
    T_NEW_MESSAGE,
)
from .errors import ValidationError
from .events import message_event
from .models import ChatMessage, NewMessage
from .registry import ConnectionRegistry
from .stats import StatsManager
from .store.base import ChatStore
from .util import fmt_id, normalize_identity


def validate_chat_payload(data: Any) -> NewMessage:
    """
    Check a raw chat payload and return it as a NewMessage.

    Raises ValidationError listing every violated field.
    """
    if not isinstance(data, dict):
        raise ValidationError([F_DATA])

    bad: list[str] = []

    sender_id = normalize_identity(data.get(F_SENDER_ID))
    if sender_id is None:
        bad.append(F_SENDER_ID)

    receiver_id = normalize_identity(data.get(F_RECEIVER_ID))
    if receiver_id is None:
        bad.append(F_RECEIVER_ID)

    content = data.get(F_CONTENT)
    if not isinstance(content, str) or not (1 <= len(content) <= MAX_CONTENT_CHARS):
        bad.append(F_CONTENT)

    message_type = data.get(F_MESSAGE_TYPE)
    if message_type is None:
        message_type = MSG_TEXT
    if message_type not in MESSAGE_TYPES:
        bad.append(F_MESSAGE_TYPE)

    image_url = data.get(F_IMAGE_URL)
    if image_url == "":
        image_url = None
    if image_url is not None and not isinstance(image_url, str):
        bad.append(F_IMAGE_URL)
    elif message_type == MSG_IMAGE and image_url is None:
        bad.append(F_IMAGE_URL)
    elif message_type == MSG_TEXT and image_url is not None:
        bad.append(F_IMAGE_URL)

    if bad:
        raise ValidationError(bad)

    return NewMessage(
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content,
        message_type=message_type,
        image_url=image_url,
    )


class MessageRouter:
    """
    Validates, persists and delivers chat messages.

    This class is responsible for:
    - Chat payload validation
    - Persisting each accepted message exactly once
    - Live delivery of `new_message` to a bound receiver
    - `message_sent` confirmation back to the sender's connection

    The store is the source of truth; live delivery is best-effort and an
    offline receiver picks the message up on its next conversation fetch.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: ChatStore,
        *,
        stats: StatsManager | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.stats = stats or StatsManager()
        self.log = logging.getLogger("rchatd.router")

    def route(self, payload: Any, reply_to: Connection | None = None) -> ChatMessage:
        """
        Route one inbound chat payload.

        Raises ValidationError (nothing persisted) or StoreUnavailable
        (nothing delivered). Returns the persisted message.
        """
        try:
            new = validate_chat_payload(payload)
        except ValidationError as e:
            self.stats.inc("messages_rejected")
            self.log.info("Rejected chat payload fields=%s", ",".join(e.fields))
            raise

        saved = self.store.create_message(new)
        self.stats.inc("messages_routed")

        receiver_conn = self.registry.lookup(saved.receiver_id)
        delivered = deliver(receiver_conn, message_event(T_NEW_MESSAGE, saved))
        if delivered:
            self.stats.inc("messages_delivered")

        confirmed = deliver(reply_to, message_event(T_MESSAGE_SENT, saved))

        self.log.debug(
            "Routed msg=%s from=%s to=%s type=%s chars=%s live=%s confirmed=%s",
            fmt_id(saved.id),
            fmt_id(saved.sender_id),
            fmt_id(saved.receiver_id),
            saved.message_type,
            len(saved.content),
            delivered,
            confirmed,
        )
        return saved
