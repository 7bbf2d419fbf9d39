"""Read-side queries served to authenticated clients.

These cover what clients fetch outside the live event stream: their own
profile, who is online, the conversation list and conversation history.
Fetching a conversation is also what marks the peer's messages as read.
"""

from __future__ import annotations

import logging
from typing import Any

from .constants import (
    DEFAULT_HISTORY_LIMIT,
    F_USER_ID,
    MAX_DISPLAY_NAME_CHARS,
    MAX_STATUS_CHARS,
)
from .errors import ValidationError
from .store.base import ChatStore
from .util import fmt_id, normalize_identity


class ConversationQueries:
    def __init__(self, store: ChatStore, *, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self.store = store
        self.history_limit = max(1, int(history_limit))
        self.log = logging.getLogger("rchatd.queries")

    def me(self, user_id: str) -> dict[str, Any] | None:
        user = self.store.get_user(user_id)
        return user.public().to_wire() if user is not None else None

    def online_users(self) -> list[dict[str, Any]]:
        return [u.to_wire() for u in self.store.get_online_users()]

    def update_profile(self, user_id: str, data: Any) -> dict[str, Any] | None:
        if not isinstance(data, dict):
            raise ValidationError(["data"])

        bad: list[str] = []
        display_name = data.get("displayName")
        if display_name is not None and (
            not isinstance(display_name, str)
            or not (1 <= len(display_name) <= MAX_DISPLAY_NAME_CHARS)
        ):
            bad.append("displayName")

        status = data.get("status")
        if status is not None and (
            not isinstance(status, str) or len(status) > MAX_STATUS_CHARS
        ):
            bad.append("status")

        avatar = data.get("avatar")
        if avatar is not None and not isinstance(avatar, str):
            bad.append("avatar")

        if bad:
            raise ValidationError(bad)

        user = self.store.update_user_profile(
            user_id, display_name=display_name, avatar=avatar, status=status
        )
        return user.public().to_wire() if user is not None else None

    def conversations(self, user_id: str) -> list[dict[str, Any]]:
        return [entry.to_wire() for entry in self.store.get_user_chat_list(user_id)]

    def messages(self, viewer_id: str, data: Any) -> list[dict[str, Any]]:
        """
        Conversation history between the viewer and a peer, oldest first.

        Marks the peer's messages to the viewer as read after the snapshot is
        taken, so the returned rows may still show is_read=False.
        """
        if not isinstance(data, dict):
            raise ValidationError(["data"])
        peer_id = normalize_identity(data.get(F_USER_ID))
        if peer_id is None:
            raise ValidationError([F_USER_ID])

        limit = data.get("limit", self.history_limit)
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError(["limit"])
        limit = min(limit, self.history_limit)

        history = self.store.get_messages_between_users(viewer_id, peer_id, limit)
        marked = self.store.mark_messages_as_read(peer_id, viewer_id)
        if marked:
            self.log.debug(
                "Marked read count=%s from=%s to=%s", marked, fmt_id(peer_id), fmt_id(viewer_id)
            )
        return [m.to_wire() for m in history]
