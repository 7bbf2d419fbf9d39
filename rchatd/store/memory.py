from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import replace

from ..constants import DEFAULT_HISTORY_LIMIT
from ..errors import StoreUnavailable
from ..models import ChatListEntry, ChatMessage, NewMessage, PublicUser, User
from ..util import new_id, now_ms
from .base import ChatStore, check_new_user


class MemoryStore(ChatStore):
    """Process-local store. Messages are kept in insertion order."""

    def __init__(self, *, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._users: dict[str, User] = {}
        self._messages: list[ChatMessage] = []

    def get_user(self, user_id: str) -> User | None:
        with self._lock:
            return self._users.get(user_id)

    def get_user_by_username(self, username: str) -> User | None:
        with self._lock:
            for user in self._users.values():
                if user.username == username:
                    return user
        return None

    def create_user(
        self,
        username: str,
        password_hash: str,
        display_name: str,
        *,
        avatar: str | None = None,
        status: str = "",
    ) -> User:
        check_new_user(username, display_name)
        now = self._clock()
        with self._lock:
            if any(u.username == username for u in self._users.values()):
                raise ValueError(f"username already taken: {username}")
            user = User(
                id=new_id(),
                username=username,
                password_hash=password_hash,
                display_name=display_name,
                avatar=avatar,
                status=status,
                last_seen=now,
                created_at=now,
                updated_at=now,
            )
            self._users[user.id] = user
        return user

    def update_user_online_status(self, user_id: str, is_online: bool) -> None:
        now = self._clock()
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return
            self._users[user_id] = replace(
                user, is_online=bool(is_online), last_seen=now, updated_at=now
            )

    def update_user_profile(
        self,
        user_id: str,
        *,
        display_name: str | None = None,
        avatar: str | None = None,
        status: str | None = None,
    ) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            changes: dict[str, object] = {"updated_at": self._clock()}
            if display_name is not None:
                changes["display_name"] = display_name
            if avatar is not None:
                changes["avatar"] = avatar
            if status is not None:
                changes["status"] = status
            user = replace(user, **changes)
            self._users[user_id] = user
        return user

    def get_online_users(self) -> list[PublicUser]:
        with self._lock:
            return [u.public() for u in self._users.values() if u.is_online]

    def create_message(self, message: NewMessage) -> ChatMessage:
        saved = ChatMessage(
            id=new_id(),
            sender_id=message.sender_id,
            receiver_id=message.receiver_id,
            content=message.content,
            message_type=message.message_type,
            image_url=message.image_url,
            is_read=False,
            created_at=self._clock(),
        )
        with self._lock:
            missing = [
                uid for uid in (saved.sender_id, saved.receiver_id) if uid not in self._users
            ]
            if missing:
                raise StoreUnavailable(f"message rejected: unknown user {missing[0]}")
            self._messages.append(saved)
        return saved

    def _between(self, user_a: str, user_b: str) -> list[ChatMessage]:
        pair = {(user_a, user_b), (user_b, user_a)}
        # sorted() is stable, so equal timestamps keep insertion order.
        return sorted(
            (m for m in self._messages if (m.sender_id, m.receiver_id) in pair),
            key=lambda m: m.created_at,
        )

    def get_messages_between_users(
        self, user_a: str, user_b: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[ChatMessage]:
        with self._lock:
            return self._between(user_a, user_b)[: max(0, int(limit))]

    def mark_messages_as_read(self, sender_id: str, receiver_id: str) -> int:
        changed = 0
        with self._lock:
            for i, m in enumerate(self._messages):
                if m.sender_id == sender_id and m.receiver_id == receiver_id and not m.is_read:
                    self._messages[i] = m.mark_read()
                    changed += 1
        return changed

    def get_unread_message_count(self, user_id: str) -> int:
        with self._lock:
            return sum(
                1 for m in self._messages if m.receiver_id == user_id and not m.is_read
            )

    def get_user_chat_list(self, user_id: str) -> list[ChatListEntry]:
        with self._lock:
            peers: list[str] = []
            for m in self._messages:
                if m.sender_id == user_id:
                    peer = m.receiver_id
                elif m.receiver_id == user_id:
                    peer = m.sender_id
                else:
                    continue
                if peer != user_id and peer not in peers:
                    peers.append(peer)

            entries: list[ChatListEntry] = []
            for peer in peers:
                user = self._users.get(peer)
                if user is None:
                    continue
                history = self._between(user_id, peer)
                unread = sum(
                    1
                    for m in history
                    if m.sender_id == peer and m.receiver_id == user_id and not m.is_read
                )
                entries.append(
                    ChatListEntry(
                        user=user.public(),
                        last_message=history[-1] if history else None,
                        unread_count=unread,
                    )
                )

        entries.sort(
            key=lambda e: e.last_message.created_at if e.last_message else 0,
            reverse=True,
        )
        return entries
