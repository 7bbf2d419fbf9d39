"""The durable store contract consumed by the hub core."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..constants import DEFAULT_HISTORY_LIMIT, MAX_DISPLAY_NAME_CHARS, MAX_USERNAME_CHARS
from ..models import ChatListEntry, ChatMessage, NewMessage, PublicUser, User


def check_new_user(username: str, display_name: str) -> None:
    """Raise ValueError unless the username and display name fit the schema."""
    if not isinstance(username, str) or not (1 <= len(username) <= MAX_USERNAME_CHARS):
        raise ValueError(f"username must be 1..{MAX_USERNAME_CHARS} characters")
    if any(c.isspace() for c in username):
        raise ValueError("username must not contain whitespace")
    if not isinstance(display_name, str) or not (
        1 <= len(display_name) <= MAX_DISPLAY_NAME_CHARS
    ):
        raise ValueError(f"display name must be 1..{MAX_DISPLAY_NAME_CHARS} characters")


class ChatStore(ABC):
    """
    CRUD-style persistence for users and messages.

    Implementations raise StoreUnavailable for backend failures and must be
    safe to call from several connection worker threads at once.
    """

    # Users

    @abstractmethod
    def get_user(self, user_id: str) -> User | None: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> User | None: ...

    @abstractmethod
    def create_user(
        self,
        username: str,
        password_hash: str,
        display_name: str,
        *,
        avatar: str | None = None,
        status: str = "",
    ) -> User:
        """Insert a user.

        Raises ValueError if the username is taken or breaks `check_new_user`.
        """

    @abstractmethod
    def update_user_online_status(self, user_id: str, is_online: bool) -> None:
        """Set is_online and stamp last_seen/updated_at. No-op for unknown ids."""

    @abstractmethod
    def update_user_profile(
        self,
        user_id: str,
        *,
        display_name: str | None = None,
        avatar: str | None = None,
        status: str | None = None,
    ) -> User | None:
        """Update the given profile fields; None leaves a field unchanged."""

    @abstractmethod
    def get_online_users(self) -> list[PublicUser]: ...

    # Messages

    @abstractmethod
    def create_message(self, message: NewMessage) -> ChatMessage:
        """Persist a message, assigning id, created_at and is_read=False.

        Raises StoreUnavailable if the sender or receiver is not a known user.
        """

    @abstractmethod
    def get_messages_between_users(
        self, user_a: str, user_b: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[ChatMessage]:
        """Messages in either direction, oldest first."""

    @abstractmethod
    def mark_messages_as_read(self, sender_id: str, receiver_id: str) -> int:
        """Mark sender->receiver messages read. Returns how many changed."""

    @abstractmethod
    def get_unread_message_count(self, user_id: str) -> int: ...

    @abstractmethod
    def get_user_chat_list(self, user_id: str) -> list[ChatListEntry]:
        """Peers with their last message and unread count, newest first."""

    def close(self) -> None:
        pass
