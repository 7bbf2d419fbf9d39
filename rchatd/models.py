"""Domain records shared by the hub components and the stores."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from .constants import MSG_TEXT


@dataclass(frozen=True)
class User:
    id: str
    username: str
    password_hash: str
    display_name: str
    avatar: str | None = None
    status: str = ""
    is_online: bool = False
    last_seen: int = 0
    created_at: int = 0
    updated_at: int = 0

    def public(self) -> PublicUser:
        return PublicUser(
            id=self.id,
            username=self.username,
            display_name=self.display_name,
            avatar=self.avatar,
            status=self.status,
            is_online=self.is_online,
            last_seen=self.last_seen,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


@dataclass(frozen=True)
class PublicUser:
    """A user as other users may see it (no credential material)."""

    id: str
    username: str
    display_name: str
    avatar: str | None = None
    status: str = ""
    is_online: bool = False
    last_seen: int = 0
    created_at: int = 0
    updated_at: int = 0

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "displayName": self.display_name,
            "avatar": self.avatar,
            "status": self.status,
            "isOnline": self.is_online,
            "lastSeen": self.last_seen,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class NewMessage:
    """A validated chat payload that has not been persisted yet."""

    sender_id: str
    receiver_id: str
    content: str
    message_type: str = MSG_TEXT
    image_url: str | None = None


@dataclass(frozen=True)
class ChatMessage:
    id: str
    sender_id: str
    receiver_id: str
    content: str
    message_type: str
    image_url: str | None
    is_read: bool
    created_at: int

    def mark_read(self) -> ChatMessage:
        return self if self.is_read else replace(self, is_read=True)

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "senderId": self.sender_id,
            "receiverId": self.receiver_id,
            "content": self.content,
            "messageType": self.message_type,
            "imageUrl": self.image_url,
            "isRead": self.is_read,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class ChatListEntry:
    user: PublicUser
    last_message: ChatMessage | None
    unread_count: int

    def to_wire(self) -> dict[str, Any]:
        return {
            "user": self.user.to_wire(),
            "lastMessage": self.last_message.to_wire() if self.last_message else None,
            "unreadCount": self.unread_count,
        }


@dataclass(frozen=True)
class PresenceEvent:
    """A presence transition ready to be fanned out."""

    kind: str
    user_id: str
    timestamp: int
    is_online: bool
