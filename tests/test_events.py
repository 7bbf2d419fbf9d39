import pytest

from rchatd.codec import encode
from rchatd.errors import ProtocolError
from rchatd.events import (
    AuthEvent,
    ChatMessageEvent,
    TypingEvent,
    UpdateLastSeenEvent,
    decode_event,
    message_event,
    parse_event,
    presence_event,
)
from rchatd.models import ChatMessage, PresenceEvent


def test_parse_auth() -> None:
    assert parse_event({"type": "auth", "userId": "u-1"}) == AuthEvent(user_id="u-1")


def test_parse_chat_message_keeps_raw_data() -> None:
    data = {"senderId": "a", "receiverId": "b", "content": "hi"}
    assert decode_event(encode({"type": "chat_message", "data": data})) == ChatMessageEvent(
        data=data
    )


def test_parse_typing() -> None:
    ev = parse_event(
        {"type": "typing", "senderId": "a", "receiverId": "b", "isTyping": True}
    )
    assert ev == TypingEvent(sender_id="a", receiver_id="b", is_typing=True)


def test_parse_update_last_seen() -> None:
    ev = parse_event({"type": "update_last_seen", "userId": "a"})
    assert ev == UpdateLastSeenEvent(user_id="a")


def test_rejects_unknown_type() -> None:
    with pytest.raises(ProtocolError):
        parse_event({"type": "join", "room": "#general"})


def test_rejects_missing_type() -> None:
    with pytest.raises(ProtocolError):
        parse_event({"userId": "a"})


def test_rejects_auth_without_valid_user_id() -> None:
    for bad in (None, "", "  a", "a b", 42):
        with pytest.raises(ProtocolError):
            parse_event({"type": "auth", "userId": bad})


def test_rejects_typing_with_non_bool_flag() -> None:
    with pytest.raises(ProtocolError):
        parse_event({"type": "typing", "senderId": "a", "receiverId": "b", "isTyping": 1})


def test_message_event_carries_wire_message() -> None:
    msg = ChatMessage(
        id="m-1",
        sender_id="a",
        receiver_id="b",
        content="hi",
        message_type="text",
        image_url=None,
        is_read=False,
        created_at=5,
    )
    env = message_event("new_message", msg)
    assert env["type"] == "new_message"
    assert env["message"]["senderId"] == "a"
    assert env["message"]["isRead"] is False

    with pytest.raises(ValueError):
        message_event("typing", msg)


def test_presence_event_shapes() -> None:
    online = presence_event(PresenceEvent("user_online", "a", 10, True))
    assert online == {"type": "user_online", "userId": "a"}

    status = presence_event(PresenceEvent("user_status_update", "a", 10, True))
    assert status == {
        "type": "user_status_update",
        "userId": "a",
        "lastSeen": 10,
        "isOnline": True,
    }
