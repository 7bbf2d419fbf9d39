import pytest
from conftest import FakeConnection

from rchatd.errors import StoreUnavailable, ValidationError
from rchatd.registry import ConnectionRegistry
from rchatd.router import MessageRouter, validate_chat_payload
from rchatd.store import MemoryStore


def _payload(sender_id="alice", receiver_id="bob", **overrides) -> dict:
    data = {
        "senderId": sender_id,
        "receiverId": receiver_id,
        "content": "hi",
        "messageType": "text",
    }
    data.update(overrides)
    return data


@pytest.fixture
def router(store) -> MessageRouter:
    return MessageRouter(ConnectionRegistry(), store)


@pytest.fixture
def pair(users):
    alice, bob, _ = users
    return alice.id, bob.id


def test_validate_defaults_message_type_to_text() -> None:
    data = _payload()
    data.pop("messageType")
    assert validate_chat_payload(data).message_type == "text"


def test_validate_content_length_bounds() -> None:
    assert validate_chat_payload(_payload(content="x" * 1000)).content == "x" * 1000

    for content in ("", "x" * 1001, None, 7):
        with pytest.raises(ValidationError) as exc:
            validate_chat_payload(_payload(content=content))
        assert exc.value.fields == ["content"]


def test_validate_image_url_required_iff_image() -> None:
    img = validate_chat_payload(_payload(messageType="image", imageUrl="data:image/png;base64,AA"))
    assert img.image_url == "data:image/png;base64,AA"

    with pytest.raises(ValidationError) as exc:
        validate_chat_payload(_payload(messageType="image"))
    assert exc.value.fields == ["imageUrl"]

    with pytest.raises(ValidationError) as exc:
        validate_chat_payload(_payload(imageUrl="data:image/png;base64,AA"))
    assert exc.value.fields == ["imageUrl"]


def test_validate_reports_every_bad_field() -> None:
    with pytest.raises(ValidationError) as exc:
        validate_chat_payload(
            {"senderId": "", "receiverId": "b c", "content": "", "messageType": "video"}
        )
    assert exc.value.fields == ["content", "messageType", "receiverId", "senderId"]


def test_validate_rejects_non_map() -> None:
    with pytest.raises(ValidationError) as exc:
        validate_chat_payload("hi")
    assert exc.value.fields == ["data"]


def test_route_persists_once_and_confirms(router, store, pair) -> None:
    sender = FakeConnection("alice")
    saved = router.route(_payload(*pair), reply_to=sender)

    assert saved.is_read is False
    assert saved.created_at > 0
    assert store.get_messages_between_users(*pair) == [saved]

    sent = sender.events("message_sent")
    assert len(sent) == 1
    assert sent[0]["message"] == saved.to_wire()


def test_route_delivers_identical_message_to_live_receiver(router, pair) -> None:
    receiver = FakeConnection("bob")
    router.registry.bind(pair[1], receiver)
    sender = FakeConnection("alice")

    saved = router.route(_payload(*pair), reply_to=sender)

    new = receiver.events("new_message")
    assert len(new) == 1
    assert new[0]["message"] == saved.to_wire()
    assert sender.events("message_sent")[0]["message"] == new[0]["message"]


def test_route_offline_receiver_skips_delivery(router, store, pair) -> None:
    sender = FakeConnection("alice")
    saved = router.route(_payload(*pair), reply_to=sender)

    assert len(sender.events("message_sent")) == 1
    assert sender.events("new_message") == []
    assert store.get_messages_between_users(pair[1], pair[0]) == [saved]


def test_route_dead_receiver_is_treated_as_offline(router, pair) -> None:
    receiver = FakeConnection("bob")
    receiver.alive = False
    router.registry.bind(pair[1], receiver)
    sender = FakeConnection("alice")

    router.route(_payload(*pair), reply_to=sender)

    assert receiver.sent == []
    assert len(sender.events("message_sent")) == 1


def test_route_failing_receiver_send_does_not_block_confirmation(router, pair) -> None:
    receiver = FakeConnection("bob")
    receiver.fail_sends = True
    router.registry.bind(pair[1], receiver)
    sender = FakeConnection("alice")

    router.route(_payload(*pair), reply_to=sender)
    assert len(sender.events("message_sent")) == 1


def test_route_invalid_payload_persists_nothing(router, store, pair) -> None:
    sender = FakeConnection("alice")
    with pytest.raises(ValidationError):
        router.route(_payload(*pair, content=""), reply_to=sender)

    assert store.get_messages_between_users(*pair) == []
    assert sender.sent == []
    assert router.stats.get("messages_rejected") == 1


def test_route_to_unknown_receiver_delivers_nothing(router, store, pair) -> None:
    ghost = FakeConnection("ghost")
    router.registry.bind("ghost", ghost)
    sender = FakeConnection("alice")

    with pytest.raises(StoreUnavailable):
        router.route(_payload(pair[0], "ghost"), reply_to=sender)
    assert ghost.sent == []
    assert sender.sent == []
    assert store.get_messages_between_users(pair[0], "ghost") == []


def test_route_store_failure_delivers_nothing() -> None:
    class BrokenStore(MemoryStore):
        def create_message(self, message):
            raise StoreUnavailable("disk full")

    router = MessageRouter(ConnectionRegistry(), BrokenStore())
    receiver = FakeConnection("bob")
    router.registry.bind("bob", receiver)
    sender = FakeConnection("alice")

    with pytest.raises(StoreUnavailable):
        router.route(_payload(), reply_to=sender)
    assert receiver.sent == []
    assert sender.sent == []
