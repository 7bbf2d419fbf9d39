from conftest import FakeConnection

from rchatd.registry import ConnectionRegistry
from rchatd.typing_relay import TypingRelay


def test_relay_forwards_start_then_stop_in_order() -> None:
    registry = ConnectionRegistry()
    receiver = FakeConnection("bob")
    registry.bind("bob", receiver)
    relay = TypingRelay(registry)

    assert relay.relay("alice", "bob", True) is True
    assert relay.relay("alice", "bob", False) is True

    assert receiver.sent == [
        {"type": "typing", "senderId": "alice", "isTyping": True},
        {"type": "typing", "senderId": "alice", "isTyping": False},
    ]
    assert relay.stats.get("typing_relayed") == 2


def test_relay_to_offline_receiver_sends_nothing() -> None:
    registry = ConnectionRegistry()
    bystander = FakeConnection("carol")
    registry.bind("carol", bystander)
    relay = TypingRelay(registry)

    assert relay.relay("alice", "bob", True) is False
    assert bystander.sent == []
    assert relay.stats.get("typing_dropped") == 1


def test_relay_to_dead_receiver_is_dropped() -> None:
    registry = ConnectionRegistry()
    receiver = FakeConnection("bob")
    receiver.alive = False
    registry.bind("bob", receiver)

    assert TypingRelay(registry).relay("alice", "bob", True) is False
    assert receiver.sent == []
