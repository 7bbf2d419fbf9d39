from __future__ import annotations

import itertools

import pytest

from rchatd.codec import decode, encode
from rchatd.config import HubRuntimeConfig
from rchatd.core import ChatCore
from rchatd.store import MemoryStore


class FakeConnection:
    """In-memory stand-in for a transport connection."""

    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        self.alive = True
        self.closed = False
        self.fail_sends = False
        self.sent: list[dict] = []

    def is_alive(self) -> bool:
        return self.alive

    def send(self, payload: bytes) -> None:
        if self.fail_sends:
            raise OSError("link send failed")
        self.sent.append(decode(payload))

    def close(self) -> None:
        self.alive = False
        self.closed = True

    def events(self, kind: str) -> list[dict]:
        return [e for e in self.sent if e.get("type") == kind]


def auth(user_id: str) -> bytes:
    return encode({"type": "auth", "userId": user_id})


def chat(sender_id: str, receiver_id: str, content: str, **extra) -> bytes:
    data = {"senderId": sender_id, "receiverId": receiver_id, "content": content, **extra}
    return encode({"type": "chat_message", "data": data})


@pytest.fixture
def clock():
    counter = itertools.count(1_700_000_000_000)
    return lambda: next(counter)


@pytest.fixture
def store(clock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
def users(store):
    alice = store.create_user("alice", "hash-a", "Alice")
    bob = store.create_user("bob", "hash-b", "Bob")
    carol = store.create_user("carol", "hash-c", "Carol")
    return alice, bob, carol


@pytest.fixture
def core(store) -> ChatCore:
    return ChatCore(store, HubRuntimeConfig(store_backend="memory"))
