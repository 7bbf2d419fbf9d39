import pytest

from rchatd.errors import StoreUnavailable
from rchatd.models import NewMessage
from rchatd.store import MemoryStore, SQLiteStore, open_store


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path, clock):
    if request.param == "memory":
        s = MemoryStore(clock=clock)
    else:
        s = SQLiteStore(tmp_path / "chat.db", clock=clock)
    yield s
    s.close()


@pytest.fixture
def people(any_store):
    return (
        any_store.create_user("alice", "h", "Alice"),
        any_store.create_user("bob", "h", "Bob"),
        any_store.create_user("carol", "h", "Carol"),
    )


def _send(store, sender, receiver, content):
    return store.create_message(NewMessage(sender.id, receiver.id, content))


def test_user_lookup(any_store, people) -> None:
    alice = people[0]
    assert any_store.get_user(alice.id) == alice
    assert any_store.get_user_by_username("alice") == alice
    assert any_store.get_user("missing") is None
    assert any_store.get_user_by_username("missing") is None


def test_duplicate_username_is_rejected(any_store, people) -> None:
    with pytest.raises(ValueError):
        any_store.create_user("alice", "h2", "Other Alice")


def test_online_status_and_online_users(any_store, people) -> None:
    alice, bob, _ = people
    any_store.update_user_online_status(alice.id, True)
    any_store.update_user_online_status(bob.id, True)
    any_store.update_user_online_status(bob.id, False)

    assert [u.id for u in any_store.get_online_users()] == [alice.id]
    assert any_store.get_user(alice.id).last_seen > alice.last_seen

    # Unknown users are ignored.
    any_store.update_user_online_status("missing", True)


def test_update_profile(any_store, people) -> None:
    alice = people[0]
    updated = any_store.update_user_profile(alice.id, status="busy")
    assert updated.status == "busy"
    assert updated.display_name == "Alice"
    assert any_store.get_user(alice.id).status == "busy"
    assert any_store.update_user_profile("missing", status="x") is None


def test_history_is_ascending_regardless_of_argument_order(any_store, people) -> None:
    alice, bob, carol = people
    m1 = _send(any_store, alice, bob, "one")
    m2 = _send(any_store, bob, alice, "two")
    _send(any_store, alice, carol, "elsewhere")
    m3 = _send(any_store, alice, bob, "three")

    expected = [m1, m2, m3]
    assert any_store.get_messages_between_users(alice.id, bob.id) == expected
    assert any_store.get_messages_between_users(bob.id, alice.id) == expected


def test_history_limit_takes_oldest(any_store, people) -> None:
    alice, bob, _ = people
    sent = [_send(any_store, alice, bob, str(i)) for i in range(5)]
    assert any_store.get_messages_between_users(alice.id, bob.id, limit=3) == sent[:3]


def test_mark_read_is_directional_and_idempotent(any_store, people) -> None:
    alice, bob, _ = people
    _send(any_store, alice, bob, "a1")
    _send(any_store, alice, bob, "a2")
    _send(any_store, bob, alice, "b1")

    assert any_store.get_unread_message_count(bob.id) == 2
    assert any_store.mark_messages_as_read(alice.id, bob.id) == 2
    assert any_store.mark_messages_as_read(alice.id, bob.id) == 0
    assert any_store.get_unread_message_count(bob.id) == 0
    assert any_store.get_unread_message_count(alice.id) == 1


def test_chat_list_sorted_by_latest_message(any_store, people) -> None:
    alice, bob, carol = people
    _send(any_store, bob, alice, "from bob")
    _send(any_store, carol, alice, "from carol 1")
    last = _send(any_store, carol, alice, "from carol 2")

    entries = any_store.get_user_chat_list(alice.id)
    assert [e.user.id for e in entries] == [carol.id, bob.id]
    assert entries[0].last_message == last
    assert entries[0].unread_count == 2
    assert entries[1].unread_count == 1
    assert entries[0].to_wire()["user"]["username"] == "carol"


def test_chat_list_empty_without_messages(any_store, people) -> None:
    assert any_store.get_user_chat_list(people[0].id) == []


def test_sqlite_persists_across_reopen(tmp_path, clock) -> None:
    path = tmp_path / "chat.db"
    first = SQLiteStore(path, clock=clock)
    alice = first.create_user("alice", "h", "Alice")
    bob = first.create_user("bob", "h", "Bob")
    msg = first.create_message(NewMessage(alice.id, bob.id, "persisted"))
    first.close()

    second = SQLiteStore(path, clock=clock)
    assert second.get_messages_between_users(alice.id, bob.id) == [msg]
    second.close()


def test_message_for_unknown_user_is_rejected(any_store, people) -> None:
    alice = people[0]
    with pytest.raises(StoreUnavailable):
        any_store.create_message(NewMessage(alice.id, "ghost", "hello?"))
    with pytest.raises(StoreUnavailable):
        any_store.create_message(NewMessage("ghost", alice.id, "hello?"))
    assert any_store.get_messages_between_users(alice.id, "ghost") == []
    assert any_store.get_user_chat_list(alice.id) == []


def test_new_user_limits(any_store) -> None:
    assert any_store.create_user("u" * 50, "h", "d" * 100).username == "u" * 50
    for username, display_name in (
        ("u" * 51, "ok"),
        ("", "ok"),
        ("two words", "ok"),
        ("fine", ""),
        ("fine", "d" * 101),
    ):
        with pytest.raises(ValueError):
            any_store.create_user(username, "h", display_name)
    assert any_store.get_user_by_username("fine") is None


def test_open_store(tmp_path) -> None:
    assert isinstance(open_store("memory", None), MemoryStore)
    sqlite = open_store("sqlite", str(tmp_path / "x.db"))
    assert isinstance(sqlite, SQLiteStore)
    sqlite.close()
    with pytest.raises(ValueError):
        open_store("postgres", None)
