"""SQLite-backed user and message persistence.

Schema:
    users:    id, username, password_hash, display_name, avatar, status,
              is_online, last_seen, created_at, updated_at
    messages: seq, id, sender_id, receiver_id, content, message_type,
              image_url, is_read, created_at

Timestamps are integer milliseconds. `seq` breaks created_at ties so two
messages stamped in the same millisecond keep their insertion order.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from ..constants import DEFAULT_HISTORY_LIMIT
from ..errors import StoreUnavailable
from ..models import ChatListEntry, ChatMessage, NewMessage, PublicUser, User
from ..util import new_id, now_ms
from .base import ChatStore, check_new_user

log = logging.getLogger("rchatd.store")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    display_name TEXT NOT NULL,
    avatar TEXT,
    status TEXT NOT NULL DEFAULT '',
    is_online INTEGER NOT NULL DEFAULT 0,
    last_seen INTEGER NOT NULL,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    sender_id TEXT NOT NULL REFERENCES users(id),
    receiver_id TEXT NOT NULL REFERENCES users(id),
    content TEXT NOT NULL,
    message_type TEXT NOT NULL DEFAULT 'text',
    image_url TEXT,
    is_read INTEGER NOT NULL DEFAULT 0,
    created_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_pair
    ON messages(sender_id, receiver_id, created_at);

CREATE INDEX IF NOT EXISTS idx_messages_unread
    ON messages(receiver_id, is_read);
"""

_USER_COLUMNS = (
    "id, username, password_hash, display_name, avatar, status, "
    "is_online, last_seen, created_at, updated_at"
)
_MESSAGE_COLUMNS = (
    "id, sender_id, receiver_id, content, message_type, image_url, is_read, created_at"
)


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        username=row["username"],
        password_hash=row["password_hash"],
        display_name=row["display_name"],
        avatar=row["avatar"],
        status=row["status"] or "",
        is_online=bool(row["is_online"]),
        last_seen=int(row["last_seen"]),
        created_at=int(row["created_at"]),
        updated_at=int(row["updated_at"]),
    )


def _row_to_message(row: sqlite3.Row) -> ChatMessage:
    return ChatMessage(
        id=row["id"],
        sender_id=row["sender_id"],
        receiver_id=row["receiver_id"],
        content=row["content"],
        message_type=row["message_type"],
        image_url=row["image_url"],
        is_read=bool(row["is_read"]),
        created_at=int(row["created_at"]),
    )


class SQLiteStore(ChatStore):
    """SQLite-backed store shared by all connection workers."""

    SCHEMA_VERSION = 1

    def __init__(
        self, db_path: str | Path, *, clock: Callable[[], int] = now_ms
    ) -> None:
        """Open (and create if needed) the database.

        Args:
            db_path: Path to the SQLite file, or ":memory:".
            clock: Millisecond timestamp source.
        """
        self.db_path = str(db_path)
        self._clock = clock
        self._lock = threading.Lock()

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._ensure_schema()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"cannot open {self.db_path}: {e}") from e

    def _ensure_schema(self) -> None:
        with self._conn:
            self._conn.executescript(_SCHEMA)
            row = self._conn.execute("SELECT version FROM schema_version").fetchone()
            if row is None:
                self._conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)",
                    (self.SCHEMA_VERSION,),
                )

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as e:
                log.warning("Store operation failed db=%s err=%s", self.db_path, e)
                raise StoreUnavailable(str(e)) from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # =========================================================================
    # USERS
    # =========================================================================

    def get_user(self, user_id: str) -> User | None:
        with self._tx() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        return _row_to_user(row) if row else None

    def get_user_by_username(self, username: str) -> User | None:
        with self._tx() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE username = ?", (username,)
            ).fetchone()
        return _row_to_user(row) if row else None

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
        try:
            with self._tx() as conn:
                conn.execute(
                    f"INSERT INTO users ({_USER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        user.id,
                        user.username,
                        user.password_hash,
                        user.display_name,
                        user.avatar,
                        user.status,
                        0,
                        user.last_seen,
                        user.created_at,
                        user.updated_at,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"username already taken: {username}") from e
        return user

    def update_user_online_status(self, user_id: str, is_online: bool) -> None:
        now = self._clock()
        with self._tx() as conn:
            conn.execute(
                "UPDATE users SET is_online = ?, last_seen = ?, updated_at = ? WHERE id = ?",
                (1 if is_online else 0, now, now, user_id),
            )

    def update_user_profile(
        self,
        user_id: str,
        *,
        display_name: str | None = None,
        avatar: str | None = None,
        status: str | None = None,
    ) -> User | None:
        sets = ["updated_at = ?"]
        params: list[object] = [self._clock()]
        for column, value in (
            ("display_name", display_name),
            ("avatar", avatar),
            ("status", status),
        ):
            if value is not None:
                sets.append(f"{column} = ?")
                params.append(value)
        params.append(user_id)

        with self._tx() as conn:
            conn.execute(f"UPDATE users SET {', '.join(sets)} WHERE id = ?", params)
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        return _row_to_user(row) if row else None

    def get_online_users(self) -> list[PublicUser]:
        with self._tx() as conn:
            rows = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE is_online = 1 ORDER BY username"
            ).fetchall()
        return [_row_to_user(r).public() for r in rows]

    # =========================================================================
    # MESSAGES
    # =========================================================================

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
        try:
            with self._tx() as conn:
                conn.execute(
                    f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        saved.id,
                        saved.sender_id,
                        saved.receiver_id,
                        saved.content,
                        saved.message_type,
                        saved.image_url,
                        0,
                        saved.created_at,
                    ),
                )
        except sqlite3.IntegrityError as e:
            # Unknown sender/receiver (foreign key).
            raise StoreUnavailable(f"message rejected: {e}") from e
        return saved

    def get_messages_between_users(
        self, user_a: str, user_b: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[ChatMessage]:
        with self._tx() as conn:
            rows = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE (sender_id = ? AND receiver_id = ?)
                   OR (sender_id = ? AND receiver_id = ?)
                ORDER BY created_at ASC, seq ASC
                LIMIT ?
                """,
                (user_a, user_b, user_b, user_a, max(0, int(limit))),
            ).fetchall()
        return [_row_to_message(r) for r in rows]

    def mark_messages_as_read(self, sender_id: str, receiver_id: str) -> int:
        with self._tx() as conn:
            cur = conn.execute(
                """
                UPDATE messages SET is_read = 1
                WHERE sender_id = ? AND receiver_id = ? AND is_read = 0
                """,
                (sender_id, receiver_id),
            )
        return cur.rowcount

    def get_unread_message_count(self, user_id: str) -> int:
        with self._tx() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM messages WHERE receiver_id = ? AND is_read = 0",
                (user_id,),
            ).fetchone()
        return int(row[0])

    def get_user_chat_list(self, user_id: str) -> list[ChatListEntry]:
        with self._tx() as conn:
            peer_rows = conn.execute(
                f"""
                SELECT {_USER_COLUMNS} FROM users
                WHERE id != ? AND id IN (
                    SELECT receiver_id FROM messages WHERE sender_id = ?
                    UNION
                    SELECT sender_id FROM messages WHERE receiver_id = ?
                )
                """,
                (user_id, user_id, user_id),
            ).fetchall()

            entries: list[ChatListEntry] = []
            for peer_row in peer_rows:
                peer = _row_to_user(peer_row)
                last = conn.execute(
                    f"""
                    SELECT {_MESSAGE_COLUMNS} FROM messages
                    WHERE (sender_id = ? AND receiver_id = ?)
                       OR (sender_id = ? AND receiver_id = ?)
                    ORDER BY created_at DESC, seq DESC
                    LIMIT 1
                    """,
                    (user_id, peer.id, peer.id, user_id),
                ).fetchone()
                unread = conn.execute(
                    """
                    SELECT COUNT(*) FROM messages
                    WHERE sender_id = ? AND receiver_id = ? AND is_read = 0
                    """,
                    (peer.id, user_id),
                ).fetchone()
                entries.append(
                    ChatListEntry(
                        user=peer.public(),
                        last_message=_row_to_message(last) if last else None,
                        unread_count=int(unread[0]),
                    )
                )

        entries.sort(
            key=lambda e: e.last_message.created_at if e.last_message else 0,
            reverse=True,
        )
        return entries
