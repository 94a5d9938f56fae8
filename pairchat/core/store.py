"""
ChatStore - SQLite-backed durable store for conversations and messages
-----------------------------------------------------------------------

Tables:
1. conversations → one row per unordered participant pair. `pair_key` is UNIQUE,
   which is what makes concurrent first contact between two users safe.
2. messages      → append-only log, read back ordered by (created_at, seq).

Timestamps are stored as integer microseconds since the Unix epoch (UTC) so that
ordering and round-tripping are exact.

The connection runs in autocommit mode: every statement is its own transaction,
so a failed insert never drags another task's pending write down with it.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import aiosqlite

from .errors import DuplicateConversation, StorageFailure
from .models import Conversation, Message

log = logging.getLogger("pairchat.store")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations(
    conversation_id TEXT PRIMARY KEY,
    participant_a   TEXT NOT NULL,
    participant_b   TEXT NOT NULL,
    pair_key        TEXT NOT NULL UNIQUE,
    created_at      INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_conversations_a ON conversations(participant_a);
CREATE INDEX IF NOT EXISTS idx_conversations_b ON conversations(participant_b);

CREATE TABLE IF NOT EXISTS messages(
    seq               INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id        TEXT NOT NULL UNIQUE,
    conversation_id   TEXT NOT NULL,
    sender_username   TEXT NOT NULL,
    receiver_username TEXT NOT NULL,
    message           TEXT NOT NULL,
    whosend           TEXT NOT NULL,
    created_at        INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, created_at, seq);
"""


def to_micros(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - EPOCH) // timedelta(microseconds=1)


def from_micros(value: int) -> datetime:
    return EPOCH + timedelta(microseconds=value)


class ChatStore:
    """Async persistent store. Call open() before use and close() on shutdown."""

    def __init__(self, path: str = "pairchat.db") -> None:
        self.path = path
        self._db: Optional[aiosqlite.Connection] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        if self._db is not None:
            return
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._db = await aiosqlite.connect(self.path, isolation_level=None)
            await self._db.executescript(SCHEMA)
        except sqlite3.Error as exc:
            raise StorageFailure(f"could not open store at {self.path}") from exc
        log.info("Opened chat store at %s", self.path)

    async def close(self) -> None:
        if self._db is None:
            return
        db, self._db = self._db, None
        await db.close()

    @property
    def is_open(self) -> bool:
        return self._db is not None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageFailure("store is not open")
        return self._db

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def find_conversation_by_pair(self, pair_key: str) -> Optional[Conversation]:
        db = self._conn()
        try:
            async with db.execute(
                "SELECT conversation_id, participant_a, participant_b, created_at "
                "FROM conversations WHERE pair_key=?",
                (pair_key,),
            ) as cur:
                row = await cur.fetchone()
        except sqlite3.Error as exc:
            raise StorageFailure("could not read conversation") from exc
        return self._to_conversation(row) if row else None

    async def insert_conversation(self, conversation: Conversation, pair_key: str) -> None:
        """Persist a new conversation.

        Raises DuplicateConversation when another row already owns pair_key.
        """
        db = self._conn()
        first, second = conversation.participants
        try:
            await db.execute(
                "INSERT INTO conversations(conversation_id, participant_a, participant_b, pair_key, created_at) "
                "VALUES(?,?,?,?,?)",
                (conversation.conversation_id, first, second, pair_key, to_micros(conversation.created_at)),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateConversation("conversation already exists for pair", pair_key=pair_key) from exc
        except sqlite3.Error as exc:
            raise StorageFailure("could not create conversation") from exc

    async def conversations_for(self, user_id: str) -> List[Conversation]:
        db = self._conn()
        try:
            async with db.execute(
                "SELECT conversation_id, participant_a, participant_b, created_at "
                "FROM conversations WHERE participant_a=? OR participant_b=? ORDER BY rowid",
                (user_id, user_id),
            ) as cur:
                rows = await cur.fetchall()
        except sqlite3.Error as exc:
            raise StorageFailure("could not list conversations") from exc
        return [self._to_conversation(row) for row in rows]

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def insert_message(self, message: Message) -> None:
        db = self._conn()
        try:
            await db.execute(
                "INSERT INTO messages(message_id, conversation_id, sender_username, receiver_username, "
                "message, whosend, created_at) VALUES(?,?,?,?,?,?,?)",
                (
                    message.id,
                    message.conversation_id,
                    message.sender_username,
                    message.receiver_username,
                    message.message,
                    message.whosend,
                    to_micros(message.timestamp),
                ),
            )
        except sqlite3.Error as exc:
            raise StorageFailure("could not save message") from exc

    async def messages_for(self, conversation_id: str) -> List[Message]:
        db = self._conn()
        try:
            async with db.execute(
                "SELECT message_id, conversation_id, sender_username, receiver_username, message, whosend, "
                "created_at FROM messages WHERE conversation_id=? ORDER BY created_at, seq",
                (conversation_id,),
            ) as cur:
                rows = await cur.fetchall()
        except sqlite3.Error as exc:
            raise StorageFailure("could not fetch messages") from exc
        return [
            Message(
                id=row[0],
                conversation_id=row[1],
                sender_username=row[2],
                receiver_username=row[3],
                message=row[4],
                whosend=row[5],
                timestamp=from_micros(row[6]),
            )
            for row in rows
        ]

    @staticmethod
    def _to_conversation(row) -> Conversation:
        return Conversation(
            conversation_id=row[0],
            participants=(row[1], row[2]),
            created_at=from_micros(row[3]),
        )


__all__ = ["ChatStore", "SCHEMA", "to_micros", "from_micros"]
