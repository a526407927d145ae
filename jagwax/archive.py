"""Durable per-conversation archive of deleted messages and view-once media."""

import asyncio
import logging
import sqlite3
import threading
import time
import contextlib
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Tuple

from .errors import StorageError
from .models import ArchivedMedia, ArchivedMessage, MediaPayload

log = logging.getLogger(__name__)

DELETED = "deleted"
VIEWONCE = "viewonce"

_TABLES = {
    DELETED: "archived_messages",
    VIEWONCE: "archived_media",
}


class ArchiveStore:
    """
    Append-only archive keyed by conversation id.

    Writes for the same (kind, conversation) pair are serialised through a
    per-key asyncio lock, so the append order always equals the order in which
    records were handed to the store. A key's lock is dropped once no writer
    holds or waits on it. SQLite work runs off the event loop.
    """

    def __init__(
        self,
        db_path: str = "jagwax.db",
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        try:
            self.conn = sqlite3.connect(db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StorageError(f"cannot open archive database {db_path}: {exc}") from exc
        self.conn.row_factory = sqlite3.Row
        self._clock = clock
        self._db_lock = threading.Lock()
        self._key_locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._key_users: Dict[Tuple[str, str], int] = defaultdict(int)
        self._init_db()

    def _init_db(self) -> None:
        try:
            with self._db_lock, self.conn:
                self.conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS archived_messages (
                      id INTEGER PRIMARY KEY AUTOINCREMENT,
                      conversation_id TEXT NOT NULL,
                      body TEXT NOT NULL,
                      author TEXT NOT NULL,
                      captured_at REAL NOT NULL
                    )
                    """
                )
                self.conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS archived_media (
                      id INTEGER PRIMARY KEY AUTOINCREMENT,
                      conversation_id TEXT NOT NULL,
                      mime_type TEXT NOT NULL,
                      file_name TEXT,
                      payload BLOB NOT NULL,
                      captured_at REAL NOT NULL
                    )
                    """
                )
                self.conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_archived_messages_conv "
                    "ON archived_messages(conversation_id, id)"
                )
                self.conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_archived_media_conv "
                    "ON archived_media(conversation_id, id)"
                )
        except sqlite3.Error as exc:
            raise StorageError(f"cannot initialise archive schema: {exc}") from exc

    @contextlib.asynccontextmanager
    async def _serialised(self, key: Tuple[str, str]):
        lock = self._key_locks.setdefault(key, asyncio.Lock())
        self._key_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._key_users[key] -= 1
            if not self._key_users[key]:
                del self._key_users[key]
                self._key_locks.pop(key, None)

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc

    def _next_captured_at(self, table: str, conversation_id: str) -> float:
        row = self.conn.execute(
            f"SELECT MAX(captured_at) FROM {table} WHERE conversation_id=?",
            (conversation_id,),
        ).fetchone()
        now = self._clock()
        last = row[0] if row and row[0] is not None else None
        return now if last is None else max(now, last)

    # ----- writes -----
    def _insert_message(self, conversation_id: str, body: str, author: str) -> ArchivedMessage:
        with self._db_lock, self.conn:
            captured_at = self._next_captured_at(_TABLES[DELETED], conversation_id)
            self.conn.execute(
                "INSERT INTO archived_messages(conversation_id, body, author, captured_at) "
                "VALUES(?,?,?,?)",
                (conversation_id, body, author, captured_at),
            )
        return ArchivedMessage(conversation_id, body, author, captured_at)

    def _insert_media(self, conversation_id: str, media: MediaPayload) -> ArchivedMedia:
        with self._db_lock, self.conn:
            captured_at = self._next_captured_at(_TABLES[VIEWONCE], conversation_id)
            self.conn.execute(
                "INSERT INTO archived_media(conversation_id, mime_type, file_name, payload, captured_at) "
                "VALUES(?,?,?,?,?)",
                (
                    conversation_id,
                    media.mime_type,
                    media.filename,
                    sqlite3.Binary(media.data),
                    captured_at,
                ),
            )
        return ArchivedMedia(conversation_id, media.mime_type, bytes(media.data), media.filename, captured_at)

    async def record_deleted_message(
        self, conversation_id: str, body: str, author: Optional[str] = None
    ) -> ArchivedMessage:
        async with self._serialised((DELETED, conversation_id)):
            record = await self._run(
                self._insert_message, conversation_id, body, author or conversation_id
            )
        log.info("archived deleted message for %s", conversation_id)
        return record

    async def record_view_once_media(self, conversation_id: str, media: MediaPayload) -> ArchivedMedia:
        async with self._serialised((VIEWONCE, conversation_id)):
            record = await self._run(self._insert_media, conversation_id, media)
        log.info(
            "archived view-once media for %s (%s, %d bytes)",
            conversation_id,
            media.mime_type,
            media.size,
        )
        return record

    # ----- reads -----
    def _select_messages(self, conversation_id: str) -> List[ArchivedMessage]:
        with self._db_lock:
            rows = self.conn.execute(
                "SELECT conversation_id, body, author, captured_at FROM archived_messages "
                "WHERE conversation_id=? ORDER BY id",
                (conversation_id,),
            ).fetchall()
        return [
            ArchivedMessage(
                conversation_id=row["conversation_id"],
                body=row["body"],
                author=row["author"],
                captured_at=row["captured_at"],
            )
            for row in rows
        ]

    def _select_media(self, conversation_id: str) -> List[ArchivedMedia]:
        with self._db_lock:
            rows = self.conn.execute(
                "SELECT conversation_id, mime_type, file_name, payload, captured_at FROM archived_media "
                "WHERE conversation_id=? ORDER BY id",
                (conversation_id,),
            ).fetchall()
        return [
            ArchivedMedia(
                conversation_id=row["conversation_id"],
                mime_type=row["mime_type"],
                payload=bytes(row["payload"]),
                file_name=row["file_name"],
                captured_at=row["captured_at"],
            )
            for row in rows
        ]

    async def list_deleted_messages(self, conversation_id: str) -> List[ArchivedMessage]:
        return await self._run(self._select_messages, conversation_id)

    async def list_view_once_media(self, conversation_id: str) -> List[ArchivedMedia]:
        return await self._run(self._select_media, conversation_id)

    def close(self) -> None:
        with self._db_lock:
            self.conn.close()
