import asyncio
import logging
import sqlite3
import threading
import time
from typing import Set

from .errors import StorageError

log = logging.getLogger(__name__)


class WelcomeRegistry:
    """Group conversations that asked for new members to be greeted."""

    def __init__(self, db_path: str = "jagwax.db") -> None:
        try:
            self.conn = sqlite3.connect(db_path, check_same_thread=False)
            with self.conn:
                self.conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS welcome_groups (
                      conversation_id TEXT PRIMARY KEY,
                      enabled_at REAL NOT NULL
                    )
                    """
                )
            rows = self.conn.execute("SELECT conversation_id FROM welcome_groups").fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"cannot open welcome registry {db_path}: {exc}") from exc
        self._lock = threading.Lock()
        self._enabled: Set[str] = {row[0] for row in rows}

    def _insert(self, conversation_id: str) -> None:
        with self._lock:
            try:
                with self.conn:
                    self.conn.execute(
                        "INSERT INTO welcome_groups(conversation_id, enabled_at) VALUES(?,?) "
                        "ON CONFLICT(conversation_id) DO NOTHING",
                        (conversation_id, time.time()),
                    )
            except sqlite3.Error as exc:
                raise StorageError(str(exc)) from exc
            self._enabled.add(conversation_id)

    async def enable(self, conversation_id: str) -> None:
        await asyncio.to_thread(self._insert, conversation_id)
        log.info("welcome messages enabled for %s", conversation_id)

    def is_enabled(self, conversation_id: str) -> bool:
        return conversation_id in self._enabled

    def close(self) -> None:
        with self._lock:
            self.conn.close()
