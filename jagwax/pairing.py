"""Pairing codes: one short code per external identity."""

import asyncio
import logging
import random
import sqlite3
import threading
import time
from typing import Dict, Optional

from .errors import StorageError
from .models import PairingRecord

log = logging.getLogger(__name__)

PAIRING_PREFIX = "JagX"


def generate_code(rng: Optional[random.Random] = None) -> str:
    # 1000-9999 keeps the suffix at exactly four digits
    digits = (rng or random).randint(1000, 9999)
    return f"{PAIRING_PREFIX}{digits}"


class PairingRegistry:
    """
    Identity -> code map backed by SQLite.

    Issuance is idempotent: an identity that already holds a code gets the
    same code back. Codes are unique per identity only; two identities may
    share a numeric suffix. Lookups are served from memory; issuing writes
    through to SQLite off the event loop.
    """

    def __init__(self, db_path: str = "jagwax.db", *, rng: Optional[random.Random] = None) -> None:
        try:
            self.conn = sqlite3.connect(db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StorageError(f"cannot open pairing database {db_path}: {exc}") from exc
        self.conn.row_factory = sqlite3.Row
        self._rng = rng
        self._lock = threading.Lock()
        self._records: Dict[str, PairingRecord] = {}
        try:
            self._init_db()
            self._load()
        except sqlite3.Error as exc:
            raise StorageError(f"cannot initialise pairing registry {db_path}: {exc}") from exc

    def _init_db(self) -> None:
        with self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pairing_codes (
                  identity TEXT PRIMARY KEY,
                  code TEXT NOT NULL,
                  issued_at REAL NOT NULL
                )
                """
            )

    def _load(self) -> None:
        rows = self.conn.execute("SELECT identity, code, issued_at FROM pairing_codes").fetchall()
        for row in rows:
            self._records[row["identity"]] = PairingRecord(
                identity=row["identity"], code=row["code"], issued_at=row["issued_at"]
            )
        if rows:
            log.info("loaded %d pairing codes", len(rows))

    def _issue(self, identity: str) -> PairingRecord:
        with self._lock:
            existing = self._records.get(identity)
            if existing:
                return existing
            candidate = PairingRecord(identity=identity, code=generate_code(self._rng), issued_at=time.time())
            try:
                with self.conn:
                    self.conn.execute(
                        "INSERT INTO pairing_codes(identity, code, issued_at) VALUES(?,?,?) "
                        "ON CONFLICT(identity) DO NOTHING",
                        (candidate.identity, candidate.code, candidate.issued_at),
                    )
                row = self.conn.execute(
                    "SELECT identity, code, issued_at FROM pairing_codes WHERE identity=?",
                    (identity,),
                ).fetchone()
            except sqlite3.Error as exc:
                # the code stays valid for this process even if it could not be written
                log.warning("failed to persist pairing code for %s: %s", identity, exc)
                row = None
            record = (
                PairingRecord(identity=row["identity"], code=row["code"], issued_at=row["issued_at"])
                if row
                else candidate
            )
            self._records[identity] = record
        log.info("issued pairing code for %s", identity)
        return record

    async def issue_or_get_code(self, identity: str) -> str:
        existing = self._records.get(identity)
        if existing:
            return existing.code
        record = await asyncio.to_thread(self._issue, identity)
        return record.code

    def get_code(self, identity: str) -> Optional[str]:
        record = self._records.get(identity)
        return record.code if record else None

    def verify(self, identity: str, submitted_code: str) -> bool:
        stored = self.get_code(identity)
        return stored is not None and submitted_code == stored

    def close(self) -> None:
        with self._lock:
            self.conn.close()
