from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable

DEFAULT_EXPIRY_DAYS = 60


class DismissalCache:
    """Local record of report entries a viewer has already archived.

    Kept apart from the main store: it only decides which entries the next
    worker report leaves out, and entries fall away after ``expiry_days``.
    """

    def __init__(self, db_path: str | Path, expiry_days: int = DEFAULT_EXPIRY_DAYS) -> None:
        self._conn = sqlite3.connect(str(db_path))
        self._conn.row_factory = sqlite3.Row
        self._closed = False
        self.expiry_days = expiry_days

    def close(self) -> None:
        if self._closed:
            return
        self._conn.close()
        self._closed = True

    def initialize(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS archived_entries (
              entry_id TEXT PRIMARY KEY,
              worker_id TEXT NOT NULL,
              archived_at_utc TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS archived_entries_worker
              ON archived_entries (worker_id);
            """
        )
        self._conn.commit()

    def get_dismissed_ids(self, worker_id: str) -> set[str]:
        rows = self._conn.execute(
            "SELECT entry_id FROM archived_entries WHERE worker_id = ?",
            (worker_id,),
        ).fetchall()
        return {row["entry_id"] for row in rows}

    def mark_dismissed(self, worker_id: str, entry_ids: Iterable[str], now_utc: datetime | None = None) -> None:
        now = (now_utc or datetime.now(timezone.utc)).astimezone(timezone.utc)
        archived_at = now.isoformat(timespec="milliseconds")
        # Re-archiving an entry refreshes its timestamp.
        self._conn.executemany(
            """
            INSERT INTO archived_entries (entry_id, worker_id, archived_at_utc)
            VALUES (?, ?, ?)
            ON CONFLICT(entry_id)
            DO UPDATE SET worker_id=excluded.worker_id, archived_at_utc=excluded.archived_at_utc
            """,
            [(entry_id, worker_id, archived_at) for entry_id in entry_ids],
        )
        self._conn.commit()

    def sweep_expired(self, now_utc: datetime | None = None) -> int:
        now = (now_utc or datetime.now(timezone.utc)).astimezone(timezone.utc)
        cutoff = (now - timedelta(days=self.expiry_days)).isoformat(timespec="milliseconds")
        cursor = self._conn.execute(
            "DELETE FROM archived_entries WHERE archived_at_utc < ?",
            (cutoff,),
        )
        self._conn.commit()
        return cursor.rowcount
