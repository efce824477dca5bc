from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .durations import parse_iso_utc
from .errors import Conflict, NotFound
from .models import AccessGrant, Location, PendingToken, Session, session_from_row

SESSION_FIELDS = (
    "location_id",
    "location_name",
    "entry_at",
    "exit_at",
    "pause_minutes",
    "entry_method",
    "manually_edited",
    "edit_reason",
    "original_entry_at",
    "original_exit_at",
    "deleted_at",
)
GRANT_FIELDS = ("status", "label", "accepted_at", "revoked_at")


class Database:
    """Thin SQLite access layer for time records, locations, grants and tokens."""

    def __init__(self, db_path: str | Path) -> None:
        self._conn = sqlite3.connect(str(db_path))
        self._conn.row_factory = sqlite3.Row
        self._closed = False

    def close(self) -> None:
        if self._closed:
            return
        self._conn.close()
        self._closed = True

    def initialize(self) -> None:
        # time_records: one row per entry/exit session, soft-deleted via deleted_at.
        # access_grants: at most one non-revoked grant per (owner, viewer) pair.
        # pending_tokens: single-use QR tokens, ignored once past expires_at.
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS locations (
              id TEXT PRIMARY KEY,
              owner_id TEXT NOT NULL,
              name TEXT NOT NULL,
              latitude REAL NOT NULL,
              longitude REAL NOT NULL,
              radius INTEGER NOT NULL,
              color TEXT NOT NULL,
              status TEXT NOT NULL DEFAULT 'active',
              deleted_at TEXT,
              created_at TEXT NOT NULL,
              updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS time_records (
              id TEXT PRIMARY KEY,
              owner_id TEXT NOT NULL,
              location_id TEXT,
              location_name TEXT,
              entry_at TEXT NOT NULL,
              exit_at TEXT,
              pause_minutes INTEGER NOT NULL DEFAULT 0,
              entry_method TEXT NOT NULL DEFAULT 'automatic',
              manually_edited INTEGER NOT NULL DEFAULT 0,
              edit_reason TEXT,
              original_entry_at TEXT,
              original_exit_at TEXT,
              deleted_at TEXT,
              created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS time_records_owner_entry
              ON time_records (owner_id, entry_at);

            CREATE TABLE IF NOT EXISTS access_grants (
              id TEXT PRIMARY KEY,
              owner_id TEXT NOT NULL,
              viewer_id TEXT NOT NULL,
              token TEXT NOT NULL,
              status TEXT NOT NULL,
              label TEXT,
              created_at TEXT NOT NULL,
              accepted_at TEXT,
              revoked_at TEXT
            );

            CREATE UNIQUE INDEX IF NOT EXISTS access_grants_live_pair
              ON access_grants (owner_id, viewer_id)
              WHERE status != 'revoked';

            CREATE TABLE IF NOT EXISTS pending_tokens (
              id TEXT PRIMARY KEY,
              token TEXT NOT NULL UNIQUE,
              owner_id TEXT NOT NULL,
              owner_name TEXT NOT NULL,
              created_at TEXT NOT NULL,
              expires_at TEXT NOT NULL
            );
            """
        )
        self._conn.commit()

    # Locations

    def insert_location(
        self,
        owner_id: str,
        name: str,
        latitude: float,
        longitude: float,
        radius: int,
        color: str,
        created_at: datetime,
    ) -> Location:
        location_id = str(uuid.uuid4())
        self._conn.execute(
            """
            INSERT INTO locations (id, owner_id, name, latitude, longitude, radius, color, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (location_id, owner_id, name, latitude, longitude, radius, color, _iso(created_at)),
        )
        self._conn.commit()
        return Location(
            id=location_id,
            owner_id=owner_id,
            name=name,
            latitude=latitude,
            longitude=longitude,
            radius=radius,
            color=color,
        )

    def get_location(self, location_id: str) -> Location | None:
        row = self._conn.execute(
            "SELECT * FROM locations WHERE id = ? AND deleted_at IS NULL",
            (location_id,),
        ).fetchone()
        if row is None:
            return None
        return _location_from_row(row)

    def list_locations(self, owner_id: str) -> list[Location]:
        rows = self._conn.execute(
            """
            SELECT * FROM locations
            WHERE owner_id = ? AND status = 'active' AND deleted_at IS NULL
            ORDER BY name ASC
            """,
            (owner_id,),
        ).fetchall()
        return [_location_from_row(row) for row in rows]

    def update_location(self, location_id: str, name: str, updated_at: datetime) -> None:
        self._conn.execute(
            "UPDATE locations SET name = ?, updated_at = ? WHERE id = ?",
            (name, _iso(updated_at), location_id),
        )
        self._conn.commit()

    def soft_delete_location(self, location_id: str, deleted_at: datetime) -> None:
        self._conn.execute(
            "UPDATE locations SET status = 'deleted', deleted_at = ? WHERE id = ?",
            (_iso(deleted_at), location_id),
        )
        self._conn.commit()

    # Time records

    def insert_session(self, owner_id: str, entry_at: datetime, created_at: datetime, **fields: Any) -> Session:
        _check_fields(fields, SESSION_FIELDS)
        session_id = str(uuid.uuid4())
        values = {key: _to_column(value) for key, value in fields.items()}
        columns = ["id", "owner_id", "entry_at", "created_at", *values]
        placeholders = ", ".join("?" for _ in columns)
        self._conn.execute(
            f"INSERT INTO time_records ({', '.join(columns)}) VALUES ({placeholders})",
            (session_id, owner_id, _iso(entry_at), _iso(created_at), *values.values()),
        )
        self._conn.commit()

        session = self.get_session(session_id)
        if session is None:  # pragma: no cover - row was just written
            raise NotFound(f"Time record {session_id} not found")
        return session

    def get_session(self, session_id: str) -> Session | None:
        row = self._conn.execute(
            "SELECT * FROM time_records WHERE id = ? AND deleted_at IS NULL",
            (session_id,),
        ).fetchone()
        if row is None:
            return None
        return session_from_row(row)

    def update_session(self, session_id: str, fields: dict[str, Any]) -> None:
        _check_fields(fields, SESSION_FIELDS)
        if not fields:
            return

        assignments = ", ".join(f"{key} = ?" for key in fields)
        values = [_to_column(value) for value in fields.values()]
        self._conn.execute(
            f"UPDATE time_records SET {assignments} WHERE id = ?",
            (*values, session_id),
        )
        self._conn.commit()

    def query_sessions(
        self,
        owner_id: str,
        start_utc: datetime | None = None,
        end_utc: datetime | None = None,
    ) -> list[Session]:
        # Soft-deleted rows never leave the store.
        clauses = ["owner_id = ?", "deleted_at IS NULL"]
        params: list[Any] = [owner_id]
        if start_utc is not None:
            clauses.append("entry_at >= ?")
            params.append(_iso(start_utc))
        if end_utc is not None:
            clauses.append("entry_at <= ?")
            params.append(_iso(end_utc))

        rows = self._conn.execute(
            f"SELECT * FROM time_records WHERE {' AND '.join(clauses)} ORDER BY entry_at ASC",
            params,
        ).fetchall()
        return [session_from_row(row) for row in rows]

    def find_open_session(self, owner_id: str, location_id: str) -> Session | None:
        row = self._conn.execute(
            """
            SELECT * FROM time_records
            WHERE owner_id = ? AND location_id = ? AND exit_at IS NULL AND deleted_at IS NULL
            ORDER BY entry_at DESC
            LIMIT 1
            """,
            (owner_id, location_id),
        ).fetchone()
        if row is None:
            return None
        return session_from_row(row)

    # Access grants

    def redeem_pending_token(
        self,
        token_id: str,
        viewer_id: str,
        status: str,
        now_utc: datetime,
    ) -> AccessGrant:
        """Consume a pending token and create the grant it stands for, atomically.

        The token delete is conditional on the row still existing, so of two
        concurrent redemptions only one can succeed. A duplicate grant rolls the
        whole transaction back and leaves the token in place.
        """
        grant_id = str(uuid.uuid4())
        try:
            with self._conn:
                row = self._conn.execute(
                    "SELECT owner_id, token FROM pending_tokens WHERE id = ?",
                    (token_id,),
                ).fetchone()
                deleted = self._conn.execute("DELETE FROM pending_tokens WHERE id = ?", (token_id,))
                if row is None or deleted.rowcount != 1:
                    raise NotFound("Token invalid or expired")

                accepted_at = now_utc if status == "active" else None
                self._insert_grant_row(
                    grant_id, row["owner_id"], viewer_id, row["token"], status, now_utc, accepted_at
                )
        except sqlite3.IntegrityError as exc:
            raise Conflict("You already have access to this worker") from exc
        return self._require_grant(grant_id)

    def _insert_grant_row(
        self,
        grant_id: str,
        owner_id: str,
        viewer_id: str,
        token: str,
        status: str,
        created_at: datetime,
        accepted_at: datetime | None,
    ) -> None:
        self._conn.execute(
            """
            INSERT INTO access_grants (id, owner_id, viewer_id, token, status, created_at, accepted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (grant_id, owner_id, viewer_id, token, status, _iso(created_at), _to_column(accepted_at)),
        )

    def get_grant(self, grant_id: str) -> AccessGrant | None:
        row = self._conn.execute("SELECT * FROM access_grants WHERE id = ?", (grant_id,)).fetchone()
        if row is None:
            return None
        return _grant_from_row(row)

    def _require_grant(self, grant_id: str) -> AccessGrant:
        grant = self.get_grant(grant_id)
        if grant is None:  # pragma: no cover - row was just written
            raise NotFound(f"Access grant {grant_id} not found")
        return grant

    def find_grant(self, owner_id: str, viewer_id: str, status: str | None = None) -> AccessGrant | None:
        query = "SELECT * FROM access_grants WHERE owner_id = ? AND viewer_id = ?"
        params: list[Any] = [owner_id, viewer_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        row = self._conn.execute(f"{query} ORDER BY created_at DESC LIMIT 1", params).fetchone()
        if row is None:
            return None
        return _grant_from_row(row)

    def update_grant(self, grant_id: str, fields: dict[str, Any]) -> None:
        _check_fields(fields, GRANT_FIELDS)
        if not fields:
            return

        assignments = ", ".join(f"{key} = ?" for key in fields)
        values = [_to_column(value) for value in fields.values()]
        self._conn.execute(
            f"UPDATE access_grants SET {assignments} WHERE id = ?",
            (*values, grant_id),
        )
        self._conn.commit()

    def list_grants_by_owner(self, owner_id: str) -> list[AccessGrant]:
        rows = self._conn.execute(
            "SELECT * FROM access_grants WHERE owner_id = ? ORDER BY created_at DESC",
            (owner_id,),
        ).fetchall()
        return [_grant_from_row(row) for row in rows]

    def list_grants_by_viewer(self, viewer_id: str, status: str) -> list[AccessGrant]:
        rows = self._conn.execute(
            """
            SELECT * FROM access_grants
            WHERE viewer_id = ? AND status = ?
            ORDER BY created_at DESC
            """,
            (viewer_id, status),
        ).fetchall()
        return [_grant_from_row(row) for row in rows]

    # Pending tokens

    def insert_token(
        self,
        token: str,
        owner_id: str,
        owner_name: str,
        created_at: datetime,
        expires_at: datetime,
    ) -> PendingToken:
        token_id = str(uuid.uuid4())
        self._conn.execute(
            """
            INSERT INTO pending_tokens (id, token, owner_id, owner_name, created_at, expires_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (token_id, token, owner_id, owner_name, _iso(created_at), _iso(expires_at)),
        )
        self._conn.commit()
        return PendingToken(
            id=token_id,
            token=token,
            owner_id=owner_id,
            owner_name=owner_name,
            created_at=_to_utc(created_at),
            expires_at=_to_utc(expires_at),
        )

    def get_token(self, token: str) -> PendingToken | None:
        row = self._conn.execute("SELECT * FROM pending_tokens WHERE token = ?", (token,)).fetchone()
        if row is None:
            return None
        return PendingToken(
            id=row["id"],
            token=row["token"],
            owner_id=row["owner_id"],
            owner_name=row["owner_name"],
            created_at=parse_iso_utc(row["created_at"]),
            expires_at=parse_iso_utc(row["expires_at"]),
        )


def _location_from_row(row: sqlite3.Row) -> Location:
    return Location(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        radius=row["radius"],
        color=row["color"],
        status=row["status"],
    )


def _grant_from_row(row: sqlite3.Row) -> AccessGrant:
    return AccessGrant(
        id=row["id"],
        owner_id=row["owner_id"],
        viewer_id=row["viewer_id"],
        token=row["token"],
        status=row["status"],
        created_at=parse_iso_utc(row["created_at"]),
        accepted_at=parse_iso_utc(row["accepted_at"]),
        revoked_at=parse_iso_utc(row["revoked_at"]),
        label=row["label"],
    )


def _check_fields(fields: dict[str, Any], allowed: tuple[str, ...]) -> None:
    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown fields: {', '.join(sorted(unknown))}")


def _to_column(value: Any) -> Any:
    if isinstance(value, datetime):
        return _iso(value)
    if isinstance(value, bool):
        return int(value)
    return value


def _iso(value: datetime) -> str:
    # Fixed-width millisecond stamps keep lexicographic order equal to time order.
    return _to_utc(value).isoformat(timespec="milliseconds")


def _to_utc(value: datetime) -> datetime:
    """Normalize a timezone-aware datetime to UTC for storage."""
    if value.tzinfo is None:
        raise ValueError("Datetime must be timezone-aware")
    return value.astimezone(timezone.utc)
