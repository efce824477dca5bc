from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from .durations import parse_iso_utc
from .errors import ValidationError

GRANT_PENDING = "pending"
GRANT_ACTIVE = "active"
GRANT_REVOKED = "revoked"
GRANT_EXPIRED = "expired"

ENTRY_METHODS = ("automatic", "manual", "qr_code", "nfc")


@dataclass(frozen=True, slots=True)
class Session:
    id: str
    owner_id: str
    entry_at: datetime
    exit_at: datetime | None = None
    pause_minutes: int = 0
    location_id: str | None = None
    location_name: str | None = None
    manually_edited: bool = False
    entry_method: str = "automatic"
    edit_reason: str | None = None
    original_entry_at: datetime | None = None
    original_exit_at: datetime | None = None

    @property
    def status(self) -> str:
        return "active" if self.exit_at is None else "finished"


@dataclass(frozen=True, slots=True)
class Location:
    id: str
    owner_id: str
    name: str
    latitude: float
    longitude: float
    radius: int
    color: str
    status: str = "active"


@dataclass(frozen=True, slots=True)
class AccessGrant:
    id: str
    owner_id: str
    viewer_id: str
    token: str
    status: str
    created_at: datetime
    accepted_at: datetime | None = None
    revoked_at: datetime | None = None
    label: str | None = None


@dataclass(frozen=True, slots=True)
class PendingToken:
    id: str
    token: str
    owner_id: str
    owner_name: str
    created_at: datetime
    expires_at: datetime


def session_from_row(row: Mapping[str, Any]) -> Session:
    """Map an untyped store row onto a Session.

    Accepts both field spellings seen in stored records (``location_name`` and
    the older ``geofence_name``/``geofence_id``). ``status`` and durations are
    derived, so any stored values for them are ignored. Rows without ``id`` or
    ``entry_at`` are rejected.
    """
    keys = set(row.keys())

    def field(*names: str) -> Any:
        for name in names:
            if name in keys and row[name] is not None:
                return row[name]
        return None

    session_id = field("id")
    if session_id is None:
        raise ValidationError("Time record is missing required field: id")

    entry_raw = field("entry_at")
    if entry_raw is None:
        raise ValidationError(f"Time record {session_id} is missing required field: entry_at")

    try:
        entry_at = _as_utc(entry_raw)
        exit_at = _as_utc(field("exit_at"))
        original_entry_at = _as_utc(field("original_entry_at"))
        original_exit_at = _as_utc(field("original_exit_at"))
    except ValueError as exc:
        raise ValidationError(f"Time record {session_id} has an invalid timestamp") from exc

    return Session(
        id=str(session_id),
        owner_id=str(field("owner_id", "user_id") or ""),
        entry_at=entry_at,
        exit_at=exit_at,
        pause_minutes=int(field("pause_minutes") or 0),
        location_id=field("location_id", "geofence_id"),
        location_name=field("location_name", "geofence_name"),
        manually_edited=bool(field("manually_edited") or False),
        entry_method=field("entry_method") or "automatic",
        edit_reason=field("edit_reason"),
        original_entry_at=original_entry_at,
        original_exit_at=original_exit_at,
    )


def _as_utc(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return parse_iso_utc(value.isoformat())
    return parse_iso_utc(str(value))
