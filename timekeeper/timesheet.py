from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

from .db import Database
from .durations import utc_now
from .errors import Conflict, NotFound, ValidationError
from .grants import AccessManager, require_identity
from .models import ENTRY_METHODS, Location, Session

DEFAULT_LOCATION_COLOR = "#3B82F6"


class Timesheet:
    def __init__(self, db: Database, access: AccessManager, logger: logging.Logger | None = None) -> None:
        self.db = db
        self.access = access
        self.logger = logger or logging.getLogger(__name__)

    def add_location(
        self,
        owner_id: str,
        name: str,
        latitude: float,
        longitude: float,
        radius: int = 100,
        color: str = DEFAULT_LOCATION_COLOR,
        now_utc: datetime | None = None,
    ) -> Location:
        owner_id = require_identity(owner_id)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Location name is required")
        if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
            raise ValidationError("Coordinates are out of range")
        if radius <= 0:
            raise ValidationError("Radius must be positive")

        location = self.db.insert_location(owner_id, name, latitude, longitude, radius, color, now_utc or utc_now())
        self.logger.info("Location added: owner=%s location=%s", owner_id, location.id)
        return location

    def list_locations(self, owner_id: str) -> list[Location]:
        return self.db.list_locations(require_identity(owner_id))

    def rename_location(
        self, owner_id: str, location_id: str, name: str, now_utc: datetime | None = None
    ) -> Location:
        location = self._owned_location(owner_id, location_id)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Location name is required")

        self.db.update_location(location.id, name, now_utc or utc_now())
        self.logger.info("Location renamed: owner=%s location=%s", location.owner_id, location.id)
        return self._owned_location(owner_id, location_id)

    def delete_location(self, owner_id: str, location_id: str, now_utc: datetime | None = None) -> None:
        location = self._owned_location(owner_id, location_id)
        self.db.soft_delete_location(location.id, now_utc or utc_now())
        self.logger.info("Location deleted: owner=%s location=%s", location.owner_id, location.id)

    def check_in(
        self,
        owner_id: str,
        location_id: str,
        now_utc: datetime | None = None,
        method: str = "automatic",
    ) -> Session:
        location = self._owned_location(owner_id, location_id)
        if method not in ENTRY_METHODS:
            raise ValidationError(f"Unknown entry method: {method}")
        if self.db.find_open_session(location.owner_id, location.id) is not None:
            raise Conflict(f"Already checked in at {location.name}")

        now = now_utc or utc_now()
        session = self.db.insert_session(
            location.owner_id,
            entry_at=now,
            created_at=now,
            location_id=location.id,
            location_name=location.name,
            entry_method=method,
        )
        self.logger.info("Session started: owner=%s session=%s", session.owner_id, session.id)
        return session

    def check_out(self, owner_id: str, session_id: str, now_utc: datetime | None = None) -> Session:
        session = self._owned_session(owner_id, session_id)
        if session.exit_at is not None:
            raise Conflict("Session is already finished")

        now = now_utc or utc_now()
        if now < session.entry_at:
            raise ValidationError("Exit time must be after entry time")

        self.db.update_session(session.id, {"exit_at": now})
        self.logger.info("Session ended: owner=%s session=%s", session.owner_id, session.id)
        return self._owned_session(owner_id, session_id)

    def add_manual_entry(
        self,
        owner_id: str,
        location_id: str,
        entry_at: datetime,
        exit_at: datetime,
        pause_minutes: int = 0,
        now_utc: datetime | None = None,
    ) -> Session:
        location = self._owned_location(owner_id, location_id)
        _validate_times(entry_at, exit_at, pause_minutes)

        session = self.db.insert_session(
            location.owner_id,
            entry_at=entry_at,
            created_at=now_utc or utc_now(),
            exit_at=exit_at,
            pause_minutes=pause_minutes,
            location_id=location.id,
            location_name=location.name,
            entry_method="manual",
            manually_edited=True,
            edit_reason="Web portal entry",
        )
        self.logger.info("Manual entry added: owner=%s session=%s", session.owner_id, session.id)
        return session

    def edit_session(
        self,
        owner_id: str,
        session_id: str,
        entry_at: datetime,
        exit_at: datetime,
        pause_minutes: int,
        reason: str | None = None,
    ) -> Session:
        session = self._owned_session(owner_id, session_id)
        _validate_times(entry_at, exit_at, pause_minutes)

        fields = {
            "entry_at": entry_at,
            "exit_at": exit_at,
            "pause_minutes": pause_minutes,
            "manually_edited": True,
            "edit_reason": reason,
        }
        # Only the first edit records the original times.
        if session.original_entry_at is None:
            fields["original_entry_at"] = session.entry_at
            fields["original_exit_at"] = session.exit_at

        self.db.update_session(session.id, fields)
        self.logger.info("Session edited: owner=%s session=%s", session.owner_id, session.id)
        return self._owned_session(owner_id, session_id)

    def delete_session(self, owner_id: str, session_id: str, now_utc: datetime | None = None) -> None:
        session = self._owned_session(owner_id, session_id)
        self.db.update_session(session.id, {"deleted_at": now_utc or utc_now()})
        self.logger.info("Session deleted: owner=%s session=%s", session.owner_id, session.id)

    def load_sessions(
        self,
        requester_id: str,
        owner_id: str,
        start_utc: datetime | None = None,
        end_utc: datetime | None = None,
    ) -> list[Session]:
        """Return the owner's sessions if the requester may see them.

        Raises AccessDenied without an active grant. Store failures are logged
        and read as an empty timesheet.
        """
        self.access.check_access(owner_id, requester_id)
        try:
            return self.db.query_sessions(owner_id, start_utc, end_utc)
        except (sqlite3.Error, ValidationError):
            self.logger.exception("Failed to load sessions for owner=%s", owner_id)
            return []

    def _owned_location(self, owner_id: str, location_id: str) -> Location:
        owner_id = require_identity(owner_id)
        location = self.db.get_location(location_id)
        if location is None or location.owner_id != owner_id:
            raise NotFound("Location not found")
        return location

    def _owned_session(self, owner_id: str, session_id: str) -> Session:
        owner_id = require_identity(owner_id)
        session = self.db.get_session(session_id)
        if session is None or session.owner_id != owner_id:
            raise NotFound("Time record not found")
        return session


def _validate_times(entry_at: datetime, exit_at: datetime, pause_minutes: int) -> None:
    if entry_at.tzinfo is None or exit_at.tzinfo is None:
        raise ValidationError("Entry and exit times must be timezone-aware")
    if exit_at <= entry_at:
        raise ValidationError("Exit time must be after entry time")
    if pause_minutes < 0:
        raise ValidationError("Break minutes cannot be negative")
