from __future__ import annotations

import math
from datetime import date, datetime, time, timezone
from typing import TYPE_CHECKING, Iterable
from zoneinfo import ZoneInfo

if TYPE_CHECKING:
    from .models import Session


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_iso_utc(value: str | None) -> datetime | None:
    """Parse an ISO timestamp and normalize to UTC."""
    if not value:
        return None

    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        # Stored values should be timezone-aware; treat naive values as UTC for resilience.
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def calculate_duration(entry_at: datetime, exit_at: datetime | None, now_utc: datetime | None = None) -> int:
    """Whole minutes between entry and exit (or now), never below zero."""
    end = exit_at or now_utc or utc_now()
    minutes = (end - entry_at).total_seconds() / 60
    # Half-up: 30 seconds counts as one minute, where round() would give zero.
    return max(0, math.floor(minutes + 0.5))


def duration_minutes(session: Session, now_utc: datetime | None = None) -> int:
    return calculate_duration(session.entry_at, session.exit_at, now_utc)


def net_minutes(session: Session, now_utc: datetime | None = None) -> int:
    # Not clamped: a break longer than the shift yields a negative contribution.
    return duration_minutes(session, now_utc) - session.pause_minutes


def total_net_minutes(sessions: Iterable[Session], now_utc: datetime | None = None) -> int:
    now = now_utc or utc_now()
    return sum(net_minutes(session, now) for session in sessions)


def day_window(day_value: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Return the inclusive [00:00:00.000, 23:59:59.999] local window as UTC instants."""
    start_local = datetime.combine(day_value, time.min, tzinfo=tz)
    end_local = datetime.combine(day_value, time(23, 59, 59, 999000), tzinfo=tz)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)


def sessions_in_day(sessions: Iterable[Session], day_value: date, tz: ZoneInfo) -> list[Session]:
    start, end = day_window(day_value, tz)
    return [session for session in sessions if start <= session.entry_at <= end]


def day_net_minutes(
    sessions: Iterable[Session],
    day_value: date,
    tz: ZoneInfo,
    now_utc: datetime | None = None,
) -> int:
    return total_net_minutes(sessions_in_day(sessions, day_value, tz), now_utc)


def local_day_key(dt_utc: datetime, tz: ZoneInfo) -> str:
    return dt_utc.astimezone(tz).date().isoformat()


def day_keys_for_sessions(sessions: Iterable[Session], tz: ZoneInfo) -> list[str]:
    return sorted({local_day_key(session.entry_at, tz) for session in sessions})


def format_duration(minutes: int) -> str:
    """Render minutes as "45min", "2h" or "2h 5min"."""
    hours = math.floor(minutes / 60)
    # Truncated remainder keeps the sign of the input, e.g. -10 -> "-1h -10min".
    remainder = int(math.fmod(minutes, 60))
    if hours == 0:
        return f"{remainder}min"
    if remainder == 0:
        return f"{hours}h"
    return f"{hours}h {remainder}min"
