from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from timekeeper.durations import (
    calculate_duration,
    day_keys_for_sessions,
    day_net_minutes,
    duration_minutes,
    format_duration,
    net_minutes,
    parse_iso_utc,
    total_net_minutes,
)
from timekeeper.models import Session


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_session(session_id: str, entry: datetime, exit_at: datetime | None, pause: int = 0) -> Session:
    return Session(id=session_id, owner_id="owner-1", entry_at=entry, exit_at=exit_at, pause_minutes=pause)


def test_calculate_duration_rounds_half_up() -> None:
    start = utc(2026, 2, 1, 10, 0, 0)

    assert calculate_duration(start, utc(2026, 2, 1, 10, 1, 30)) == 2
    assert calculate_duration(start, utc(2026, 2, 1, 10, 0, 30)) == 1
    assert calculate_duration(start, utc(2026, 2, 1, 10, 0, 29)) == 0


def test_calculate_duration_clamps_clock_skew_to_zero() -> None:
    assert calculate_duration(utc(2026, 2, 1, 10, 0), utc(2026, 2, 1, 9, 0)) == 0


def test_open_session_duration_grows_with_time() -> None:
    session = make_session("a", utc(2026, 2, 1, 8, 0), None)

    earlier = duration_minutes(session, utc(2026, 2, 1, 9, 0))
    later = duration_minutes(session, utc(2026, 2, 1, 11, 45))

    assert session.status == "active"
    assert earlier == 60
    assert later >= earlier


def test_format_duration() -> None:
    assert format_duration(0) == "0min"
    assert format_duration(45) == "45min"
    assert format_duration(60) == "1h"
    assert format_duration(90) == "1h 30min"
    assert format_duration(605) == "10h 5min"


def test_negative_net_minutes_are_not_clamped() -> None:
    sessions = [
        make_session("a", utc(2026, 2, 1, 8, 0), utc(2026, 2, 1, 10, 0)),
        make_session("b", utc(2026, 2, 1, 11, 0), utc(2026, 2, 1, 11, 20), pause=30),
        make_session("c", utc(2026, 2, 1, 12, 0), utc(2026, 2, 1, 17, 30), pause=30),
    ]

    assert [net_minutes(s) for s in sessions] == [120, -10, 300]
    assert total_net_minutes(sessions) == 410
    assert day_net_minutes(sessions, date(2026, 2, 1), ZoneInfo("UTC")) == 410


def test_day_net_minutes_uses_local_day_boundaries() -> None:
    tz = ZoneInfo("America/Toronto")
    # 22:30 local on Jan 1 is 03:30 UTC on Jan 2.
    late_evening = make_session("a", utc(2026, 1, 2, 3, 30), utc(2026, 1, 2, 4, 30))
    next_morning = make_session("b", utc(2026, 1, 2, 13, 0), utc(2026, 1, 2, 15, 0))
    sessions = [late_evening, next_morning]

    assert day_net_minutes(sessions, date(2026, 1, 1), tz) == 60
    assert day_net_minutes(sessions, date(2026, 1, 2), tz) == 120
    assert day_keys_for_sessions(sessions, tz) == ["2026-01-01", "2026-01-02"]


def test_parse_iso_utc_normalizes_offsets() -> None:
    assert parse_iso_utc("2026-02-01T08:00:00-05:00") == utc(2026, 2, 1, 13, 0)
    assert parse_iso_utc("2026-02-01T08:00:00Z") == utc(2026, 2, 1, 8, 0)
    assert parse_iso_utc("2026-02-01T08:00:00") == utc(2026, 2, 1, 8, 0)
    assert parse_iso_utc(None) is None


def test_open_session_contributes_to_total_against_now() -> None:
    now = utc(2026, 2, 1, 12, 0)
    sessions = [make_session("a", now - timedelta(minutes=95), None, pause=5)]

    assert total_net_minutes(sessions, now) == 90
