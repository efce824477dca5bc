from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from timekeeper.archive import DismissalCache
from timekeeper.db import Database
from timekeeper.errors import AccessDenied
from timekeeper.grants import AccessManager
from timekeeper.models import Session
from timekeeper.reporter import (
    ReportSettings,
    Reporter,
    build_day_report,
    build_multi_day_report,
    report_filename,
)
from timekeeper.timesheet import Timesheet

OWNER_ID = "user-0001-abcd"
NOW = datetime(2026, 1, 2, 9, 0, tzinfo=timezone.utc)
SETTINGS = ReportSettings(timezone=ZoneInfo("UTC"))


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def day_one_sessions() -> list[Session]:
    return [
        Session(
            id="s1",
            owner_id=OWNER_ID,
            entry_at=utc(2026, 1, 1, 8, 0),
            exit_at=utc(2026, 1, 1, 12, 30),
            pause_minutes=30,
            location_name="Site A",
        ),
        Session(
            id="s2",
            owner_id=OWNER_ID,
            entry_at=utc(2026, 1, 1, 13, 0),
            exit_at=utc(2026, 1, 1, 17, 15),
            manually_edited=True,
        ),
    ]


def test_day_report_layout() -> None:
    text = build_day_report(
        "Jane Doe", date(2026, 1, 1), day_one_sessions(), OWNER_ID, SETTINGS, region_code="QC", now_utc=NOW
    )

    assert text == (
        "Jane Doe\n"
        "--------------------\n"
        "📅  Jan 01, 26\n"
        "📍 Site A\n"
        "➜ 8:00 AM -> 12:30 PM\n"
        "Break: 30min\n"
        "➜ 4h\n"
        "\n"
        "📍 Unknown Location\n"
        "*Edited ➜ 1:00 PM -> 5:15 PM\n"
        "➜ 4h 15min\n"
        "\n"
        "====================\n"
        "TOTAL: 8h 15min\n"
        "\n"
        "OnSite Timekeeper\n"
        "Ref #   QC-ABCD-0102-02\n"
    )


def test_day_report_renders_open_session_in_progress() -> None:
    open_session = Session(id="s3", owner_id=OWNER_ID, entry_at=utc(2026, 1, 2, 7, 30), location_name="Depot")

    text = build_day_report("Jane", date(2026, 1, 2), [open_session], OWNER_ID, SETTINGS, now_utc=NOW)

    assert "➜ 7:30 AM -> In Progress\n" in text
    assert "TOTAL: 1h 30min\n" in text


def test_day_report_formats_times_in_configured_timezone() -> None:
    settings = ReportSettings(timezone=ZoneInfo("America/Toronto"), locale="en-GB")

    text = build_day_report("Jane", date(2026, 1, 1), day_one_sessions()[:1], OWNER_ID, settings, now_utc=NOW)

    assert "📅  01 Jan 26\n" in text
    assert "➜ 3:00 am -> 7:30 am\n" in text


def test_multi_day_report_skips_days_without_sessions() -> None:
    text = build_multi_day_report(
        "Jane Doe", OWNER_ID, ["2026-01-01", "2026-01-02"], day_one_sessions(), SETTINGS, now_utc=NOW
    )

    assert text.count("📅") == 1
    assert "Jan 01, 26" in text
    assert "Jan 02, 26" not in text
    assert "Day Total: 8h 15min\n" in text
    assert "TOTAL: 8h 15min\n" in text
    assert text.startswith("Jane Doe\n--------------------\n")


def test_multi_day_ref_code_counts_whole_session_pool() -> None:
    outside = Session(
        id="s9",
        owner_id=OWNER_ID,
        entry_at=utc(2026, 1, 5, 8, 0),
        exit_at=utc(2026, 1, 5, 9, 0),
    )
    sessions = day_one_sessions() + [outside]

    text = build_multi_day_report("Jane", OWNER_ID, ["2026-01-01"], sessions, SETTINGS, now_utc=NOW)

    assert text.endswith("Ref #   XX-ABCD-0102-03\n")
    assert "TOTAL: 8h 15min\n" in text


def test_multi_day_report_with_no_sessions_has_zero_total() -> None:
    text = build_multi_day_report("Jane", OWNER_ID, ["2026-01-01"], [], SETTINGS, now_utc=NOW)

    assert text == (
        "Jane\n"
        "====================\n"
        "TOTAL: 0min\n"
        "\n"
        "OnSite Timekeeper\n"
        "Ref #   XX-ABCD-0102-00\n"
    )


def test_multi_day_report_is_repeatable_for_finished_sessions() -> None:
    days = ["2026-01-01", "2026-01-02"]

    first = build_multi_day_report("Jane", OWNER_ID, days, day_one_sessions(), SETTINGS, now_utc=NOW)
    second = build_multi_day_report("Jane", OWNER_ID, days, day_one_sessions(), SETTINGS, now_utc=NOW)

    assert first == second


def test_report_filename() -> None:
    assert report_filename("Jane  Doe", date(2026, 1, 2)) == "Jane-Doe-hours-2026-01-02.txt"


def test_unsupported_locale_is_rejected() -> None:
    with pytest.raises(ValueError):
        ReportSettings(timezone=ZoneInfo("UTC"), locale="xx-YY")


def build_reporter() -> tuple[Database, AccessManager, Timesheet, Reporter]:
    db = Database(":memory:")
    db.initialize()
    dismissals = DismissalCache(":memory:")
    dismissals.initialize()
    access = AccessManager(db)
    timesheet = Timesheet(db, access)
    reporter = Reporter(timesheet, SETTINGS, dismissals, region_code="QC")
    return db, access, timesheet, reporter


def link(access: AccessManager, owner_id: str, viewer_id: str) -> None:
    token = access.generate_token(owner_id, "Jane", now_utc=NOW)
    access.redeem(token.token, viewer_id, now_utc=NOW)


def test_worker_report_excludes_archived_entries() -> None:
    _, access, timesheet, reporter = build_reporter()
    location = timesheet.add_location(OWNER_ID, "Site A", 45.5, -73.6)
    first = timesheet.add_manual_entry(OWNER_ID, location.id, utc(2026, 1, 1, 8, 0), utc(2026, 1, 1, 10, 0))
    timesheet.add_manual_entry(OWNER_ID, location.id, utc(2026, 1, 2, 6, 0), utc(2026, 1, 2, 7, 0))
    link(access, OWNER_ID, "manager-1")

    before = reporter.worker_report("manager-1", OWNER_ID, "Jane", now_utc=NOW)
    assert "TOTAL: 3h\n" in before

    reporter.archive_entries("manager-1", OWNER_ID, [first.id], now_utc=NOW)
    after = reporter.worker_report("manager-1", OWNER_ID, "Jane", now_utc=NOW)

    assert "Jan 01, 26" not in after
    assert "TOTAL: 1h\n" in after
    assert after.endswith("Ref #   QC-ABCD-0102-01\n")


def test_worker_report_is_empty_when_everything_is_archived() -> None:
    _, access, timesheet, reporter = build_reporter()
    location = timesheet.add_location(OWNER_ID, "Site A", 45.5, -73.6)
    entry = timesheet.add_manual_entry(OWNER_ID, location.id, utc(2026, 1, 1, 8, 0), utc(2026, 1, 1, 10, 0))
    link(access, OWNER_ID, "manager-1")

    reporter.archive_entries("manager-1", OWNER_ID, [entry.id], now_utc=NOW)

    assert reporter.worker_report("manager-1", OWNER_ID, "Jane", now_utc=NOW) == ""


def test_reports_require_an_active_grant() -> None:
    _, _, _, reporter = build_reporter()

    with pytest.raises(AccessDenied):
        reporter.worker_report("stranger", OWNER_ID, "Jane", now_utc=NOW)
    with pytest.raises(AccessDenied):
        reporter.daily_report("stranger", OWNER_ID, "Jane", date(2026, 1, 1), now_utc=NOW)


def test_daily_report_reads_own_sessions_for_the_day() -> None:
    _, _, timesheet, reporter = build_reporter()
    location = timesheet.add_location(OWNER_ID, "Site A", 45.5, -73.6)
    timesheet.add_manual_entry(OWNER_ID, location.id, utc(2026, 1, 1, 8, 0), utc(2026, 1, 1, 16, 0), 30)
    timesheet.add_manual_entry(OWNER_ID, location.id, utc(2026, 1, 2, 8, 0), utc(2026, 1, 2, 9, 0))

    text = reporter.daily_report(OWNER_ID, OWNER_ID, "Jane", date(2026, 1, 1), now_utc=NOW)

    assert "*Edited ➜ 8:00 AM -> 4:00 PM\n" in text
    assert "TOTAL: 7h 30min\n" in text
    assert text.endswith("Ref #   QC-ABCD-0102-01\n")


def test_range_report_and_export(tmp_path) -> None:
    _, _, timesheet, reporter = build_reporter()
    location = timesheet.add_location(OWNER_ID, "Site A", 45.5, -73.6)
    timesheet.add_manual_entry(OWNER_ID, location.id, utc(2026, 1, 1, 8, 0), utc(2026, 1, 1, 9, 0))
    timesheet.add_manual_entry(OWNER_ID, location.id, utc(2026, 1, 3, 8, 0), utc(2026, 1, 3, 10, 0))

    text = reporter.range_report(OWNER_ID, OWNER_ID, "Jane Doe", date(2026, 1, 1), date(2026, 1, 7), now_utc=NOW)
    path = reporter.export_report(text, "Jane Doe", tmp_path, now_utc=NOW)

    assert text.count("Day Total:") == 2
    assert "TOTAL: 3h\n" in text
    assert path.name == "Jane-Doe-hours-2026-01-02.txt"
    assert path.read_text(encoding="utf-8") == text
