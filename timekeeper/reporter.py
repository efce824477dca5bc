from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Iterable
from zoneinfo import ZoneInfo

from .archive import DismissalCache
from .durations import (
    day_keys_for_sessions,
    day_window,
    format_duration,
    net_minutes,
    sessions_in_day,
    utc_now,
)
from .grants import require_identity
from .models import Session
from .refcode import DEFAULT_REGION_CODE, generate_ref_code
from .timesheet import Timesheet

APP_NAME = "OnSite Timekeeper"
HEADER_RULE = "-" * 20
FOOTER_RULE = "=" * 20
DEFAULT_LOOKBACK_DAYS = 60

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
SUPPORTED_LOCALES = ("en-US", "en-GB")


@dataclass(frozen=True, slots=True)
class ReportSettings:
    """Locale and timezone used for every date, time and day boundary in a report."""

    timezone: ZoneInfo
    locale: str = "en-US"

    def __post_init__(self) -> None:
        if self.locale not in SUPPORTED_LOCALES:
            raise ValueError(f"Unsupported report locale: {self.locale}")

    def format_date(self, day_value: date) -> str:
        month = _MONTHS[day_value.month - 1]
        year = f"{day_value.year % 100:02}"
        if self.locale == "en-GB":
            return f"{day_value.day:02} {month} {year}"
        return f"{month} {day_value.day:02}, {year}"

    def format_time(self, value: datetime) -> str:
        local = value.astimezone(self.timezone)
        hour = local.hour % 12 or 12
        suffix = "AM" if local.hour < 12 else "PM"
        if self.locale == "en-GB":
            suffix = suffix.lower()
        return f"{hour}:{local.minute:02} {suffix}"

    def today(self, now_utc: datetime | None = None) -> date:
        return (now_utc or utc_now()).astimezone(self.timezone).date()


def _session_lines(session: Session, settings: ReportSettings, now_utc: datetime) -> list[str]:
    entry_time = settings.format_time(session.entry_at)
    exit_time = settings.format_time(session.exit_at) if session.exit_at else "In Progress"

    lines = [f"📍 {session.location_name or 'Unknown Location'}"]
    if session.manually_edited:
        lines.append(f"*Edited ➜ {entry_time} -> {exit_time}")
    else:
        lines.append(f"➜ {entry_time} -> {exit_time}")

    if session.pause_minutes > 0:
        lines.append(f"Break: {session.pause_minutes}min")

    lines.append(f"➜ {format_duration(net_minutes(session, now_utc))}")
    lines.append("")
    return lines


def _footer_lines(total_minutes: int, ref_code: str) -> list[str]:
    return [
        FOOTER_RULE,
        f"TOTAL: {format_duration(total_minutes)}",
        "",
        APP_NAME,
        f"Ref #   {ref_code}",
    ]


def build_day_report(
    user_name: str,
    day_value: date,
    sessions: list[Session],
    owner_id: str,
    settings: ReportSettings,
    *,
    region_code: str = DEFAULT_REGION_CODE,
    now_utc: datetime | None = None,
) -> str:
    """Render one day's sessions as shareable plain text."""
    now = now_utc or utc_now()
    lines = [user_name, HEADER_RULE, f"📅  {settings.format_date(day_value)}"]

    total = 0
    for session in sessions:
        lines.extend(_session_lines(session, settings, now))
        total += net_minutes(session, now)

    ref_code = generate_ref_code(owner_id, len(sessions), region_code, settings.today(now))
    lines.extend(_footer_lines(total, ref_code))
    return "\n".join(lines) + "\n"


def build_multi_day_report(
    user_name: str,
    owner_id: str,
    day_keys: Iterable[str],
    sessions: list[Session],
    settings: ReportSettings,
    *,
    region_code: str = DEFAULT_REGION_CODE,
    now_utc: datetime | None = None,
) -> str:
    """Render several days, one section per day that has sessions.

    Days without sessions are left out entirely. The reference code counts
    every session passed in, not only the ones that landed in a section.
    """
    now = now_utc or utc_now()
    lines = [user_name]

    grand_total = 0
    for day_key in day_keys:
        day_value = date.fromisoformat(day_key)
        day_sessions = sessions_in_day(sessions, day_value, settings.timezone)
        if not day_sessions:
            continue

        lines.extend([HEADER_RULE, f"📅  {settings.format_date(day_value)}"])
        day_total = 0
        for session in day_sessions:
            lines.extend(_session_lines(session, settings, now))
            day_total += net_minutes(session, now)

        lines.extend([f"Day Total: {format_duration(day_total)}", ""])
        grand_total += day_total

    ref_code = generate_ref_code(owner_id, len(sessions), region_code, settings.today(now))
    lines.extend(_footer_lines(grand_total, ref_code))
    return "\n".join(lines) + "\n"


def report_filename(user_name: str, day_value: date) -> str:
    slug = re.sub(r"\s+", "-", user_name.strip()) or "report"
    return f"{slug}-hours-{day_value.isoformat()}.txt"


class Reporter:
    """Loads sessions for a requester, renders reports and exports them."""

    def __init__(
        self,
        timesheet: Timesheet,
        settings: ReportSettings,
        dismissals: DismissalCache | None = None,
        *,
        region_code: str = DEFAULT_REGION_CODE,
        logger: logging.Logger | None = None,
    ) -> None:
        self.timesheet = timesheet
        self.settings = settings
        self.dismissals = dismissals
        self.region_code = region_code
        self.logger = logger or logging.getLogger(__name__)

    def daily_report(
        self,
        requester_id: str,
        owner_id: str,
        owner_name: str,
        day_value: date,
        now_utc: datetime | None = None,
    ) -> str:
        start, end = day_window(day_value, self.settings.timezone)
        sessions = self.timesheet.load_sessions(requester_id, owner_id, start, end)
        return build_day_report(
            owner_name,
            day_value,
            sessions,
            owner_id,
            self.settings,
            region_code=self.region_code,
            now_utc=now_utc,
        )

    def range_report(
        self,
        requester_id: str,
        owner_id: str,
        owner_name: str,
        start_day: date,
        end_day: date,
        now_utc: datetime | None = None,
    ) -> str:
        start, _ = day_window(start_day, self.settings.timezone)
        _, end = day_window(end_day, self.settings.timezone)
        sessions = self.timesheet.load_sessions(requester_id, owner_id, start, end)
        return build_multi_day_report(
            owner_name,
            owner_id,
            day_keys_for_sessions(sessions, self.settings.timezone),
            sessions,
            self.settings,
            region_code=self.region_code,
            now_utc=now_utc,
        )

    def pending_sessions(
        self,
        viewer_id: str,
        owner_id: str,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        now_utc: datetime | None = None,
    ) -> list[Session]:
        """Sessions from the lookback window that the viewer has not archived yet."""
        now = now_utc or utc_now()
        sessions = self.timesheet.load_sessions(viewer_id, owner_id, now - timedelta(days=lookback_days))
        if self.dismissals is None:
            return sessions

        dismissed = self.dismissals.get_dismissed_ids(owner_id)
        return [session for session in sessions if session.id not in dismissed]

    def worker_report(
        self,
        viewer_id: str,
        owner_id: str,
        owner_name: str,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        now_utc: datetime | None = None,
    ) -> str:
        """Report of the worker's pending hours; empty string when nothing is pending."""
        now = now_utc or utc_now()
        sessions = self.pending_sessions(viewer_id, owner_id, lookback_days, now)

        text = ""
        if sessions:
            text = build_multi_day_report(
                owner_name,
                owner_id,
                day_keys_for_sessions(sessions, self.settings.timezone),
                sessions,
                self.settings,
                region_code=self.region_code,
                now_utc=now,
            )

        self._sweep_dismissals(now)
        return text

    def archive_entries(
        self,
        viewer_id: str,
        owner_id: str,
        entry_ids: Iterable[str],
        now_utc: datetime | None = None,
    ) -> int:
        viewer_id = require_identity(viewer_id)
        self.timesheet.access.check_access(owner_id, viewer_id)
        if self.dismissals is None:
            raise RuntimeError("No dismissal cache configured")

        ids = list(entry_ids)
        self.dismissals.mark_dismissed(owner_id, ids, now_utc)
        self.logger.info("Archived %d entries: owner=%s viewer=%s", len(ids), owner_id, viewer_id)
        return len(ids)

    def export_report(
        self,
        text: str,
        user_name: str,
        directory: str | Path,
        now_utc: datetime | None = None,
    ) -> Path:
        path = Path(directory) / report_filename(user_name, self.settings.today(now_utc))
        path.write_text(text, encoding="utf-8")
        self.logger.info("Report exported to %s", path)
        return path

    def _sweep_dismissals(self, now_utc: datetime) -> None:
        if self.dismissals is None:
            return
        try:
            removed = self.dismissals.sweep_expired(now_utc)
        except Exception:  # pragma: no cover - best effort cleanup
            self.logger.exception("Failed to sweep expired archive entries")
            return
        if removed:
            self.logger.debug("Swept %d expired archive entries", removed)
