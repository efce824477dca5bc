from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .reporter import SUPPORTED_LOCALES, ReportSettings

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True, slots=True)
class Config:
    database_path: Path
    archive_path: Path
    timezone: ZoneInfo
    locale: str
    region_code: str
    require_owner_approval: bool
    token_ttl_seconds: int
    archive_expiry_days: int

    @property
    def token_ttl(self) -> timedelta:
        return timedelta(seconds=self.token_ttl_seconds)

    def report_settings(self) -> ReportSettings:
        return ReportSettings(timezone=self.timezone, locale=self.locale)


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    return value.strip()


def _positive_int_env(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc

    if parsed <= 0:
        raise ValueError(f"Environment variable {name} must be positive")
    return parsed


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default

    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"Environment variable {name} must be a boolean")


def _timezone_from_env(name: str) -> ZoneInfo:
    tz_name = _required_env(name)
    try:
        return ZoneInfo(tz_name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Invalid timezone in {name}: {tz_name}") from exc


def _locale_from_env(name: str) -> str:
    locale = os.getenv(name, "en-US").strip()
    if locale not in SUPPORTED_LOCALES:
        raise ValueError(f"{name} must be one of: {', '.join(SUPPORTED_LOCALES)}")
    return locale


def load_config() -> Config:
    region_code = os.getenv("REGION_CODE", "XX").strip().upper()
    if not region_code.isalpha() or len(region_code) != 2:
        raise ValueError("REGION_CODE must be two letters")

    return Config(
        database_path=Path(os.getenv("TIMEKEEPER_DB_PATH", "timekeeper.db")),
        archive_path=Path(os.getenv("TIMEKEEPER_ARCHIVE_PATH", "timekeeper_archive.db")),
        timezone=_timezone_from_env("TIMEZONE"),
        locale=_locale_from_env("REPORT_LOCALE"),
        region_code=region_code,
        require_owner_approval=_bool_env("REQUIRE_OWNER_APPROVAL", False),
        token_ttl_seconds=_positive_int_env("TOKEN_TTL_SECONDS", 300),
        archive_expiry_days=_positive_int_env("ARCHIVE_EXPIRY_DAYS", 60),
    )
