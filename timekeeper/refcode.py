from __future__ import annotations

import re
from datetime import date

DEFAULT_REGION_CODE = "XX"

_SEPARATORS = re.compile(r"[^0-9A-Za-z]")


def generate_ref_code(
    owner_id: str,
    session_count: int,
    region_code: str | None = DEFAULT_REGION_CODE,
    today: date | None = None,
) -> str:
    """Build a display reference such as ``QC-4XYZ-0105-03`` for a report.

    The code only helps people refer to a report; it carries no authority.
    """
    day = today or date.today()
    region = region_code or DEFAULT_REGION_CODE
    user_part = _SEPARATORS.sub("", owner_id or "")[-4:].upper()
    date_part = f"{day.month:02}{day.day:02}"
    sessions_part = f"{min(max(session_count, 0), 99):02}"
    return f"{region}-{user_part}-{date_part}-{sessions_part}"
