from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional


_PERIOD_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is midnight UTC of that day
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def current_period(now: Optional[datetime] = None) -> str:
    """Accounting period ("YYYY-MM") containing `now`."""
    now = now or utcnow()
    return f"{now.year:04d}-{now.month:02d}"


def parse_period(period: str) -> tuple[int, int]:
    """
    Split a "YYYY-MM" period into (year, month).

    Raises ValueError for anything else.
    """
    match = _PERIOD_RE.match((period or "").strip())
    if not match:
        raise ValueError(f"Invalid period '{period}', expected YYYY-MM")
    return int(match.group(1)), int(match.group(2))


def period_bounds(period: str) -> tuple[datetime, datetime]:
    """Half-open [start, end) datetime range covering a "YYYY-MM" period."""
    year, month = parse_period(period)
    start = datetime(year, month, 1)
    days = calendar.monthrange(year, month)[1]
    return start, start + timedelta(days=days)


def iter_periods(start_period: str, end_period: str) -> list[str]:
    """Inclusive list of periods between two "YYYY-MM" values."""
    year, month = parse_period(start_period)
    end_year, end_month = parse_period(end_period)
    periods = []
    while (year, month) <= (end_year, end_month):
        periods.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return periods


def month_start(d: date) -> datetime:
    return datetime(d.year, d.month, 1)


def previous_month_start(d: date) -> datetime:
    if d.month == 1:
        return datetime(d.year - 1, 12, 1)
    return datetime(d.year, d.month - 1, 1)
