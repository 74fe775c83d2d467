from __future__ import annotations

from datetime import date, datetime, time, timedelta, tzinfo
import re
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_CLOCK = re.compile(r"^(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?$")
_DATE_KEY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_clock(value: str | None) -> time | None:
    """Parse ``HH:MM`` or ``HH:MM:SS``.

    Blank values are unknown and return ``None``. Anything else that is not a
    valid 24-hour clock value raises ``ValueError``.
    """
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    match = _CLOCK.match(value)
    if not match:
        raise ValueError(f"Unsupported time format: {value}")
    hour = int(match.group("hour"))
    minute = int(match.group("minute"))
    second = int(match.group("second") or 0)
    if not (0 <= hour < 24 and 0 <= minute < 60 and 0 <= second < 60):
        raise ValueError(f"Invalid time value: {value}")
    return time(hour=hour, minute=minute, second=second)


def safe_parse_clock(value: str | None) -> time | None:
    try:
        return parse_clock(value)
    except ValueError:
        return None


def format_clock(value: time) -> str:
    return value.strftime("%H:%M:%S")


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def normalize_clock(value: str | None) -> str:
    """Return the canonical ``HH:MM:SS`` spelling, or ``""`` for blanks."""
    parsed = parse_clock(value)
    return format_clock(parsed) if parsed else ""


def parse_date_key(value: str) -> date:
    value = str(value).strip()
    if not _DATE_KEY.match(value):
        raise ValueError(f"Invalid date key: {value}. Expected YYYY-MM-DD")
    return date.fromisoformat(value)


def is_date_key(value: object) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parse_date_key(value)
    except ValueError:
        return False
    return True


def date_key(day: date) -> str:
    return day.isoformat()


def resolve_timezone(tz_name: str | None) -> tzinfo:
    if tz_name:
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return datetime.now().astimezone().tzinfo


def at_time(day: date, moment: time, tz: tzinfo | None = None) -> datetime:
    return datetime.combine(day, moment, tzinfo=tz)


def days_from(start: date, count: int) -> list[date]:
    return [start + timedelta(days=offset) for offset in range(max(0, count))]
