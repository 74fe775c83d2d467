from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo

from .models import WEEKDAYS, DurationType, EventDefinition, EventType, PrayerTimeRecord, RelativePosition, TimeType
from .timeutils import at_time, safe_parse_clock


@dataclass(slots=True, frozen=True)
class ResolvedTimes:
    start: datetime | None
    end: datetime | None


_UNRESOLVED = ResolvedTimes(None, None)


def occurs_on(event: EventDefinition, day: date) -> bool:
    if event.event_type is EventType.ONETIME:
        return event.event_date.strip() == day.isoformat()
    weekday = WEEKDAYS[day.weekday()]
    return any(name.strip().lower() == weekday for name in event.event_days)


def resolve_event_times(
    event: EventDefinition,
    record: PrayerTimeRecord | None,
    day: date,
    tzinfo: tzinfo | None = None,
) -> ResolvedTimes:
    """Concrete start and end instants of ``event`` on ``day``.

    Relative offsets are applied to the anchor's instant, so they may carry
    the start into the neighbouring date. A fixed duration always ends that
    many minutes after the start. A fixed end time or a second anchor that
    falls before the start is collapsed onto it. Missing inputs resolve to
    ``None`` rather than raising.
    """
    if event.time_type is TimeType.FIXED:
        start = _place(safe_parse_clock(event.start_time), day, tzinfo)
        end = _place(safe_parse_clock(event.end_time), day, tzinfo)
        return _ordered(start, end)
    if record is None or event.relative_minutes is None:
        return _UNRESOLVED
    anchor = record.anchor_time(event.relative_prayer)
    if anchor is None:
        return _UNRESOLVED
    offset = timedelta(minutes=event.relative_minutes)
    if event.relative_position is RelativePosition.BEFORE:
        offset = -offset
    start = at_time(day, anchor, tzinfo) + offset
    if event.duration_type is DurationType.FIXED and event.event_duration is not None:
        return ResolvedTimes(start, start + timedelta(minutes=event.event_duration))
    if event.duration_type is DurationType.UNTIL:
        return _ordered(start, _place(record.anchor_time(event.duration_until_prayer), day, tzinfo))
    return ResolvedTimes(start, None)


def _place(moment: time | None, day: date, tz: tzinfo | None) -> datetime | None:
    if moment is None:
        return None
    return at_time(day, moment, tz)


def _ordered(start: datetime | None, end: datetime | None) -> ResolvedTimes:
    if start is not None and end is not None and end < start:
        end = start
    return ResolvedTimes(start, end)
