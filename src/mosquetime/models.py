from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Iterable, Mapping

from .timeutils import date_key, format_clock, safe_parse_clock

PRAYERS = ("fajr", "zuhr", "asr", "maghrib", "isha")
ANCHORS = ("fajr", "sunrise", "zuhr", "asr", "maghrib", "isha")

PRAYER_DISPLAY_NAMES = {
    "fajr": "Fajr",
    "sunrise": "Sunrise",
    "zuhr": "Zuhr",
    "asr": "Asr",
    "maghrib": "Maghrib",
    "isha": "Isha",
}

_ALIASES = {"dhuhr": "zuhr", "duhr": "zuhr", "zohr": "zuhr"}

_BEGIN_FIELDS = {
    "fajr": "fajr_begins",
    "sunrise": "sunrise",
    "zuhr": "zuhr_begins",
    "asr": "asr_mithl_1",
    "maghrib": "maghrib_begins",
    "isha": "isha_begins",
}

_JAMAH_FIELDS = {
    "fajr": "fajr_jamah",
    "zuhr": "zuhr_jamah",
    "asr": "asr_jamah",
    "maghrib": "maghrib_jamah",
    "isha": "isha_jamah",
}

TIME_FIELDS = (
    "fajr_begins",
    "fajr_jamah",
    "sunrise",
    "zuhr_begins",
    "zuhr_jamah",
    "asr_mithl_1",
    "asr_mithl_2",
    "asr_jamah",
    "maghrib_begins",
    "maghrib_jamah",
    "isha_begins",
    "isha_jamah",
)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def canonical_prayer(name: str | None) -> str:
    key = (name or "").strip().lower()
    return _ALIASES.get(key, key)


def _text(value: object | None) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _int_or_none(value: object | None) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


@dataclass(slots=True)
class PrayerTimeRecord:
    d_date: str
    fajr_begins: str = ""
    fajr_jamah: str = ""
    sunrise: str = ""
    zuhr_begins: str = ""
    zuhr_jamah: str = ""
    asr_mithl_1: str = ""
    asr_mithl_2: str = ""
    asr_jamah: str = ""
    maghrib_begins: str = ""
    maghrib_jamah: str = ""
    isha_begins: str = ""
    isha_jamah: str = ""
    is_ramadan: int = 0
    hijri_date: str = ""

    @classmethod
    def from_dict(cls, values: Mapping[str, object], key: str | None = None) -> "PrayerTimeRecord":
        raw_flag = values.get("is_ramadan", 0)
        if isinstance(raw_flag, bool):
            flag = int(raw_flag)
        else:
            flag = _int_or_none(raw_flag) or 0
        return cls(
            d_date=_text(values.get("d_date")) or (key or ""),
            is_ramadan=flag,
            hijri_date=_text(values.get("hijri_date")),
            **{name: _text(values.get(name)) for name in TIME_FIELDS},
        )

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"d_date": self.d_date}
        for name in TIME_FIELDS:
            payload[name] = getattr(self, name)
        payload["is_ramadan"] = self.is_ramadan
        payload["hijri_date"] = self.hijri_date
        return payload

    @property
    def day(self) -> date:
        return date.fromisoformat(self.d_date)

    def begins(self, prayer: str) -> time | None:
        field_name = _BEGIN_FIELDS.get(canonical_prayer(prayer))
        return safe_parse_clock(getattr(self, field_name)) if field_name else None

    def jamah(self, prayer: str) -> time | None:
        field_name = _JAMAH_FIELDS.get(canonical_prayer(prayer))
        return safe_parse_clock(getattr(self, field_name)) if field_name else None

    def anchor_time(self, name: str | None) -> time | None:
        return self.begins(name or "")


def sort_records(records: Iterable[PrayerTimeRecord]) -> list[PrayerTimeRecord]:
    return sorted(records, key=lambda record: record.d_date)


def record_for(records: Iterable[PrayerTimeRecord], day: date) -> PrayerTimeRecord | None:
    key = date_key(day)
    for record in records:
        if record.d_date == key:
            return record
    return None


def current_and_next_prayer(record: PrayerTimeRecord, now: datetime | time) -> tuple[str | None, str]:
    """Return the anchor in effect at ``now`` and the one after it.

    Before the first known anchor of the day the current prayer is ``None``;
    after the last one the next prayer wraps to ``fajr``.
    """
    moment = now.time() if isinstance(now, datetime) else now
    known = [(name, record.begins(name)) for name in ANCHORS]
    known = [(name, value) for name, value in known if value is not None]
    current: str | None = None
    upcoming = "fajr"
    for index, (name, value) in enumerate(known):
        if moment >= value:
            current = name
            upcoming = known[(index + 1) % len(known)][0]
        else:
            break
    return current, upcoming


class EventType(str, Enum):
    ONETIME = "onetime"
    RECURRING = "recurring"


class TimeType(str, Enum):
    FIXED = "fixed"
    RELATIVE = "relative"


class DurationType(str, Enum):
    NONE = "none"
    FIXED = "fixed"
    UNTIL = "until"


class RelativePosition(str, Enum):
    BEFORE = "before"
    AFTER = "after"


def _enum(kind: type[Enum], value: object | None, default: Enum) -> Enum:
    try:
        return kind(_text(value).lower())
    except ValueError:
        return default


@dataclass(slots=True)
class EventDefinition:
    event_id: str
    header: str
    event_type: EventType = EventType.ONETIME
    time_type: TimeType = TimeType.FIXED
    start_time: str = ""
    end_time: str = ""
    relative_prayer: str = ""
    relative_minutes: int | None = None
    relative_position: RelativePosition = RelativePosition.AFTER
    duration_type: DurationType = DurationType.NONE
    event_duration: int | None = None
    duration_until_prayer: str = ""
    event_date: str = ""
    event_days: list[str] = field(default_factory=list)
    subheader: str = ""
    description: str = ""
    attendees: str = "everyone"
    show_on_home_page: bool = False
    updated_at: str = ""

    @classmethod
    def from_dict(cls, event_id: str, values: Mapping[str, object]) -> "EventDefinition":
        days = values.get("eventDays") or []
        if isinstance(days, Mapping):
            days = list(days.values())
        return cls(
            event_id=event_id,
            header=_text(values.get("header")),
            event_type=_enum(EventType, values.get("eventType"), EventType.ONETIME),
            time_type=_enum(TimeType, values.get("timeType"), TimeType.FIXED),
            start_time=_text(values.get("startTime")),
            end_time=_text(values.get("endTime")),
            relative_prayer=canonical_prayer(_text(values.get("relativePrayer"))),
            relative_minutes=_int_or_none(values.get("relativeMinutes")),
            relative_position=_enum(RelativePosition, values.get("relativePosition"), RelativePosition.AFTER),
            duration_type=_enum(DurationType, values.get("durationType"), DurationType.NONE),
            event_duration=_int_or_none(values.get("eventDuration")),
            duration_until_prayer=canonical_prayer(_text(values.get("durationUntilPrayer"))),
            event_date=_text(values.get("eventDate")),
            event_days=[_text(day) for day in days if _text(day)],
            subheader=_text(values.get("subheader")),
            description=_text(values.get("description")),
            attendees=_text(values.get("attendees")) or "everyone",
            show_on_home_page=bool(values.get("showOnHomePage", False)),
            updated_at=_text(values.get("updatedAt")),
        )

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "header": self.header,
            "eventType": self.event_type.value,
            "timeType": self.time_type.value,
            "showOnHomePage": self.show_on_home_page,
            "attendees": self.attendees,
            "updatedAt": self.updated_at,
        }
        if self.time_type is TimeType.FIXED:
            payload["startTime"] = self.start_time
            payload["endTime"] = self.end_time
        else:
            payload["relativePrayer"] = self.relative_prayer
            payload["relativeMinutes"] = "" if self.relative_minutes is None else str(self.relative_minutes)
            payload["relativePosition"] = self.relative_position.value
            payload["durationType"] = self.duration_type.value
            if self.event_duration is not None:
                payload["eventDuration"] = str(self.event_duration)
            if self.duration_until_prayer:
                payload["durationUntilPrayer"] = self.duration_until_prayer
        if self.event_type is EventType.ONETIME:
            payload["eventDate"] = self.event_date
        else:
            payload["eventDays"] = list(self.event_days)
        if self.subheader:
            payload["subheader"] = self.subheader
        if self.description:
            payload["description"] = self.description
        return payload


@dataclass(slots=True)
class ResolvedEvent:
    event: EventDefinition
    day: date
    start: datetime | None
    end: datetime | None


class TriggerKind(str, Enum):
    PRAYER_BEGIN = "prayer_begin"
    JAMAH_TIME = "jamah_time"
    JAMAH_REMINDER = "jamah_reminder"
    EVENT = "event"


@dataclass(slots=True, frozen=True)
class PrayerBeginPayload:
    prayer: str


@dataclass(slots=True, frozen=True)
class JamahPayload:
    prayer: str


@dataclass(slots=True, frozen=True)
class JamahReminderPayload:
    prayer: str
    minutes_before: int


@dataclass(slots=True, frozen=True)
class EventPayload:
    event_id: str
    header: str
    subheader: str = ""
    minutes_before: int = 0


TriggerPayload = PrayerBeginPayload | JamahPayload | JamahReminderPayload | EventPayload


def trigger_identifier(name: str, kind: TriggerKind, source_date: str) -> str:
    return f"{name.strip()}_{kind.value}_{source_date}"


@dataclass(slots=True)
class ScheduledTrigger:
    identifier: str
    fires_at: datetime
    title: str
    body: str
    source_date: str
    kind: TriggerKind
    name: str
    payload: TriggerPayload | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.identifier,
            "firesAt": self.fires_at.isoformat(),
            "title": self.title,
            "body": self.body,
            "scheduledDate": self.source_date,
            "scheduledTime": format_clock(self.fires_at.time()),
            "type": self.kind.value,
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "ScheduledTrigger":
        return cls(
            identifier=_text(payload.get("id")),
            fires_at=datetime.fromisoformat(_text(payload.get("firesAt"))),
            title=_text(payload.get("title")),
            body=_text(payload.get("body")),
            source_date=_text(payload.get("scheduledDate")),
            kind=TriggerKind(_text(payload.get("type"))),
            name=_text(payload.get("name")),
        )
