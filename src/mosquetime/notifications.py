from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
import json
import logging
from threading import Lock
from typing import Callable, Iterable, Mapping

from .errors import PersistenceError
from .models import (
    PRAYER_DISPLAY_NAMES,
    PRAYERS,
    EventDefinition,
    EventPayload,
    JamahPayload,
    JamahReminderPayload,
    PrayerBeginPayload,
    PrayerTimeRecord,
    ScheduledTrigger,
    TriggerKind,
    TriggerPayload,
    trigger_identifier,
)
from .preferences import EventNotificationPreference, NotificationPreferences, PreferenceStore
from .resolver import occurs_on, resolve_event_times
from .services.alarms import AlarmFacility, AlarmRequest
from .services.cache import utc_now
from .services.storage import KeyValueStorage
from .timeutils import at_time, date_key, days_from, resolve_timezone

logger = logging.getLogger(__name__)

SCHEDULED_KEY = "scheduled_notifications"
DEFAULT_HORIZON_DAYS = 7


@dataclass(slots=True)
class SchedulingResult:
    scheduled: list[ScheduledTrigger] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    superseded: bool = False

    @property
    def count(self) -> int:
        return len(self.scheduled)


def describe(payload: TriggerPayload) -> tuple[str, str]:
    """Title and body shown for a trigger payload."""
    if isinstance(payload, PrayerBeginPayload):
        name = PRAYER_DISPLAY_NAMES.get(payload.prayer, payload.prayer.title())
        return f"{name} prayer time", f"It's time for {name} prayer"
    if isinstance(payload, JamahPayload):
        name = PRAYER_DISPLAY_NAMES.get(payload.prayer, payload.prayer.title())
        return f"{name} Jamah", f"{name} jamah is starting now"
    if isinstance(payload, JamahReminderPayload):
        name = PRAYER_DISPLAY_NAMES.get(payload.prayer, payload.prayer.title())
        return f"{name} Jamah Reminder", f"{name} jamah starts in {payload.minutes_before} minutes"
    if isinstance(payload, EventPayload):
        if payload.subheader:
            body = payload.subheader
        elif payload.minutes_before:
            body = f"Starts in {payload.minutes_before} minutes"
        else:
            body = "Starting now"
        return payload.header, body
    raise TypeError(f"Unsupported trigger payload: {payload!r}")


def _trigger(
    name: str,
    kind: TriggerKind,
    source_date: str,
    fires_at: datetime,
    payload: TriggerPayload,
) -> ScheduledTrigger:
    title, body = describe(payload)
    return ScheduledTrigger(
        identifier=trigger_identifier(name, kind, source_date),
        fires_at=fires_at,
        title=title,
        body=body,
        source_date=source_date,
        kind=kind,
        name=name,
        payload=payload,
    )


def prayer_triggers(
    record: PrayerTimeRecord,
    preferences: NotificationPreferences,
    tz: tzinfo | None = None,
) -> list[ScheduledTrigger]:
    day = record.day
    triggers: list[ScheduledTrigger] = []
    for prayer in PRAYERS:
        settings = preferences.for_prayer(prayer)
        begins = record.begins(prayer)
        if settings.begin_time and begins is not None:
            triggers.append(
                _trigger(prayer, TriggerKind.PRAYER_BEGIN, record.d_date, at_time(day, begins, tz), PrayerBeginPayload(prayer))
            )
        jamah = record.jamah(prayer)
        if not settings.jamah_time or jamah is None:
            continue
        jamah_at = at_time(day, jamah, tz)
        triggers.append(_trigger(prayer, TriggerKind.JAMAH_TIME, record.d_date, jamah_at, JamahPayload(prayer)))
        minutes = settings.jamah_reminder_minutes
        if minutes > 0:
            triggers.append(
                _trigger(
                    prayer,
                    TriggerKind.JAMAH_REMINDER,
                    record.d_date,
                    jamah_at - timedelta(minutes=minutes),
                    JamahReminderPayload(prayer, minutes),
                )
            )
    return triggers


def event_triggers(
    events: Iterable[EventDefinition],
    record: PrayerTimeRecord | None,
    day: date,
    event_preferences: Mapping[str, EventNotificationPreference],
    tz: tzinfo | None = None,
) -> list[ScheduledTrigger]:
    triggers: list[ScheduledTrigger] = []
    for event in events:
        preference = event_preferences.get(event.event_id)
        if preference is None or not preference.enabled or not occurs_on(event, day):
            continue
        start = resolve_event_times(event, record, day, tz).start
        if start is None:
            logger.debug("Event %s has no start time on %s", event.event_id, day)
            continue
        payload = EventPayload(event.event_id, event.header, event.subheader, preference.minutes_before)
        fires_at = start - timedelta(minutes=preference.minutes_before)
        triggers.append(_trigger(event.event_id, TriggerKind.EVENT, date_key(day), fires_at, payload))
    return triggers


class NotificationScheduler:
    """Turns the schedule into armed alarms.

    Every ``run`` cancels what is armed and commits the complete future set
    again, so running it twice on the same inputs leaves the same alarms.
    """

    def __init__(
        self,
        alarms: AlarmFacility,
        preferences: PreferenceStore,
        storage: KeyValueStorage,
        *,
        clock: Callable[[], datetime] = utc_now,
        horizon_days: int = DEFAULT_HORIZON_DAYS,
        tz: tzinfo | None = None,
    ) -> None:
        self.alarms = alarms
        self.preferences = preferences
        self.storage = storage
        self.clock = clock
        self.horizon_days = max(1, horizon_days)
        self.tz = tz or resolve_timezone(None)
        self._lock = Lock()
        self._generation_lock = Lock()
        self._generation = 0

    def _now(self) -> datetime:
        now = self.clock()
        if now.tzinfo is None:
            now = now.astimezone()
        return now.astimezone(self.tz)

    def build_triggers(
        self,
        records: Iterable[PrayerTimeRecord],
        events: Iterable[EventDefinition],
        preferences: NotificationPreferences,
        event_preferences: Mapping[str, EventNotificationPreference],
        today: date,
    ) -> list[ScheduledTrigger]:
        by_date = {record.d_date: record for record in records}
        event_list = list(events)
        candidates: list[ScheduledTrigger] = []
        for day in days_from(today, self.horizon_days):
            record = by_date.get(date_key(day))
            if record is not None:
                candidates.extend(prayer_triggers(record, preferences, self.tz))
            if event_list:
                candidates.extend(event_triggers(event_list, record, day, event_preferences, self.tz))
        return candidates

    def run(
        self,
        records: Iterable[PrayerTimeRecord],
        events: Iterable[EventDefinition] | Mapping[str, EventDefinition] | None = None,
        preferences: NotificationPreferences | None = None,
        event_preferences: Mapping[str, EventNotificationPreference] | None = None,
    ) -> SchedulingResult:
        with self._generation_lock:
            self._generation += 1
            generation = self._generation
        records = list(records)
        if isinstance(events, Mapping):
            events = list(events.values())
        with self._lock:
            result = SchedulingResult()
            if generation != self._generation:
                result.superseded = True
                return result
            self.alarms.cancel_all()
            self._persist([])
            prefs = preferences or self.preferences.load()
            if not prefs.is_enabled:
                logger.info("Notifications are disabled; nothing scheduled")
                return result
            if event_preferences is None:
                event_preferences = self.preferences.event_preference_map()
            now = self._now()
            candidates = self.build_triggers(records, events or [], prefs, event_preferences, now.date())
            upcoming = sorted(
                (trigger for trigger in candidates if trigger.fires_at > now),
                key=lambda trigger: (trigger.fires_at, trigger.identifier),
            )
            for trigger in upcoming:
                if generation != self._generation:
                    result.superseded = True
                    break
                request = AlarmRequest(
                    identifier=trigger.identifier,
                    fires_at=trigger.fires_at,
                    title=trigger.title,
                    body=trigger.body,
                    metadata={"kind": trigger.kind.value, "sourceDate": trigger.source_date, "name": trigger.name},
                )
                try:
                    self.alarms.schedule(request)
                except Exception as exc:
                    logger.warning("Could not arm %s: %s", trigger.identifier, exc)
                    result.failed.append(trigger.identifier)
                    continue
                result.scheduled.append(trigger)
            if result.superseded or generation != self._generation:
                result.superseded = True
                logger.info("Scheduling pass superseded after %d notifications", result.count)
                return result
            self._persist(result.scheduled)
            logger.info("Scheduled %d notifications (%d failed)", result.count, len(result.failed))
            return result

    def _persist(self, triggers: list[ScheduledTrigger]) -> None:
        try:
            self.storage.set_item(SCHEDULED_KEY, json.dumps([trigger.to_dict() for trigger in triggers]))
        except PersistenceError as exc:
            logger.warning("Could not record scheduled notifications: %s", exc)

    def scheduled_triggers(self) -> list[ScheduledTrigger]:
        try:
            raw = self.storage.get_item(SCHEDULED_KEY)
        except PersistenceError as exc:
            logger.warning("Could not read scheduled notifications: %s", exc)
            return []
        if not raw:
            return []
        try:
            return [ScheduledTrigger.from_dict(item) for item in json.loads(raw)]
        except (TypeError, ValueError, AttributeError):
            logger.warning("Ignoring unreadable scheduled notification record")
            return []

    def cancel_all(self) -> None:
        with self._lock:
            self.alarms.cancel_all()
            self._persist([])
