from __future__ import annotations

from dataclasses import dataclass, field, replace
import json
import logging
from typing import Any, Mapping

from .errors import PersistenceError
from .models import PRAYERS
from .services.storage import KeyValueStorage

logger = logging.getLogger(__name__)

PREFERENCES_KEY = "notification_preferences"
EVENT_PREFERENCES_KEY = "event_notifications"
SCHEMA_VERSION = 2
DEFAULT_REMINDER_MINUTES = 10


def _as_int(value: object, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


@dataclass(slots=True)
class PrayerNotificationSettings:
    begin_time: bool = False
    jamah_time: bool = False
    jamah_reminder_minutes: int = DEFAULT_REMINDER_MINUTES

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PrayerNotificationSettings":
        return cls(
            begin_time=bool(payload.get("beginTime", False)),
            jamah_time=bool(payload.get("jamahTime", False)),
            jamah_reminder_minutes=max(0, _as_int(payload.get("jamahReminderMinutes"), DEFAULT_REMINDER_MINUTES)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "beginTime": self.begin_time,
            "jamahTime": self.jamah_time,
            "jamahReminderMinutes": self.jamah_reminder_minutes,
        }


def _default_prayers() -> dict[str, PrayerNotificationSettings]:
    return {prayer: PrayerNotificationSettings() for prayer in PRAYERS}


@dataclass(slots=True)
class NotificationPreferences:
    schema_version: int = SCHEMA_VERSION
    is_enabled: bool = False
    has_asked_permission: bool = False
    prayers: dict[str, PrayerNotificationSettings] = field(default_factory=_default_prayers)

    def for_prayer(self, prayer: str) -> PrayerNotificationSettings:
        return self.prayers.get(prayer) or PrayerNotificationSettings()

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "NotificationPreferences":
        raw_prayers = payload.get("prayers")
        prayers = _default_prayers()
        if isinstance(raw_prayers, Mapping):
            for prayer in PRAYERS:
                settings = raw_prayers.get(prayer)
                if isinstance(settings, Mapping):
                    prayers[prayer] = PrayerNotificationSettings.from_dict(settings)
        return cls(
            schema_version=_as_int(payload.get("schemaVersion"), SCHEMA_VERSION),
            is_enabled=bool(payload.get("isEnabled", False)),
            has_asked_permission=bool(payload.get("hasAskedPermission", False)),
            prayers=prayers,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "isEnabled": self.is_enabled,
            "hasAskedPermission": self.has_asked_permission,
            "prayers": {prayer: self.for_prayer(prayer).to_dict() for prayer in PRAYERS},
        }


@dataclass(slots=True)
class EventNotificationPreference:
    event_id: str
    enabled: bool = False
    minutes_before: int = 0
    last_notification_time: str | None = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "EventNotificationPreference":
        last = payload.get("lastNotificationTime")
        return cls(
            event_id=str(payload.get("eventId", "")),
            enabled=bool(payload.get("enabled", False)),
            minutes_before=max(0, _as_int(payload.get("minutesBefore"), 0)),
            last_notification_time=str(last) if last else None,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "eventId": self.event_id,
            "enabled": self.enabled,
            "minutesBefore": self.minutes_before,
        }
        if self.last_notification_time:
            payload["lastNotificationTime"] = self.last_notification_time
        return payload


def is_legacy(payload: Mapping[str, Any]) -> bool:
    return "schemaVersion" not in payload and "prayerBeginTimes" in payload


def migrate_preferences(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Upgrade a stored preference blob to the per-prayer shape.

    The flat legacy flags apply to every prayer. Blobs already carrying a
    ``schemaVersion`` come back unchanged, so applying this twice is the same
    as applying it once.
    """
    if not is_legacy(payload):
        return dict(payload)
    settings = PrayerNotificationSettings(
        begin_time=bool(payload.get("prayerBeginTimes", False)),
        jamah_time=bool(payload.get("jamahTimes", False)),
        jamah_reminder_minutes=max(0, _as_int(payload.get("jamahReminderMinutes"), DEFAULT_REMINDER_MINUTES)),
    )
    migrated = NotificationPreferences(
        is_enabled=bool(payload.get("isEnabled", False)),
        has_asked_permission=bool(payload.get("hasAskedPermission", False)),
        prayers={prayer: replace(settings) for prayer in PRAYERS},
    )
    return migrated.to_dict()


class PreferenceStore:
    """Notification preferences persisted in local key-value storage.

    Unreadable or missing blobs fall back to defaults; storage failures are
    logged and never raised.
    """

    def __init__(self, storage: KeyValueStorage) -> None:
        self.storage = storage

    def _read_json(self, key: str) -> Any:
        try:
            raw = self.storage.get_item(key)
        except PersistenceError as exc:
            logger.warning("Could not read %s: %s", key, exc)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Ignoring unreadable %s", key)
            return None

    def _write_json(self, key: str, payload: Any) -> None:
        try:
            self.storage.set_item(key, json.dumps(payload))
        except PersistenceError as exc:
            logger.warning("Could not store %s: %s", key, exc)

    def load(self) -> NotificationPreferences:
        payload = self._read_json(PREFERENCES_KEY)
        if not isinstance(payload, Mapping):
            return NotificationPreferences()
        if is_legacy(payload):
            payload = migrate_preferences(payload)
            self._write_json(PREFERENCES_KEY, payload)
            logger.info("Migrated notification preferences to schema %d", SCHEMA_VERSION)
        return NotificationPreferences.from_dict(payload)

    def save(self, preferences: NotificationPreferences) -> None:
        preferences.schema_version = SCHEMA_VERSION
        self._write_json(PREFERENCES_KEY, preferences.to_dict())

    def load_event_preferences(self) -> list[EventNotificationPreference]:
        payload = self._read_json(EVENT_PREFERENCES_KEY)
        if not isinstance(payload, list):
            return []
        return [EventNotificationPreference.from_dict(item) for item in payload if isinstance(item, Mapping)]

    def save_event_preference(self, preference: EventNotificationPreference) -> None:
        existing = [item for item in self.load_event_preferences() if item.event_id != preference.event_id]
        existing.append(preference)
        self._write_json(EVENT_PREFERENCES_KEY, [item.to_dict() for item in existing])

    def get_event_preference(self, event_id: str) -> EventNotificationPreference | None:
        for preference in self.load_event_preferences():
            if preference.event_id == event_id:
                return preference
        return None

    def event_preference_map(self) -> dict[str, EventNotificationPreference]:
        return {preference.event_id: preference for preference in self.load_event_preferences()}
