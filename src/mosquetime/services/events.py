from __future__ import annotations

from datetime import date, datetime, tzinfo
import logging
from typing import Any, Callable, Iterable, Mapping

from ..errors import NetworkError
from ..models import EventDefinition, PrayerTimeRecord, ResolvedEvent
from ..resolver import occurs_on, resolve_event_times
from .store import RemoteStore, Subscription

logger = logging.getLogger(__name__)

EVENTS_PATH = "events"

EventsCallback = Callable[[dict[str, EventDefinition]], None]


def decode_events(data: Any) -> dict[str, EventDefinition]:
    if not isinstance(data, Mapping):
        return {}
    return {
        str(event_id): EventDefinition.from_dict(str(event_id), values)
        for event_id, values in data.items()
        if isinstance(values, Mapping)
    }


def _start_key(item: ResolvedEvent) -> tuple[int, datetime | str]:
    # Events without a start sort first.
    if item.start is None:
        return (0, "")
    return (1, item.start)


class EventService:
    """Read access to the mosque event catalogue."""

    def __init__(self, store: RemoteStore, path: str = EVENTS_PATH) -> None:
        self.store = store
        self.path = path.strip("/")

    def fetch_events(self) -> dict[str, EventDefinition]:
        try:
            data = self.store.get(self.path)
        except NetworkError as exc:
            logger.warning("Could not fetch events: %s", exc)
            return {}
        return decode_events(data)

    def subscribe_events(self, callback: EventsCallback) -> Subscription:
        return self.store.subscribe(self.path, lambda data: callback(decode_events(data)))

    @staticmethod
    def events_for_date(
        events: Mapping[str, EventDefinition] | Iterable[EventDefinition],
        record: PrayerTimeRecord | None,
        day: date,
        tz: tzinfo | None = None,
    ) -> list[ResolvedEvent]:
        """Events happening on ``day`` with their start and end resolved."""
        if isinstance(events, Mapping):
            events = events.values()
        resolved = []
        for event in events:
            if not occurs_on(event, day):
                continue
            times = resolve_event_times(event, record, day, tz)
            resolved.append(ResolvedEvent(event=event, day=day, start=times.start, end=times.end))
        return sorted(resolved, key=_start_key)

    @classmethod
    def home_page_events(
        cls,
        events: Mapping[str, EventDefinition] | Iterable[EventDefinition],
        record: PrayerTimeRecord | None,
        day: date,
        tz: tzinfo | None = None,
    ) -> list[ResolvedEvent]:
        return [item for item in cls.events_for_date(events, record, day, tz) if item.event.show_on_home_page]
