from __future__ import annotations

from datetime import date
import logging
from pathlib import Path
from threading import Lock

import httpx  # type: ignore[import]

from .config import MosqueTimeConfig, configure_logging
from .csvio import generate_csv, parse_yearly_csv
from .models import EventDefinition, PrayerTimeRecord, current_and_next_prayer, record_for
from .notifications import NotificationScheduler, SchedulingResult
from .preferences import PreferenceStore
from .services.alarms import AlarmFacility, TimerAlarmFacility
from .services.auth import AnonymousAuth
from .services.cache import JUMAAH_CACHE_KEY, MOSQUE_DETAILS_CACHE_KEY, SCHEDULE_CACHE_KEY, SnapshotCache
from .services.events import EventService
from .services.mosque import MosqueDetailsService
from .services.storage import JsonFileStorage, KeyValueStorage
from .services.store import FirebaseRestStore, RemoteStore, Subscription
from .services.sync import ScheduleSyncClient
from .state import ScheduleModel
from .timeutils import resolve_timezone
from .validation import ImportReport

logger = logging.getLogger(__name__)


class MosqueTimeApp:
    """Builds the services from configuration and wires them together.

    Every schedule change coming from the store is pushed into the model and
    then into a fresh notification pass.
    """

    def __init__(
        self,
        config: MosqueTimeConfig,
        *,
        client: httpx.Client | None = None,
        storage: KeyValueStorage | None = None,
        store: RemoteStore | None = None,
        alarms: AlarmFacility | None = None,
    ) -> None:
        self.config = config
        configure_logging(config.logging)
        clock = config.harness.clock()
        self.clock = clock
        self.storage = storage or JsonFileStorage(config.cache.directory)
        settings = config.store
        self.store = store or FirebaseRestStore(
            settings.database_url,
            client=client,
            timeout=settings.timeout,
            reconnect_delay=settings.reconnect_delay,
        )
        self.auth = (
            AnonymousAuth(settings.api_key, self.storage, client=client, timeout=settings.timeout, clock=clock)
            if settings.api_key
            else None
        )
        self.sync = ScheduleSyncClient(
            self.store,
            SnapshotCache(self.storage, SCHEDULE_CACHE_KEY, config.cache.schedule_ttl, clock),
            self.auth,
            collection=settings.prayer_times_path,
        )
        self.events = EventService(self.store, settings.events_path)
        self.mosque = MosqueDetailsService(
            self.store,
            SnapshotCache(self.storage, MOSQUE_DETAILS_CACHE_KEY, config.cache.mosque_details_ttl, clock),
            SnapshotCache(self.storage, JUMAAH_CACHE_KEY, config.cache.mosque_details_ttl, clock),
            details_path=settings.mosque_details_path,
            jumaah_path=f"{settings.prayer_times_path.strip('/')}/jumaah",
        )
        self.preferences = PreferenceStore(self.storage)
        self.alarms = alarms or TimerAlarmFacility(max_pending=config.notifications.max_pending, clock=clock)
        self.scheduler = NotificationScheduler(
            self.alarms,
            self.preferences,
            self.storage,
            clock=clock,
            horizon_days=config.notifications.horizon_days,
            tz=resolve_timezone(config.notifications.timezone or None),
        )
        self.model = ScheduleModel(self.sync)
        self._events: dict[str, EventDefinition] | None = None
        self._events_lock = Lock()
        self._subscriptions: list[Subscription] = []

    def refresh(self) -> list[PrayerTimeRecord]:
        records = self.model.refresh()
        if self.model.error is None:
            self.reschedule(records)
        return records

    def current_events(self) -> dict[str, EventDefinition]:
        with self._events_lock:
            events = self._events
        if events is None:
            events = self.events.fetch_events()
            with self._events_lock:
                self._events = events
        return events

    def reschedule(self, records: list[PrayerTimeRecord] | None = None) -> SchedulingResult:
        if records is None:
            records = self.model.records
        return self.scheduler.run(records, self.current_events())

    def _on_records(self, records: list[PrayerTimeRecord]) -> None:
        self.model.apply_records(records)
        self.reschedule(records)

    def _on_events(self, events: dict[str, EventDefinition]) -> None:
        with self._events_lock:
            self._events = events
        self.reschedule()

    def start(self) -> None:
        """Attach live subscriptions for connectivity, the schedule and events."""
        if self._subscriptions:
            return
        self._subscriptions = [
            self.sync.subscribe_connectivity(self.model.set_online),
            self.sync.subscribe_all(self._on_records),
            self.events.subscribe_events(self._on_events),
        ]

    def stop(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for unsubscribe in subscriptions:
            unsubscribe()

    def today(self) -> tuple[PrayerTimeRecord | None, str | None, str | None]:
        """Today's record with the current and next prayer names."""
        now = self.clock().astimezone(self.scheduler.tz)
        record = record_for(self.model.records, now.date())
        if record is None:
            return None, None, None
        current, upcoming = current_and_next_prayer(record, now)
        return record, current, upcoming

    def record_for(self, day: date) -> PrayerTimeRecord | None:
        return record_for(self.model.records, day)

    def import_csv(self, path: Path) -> ImportReport:
        rows = parse_yearly_csv(path.read_text(encoding="utf-8"))
        report = self.sync.set_all(rows)
        self.model.apply_records(report.records)
        return report

    def export_csv(self, path: Path) -> int:
        records = self.model.records or self.sync.get_all()
        path.write_text(generate_csv(records), encoding="utf-8")
        return len(records)

    def close(self) -> None:
        self.stop()
        self.sync.close()
        self.alarms.cancel_all()
        for resource in (self.store, self.auth, self.storage):
            close = getattr(resource, "close", None)
            if callable(close):
                close()
