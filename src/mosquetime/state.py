from __future__ import annotations

import logging
from threading import Lock
from typing import Callable

from .errors import NetworkError
from .models import PrayerTimeRecord, sort_records
from .services.store import Subscription
from .services.sync import ScheduleSyncClient

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Prayer times are unavailable"

Listener = Callable[["ScheduleModel"], None]


class ScheduleModel:
    """State a front end renders: records, loading flag, error and connectivity."""

    def __init__(self, sync: ScheduleSyncClient) -> None:
        self.sync = sync
        self.records: list[PrayerTimeRecord] = []
        self.is_loading = False
        self.error: str | None = None
        self.is_online = False
        self._lock = Lock()
        self._listeners: dict[int, Listener] = {}
        self._next_listener_id = 0

    def add_listener(self, callback: Listener) -> Subscription:
        with self._lock:
            listener_id = self._next_listener_id
            self._next_listener_id += 1
            self._listeners[listener_id] = callback

        def _remove() -> None:
            with self._lock:
                self._listeners.pop(listener_id, None)

        return Subscription(_remove)

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(self)
            except Exception:
                logger.exception("Schedule listener failed")

    def refresh(self) -> list[PrayerTimeRecord]:
        self.is_loading = True
        self._notify()
        try:
            records = self.sync.get_all()
        except NetworkError as exc:
            logger.warning("Prayer times unavailable: %s", exc)
            self.error = UNAVAILABLE_MESSAGE
        else:
            self.records = records
            self.error = None
        finally:
            self.is_loading = False
        self._notify()
        return self.records

    def apply_records(self, records: list[PrayerTimeRecord]) -> None:
        self.records = sort_records(records)
        self.error = None
        self._notify()

    def set_online(self, value: bool) -> None:
        if self.is_online == value:
            return
        self.is_online = value
        self._notify()
