from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import json
import logging
from typing import Any, Callable

from ..errors import PersistenceError
from .storage import KeyValueStorage

logger = logging.getLogger(__name__)

SCHEDULE_CACHE_KEY = "prayer_times_cache"
MOSQUE_DETAILS_CACHE_KEY = "mosque_details_cache"
JUMAAH_CACHE_KEY = "jumaah_times_cache"

DEFAULT_SCHEDULE_TTL = timedelta(hours=24)
DEFAULT_METADATA_TTL = timedelta(days=7)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class Snapshot:
    payload: Any
    written_at: datetime

    def age(self, now: datetime) -> timedelta:
        return now - self.written_at


class SnapshotCache:
    """Last-known copy of a remote payload plus the time it was written.

    The cache is an optimization: storage failures are logged and behave
    like a miss, they never propagate.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        key: str,
        ttl: timedelta,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.storage = storage
        self.key = key
        self.timestamp_key = f"{key}_timestamp"
        self.ttl = ttl
        self.clock = clock

    def read(self, ignore_expiry: bool = False) -> Snapshot | None:
        try:
            raw_payload = self.storage.get_item(self.key)
            raw_timestamp = self.storage.get_item(self.timestamp_key)
        except PersistenceError as exc:
            logger.warning("Cache read for %s failed: %s", self.key, exc)
            return None
        if not raw_payload or not raw_timestamp:
            return None
        try:
            written_at = _parse_timestamp(raw_timestamp)
            payload = json.loads(raw_payload)
        except ValueError as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", self.key, exc)
            return None
        snapshot = Snapshot(payload=payload, written_at=written_at)
        if not ignore_expiry and snapshot.age(self._now()) > self.ttl:
            return None
        return snapshot

    def write(self, payload: Any) -> None:
        try:
            encoded = json.dumps(payload)
        except (TypeError, ValueError) as exc:
            logger.warning("Cache payload for %s is not serializable: %s", self.key, exc)
            return
        try:
            self.storage.set_item(self.key, encoded)
            self.storage.set_item(self.timestamp_key, self._now().isoformat())
        except PersistenceError as exc:
            logger.warning("Cache write for %s failed: %s", self.key, exc)

    def invalidate(self) -> None:
        try:
            self.storage.remove_item(self.key)
            self.storage.remove_item(self.timestamp_key)
        except PersistenceError as exc:
            logger.warning("Cache invalidation for %s failed: %s", self.key, exc)

    def _now(self) -> datetime:
        now = self.clock()
        return now if now.tzinfo else now.astimezone()


def _parse_timestamp(value: str) -> datetime:
    value = value.strip()
    if value.isdigit():
        # Epoch milliseconds written by older clients.
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.astimezone()
