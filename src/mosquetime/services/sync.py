from __future__ import annotations

import calendar
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import date
import logging
from typing import Any, Callable, Iterable, Mapping

from ..errors import NetworkError, RecordNotFoundError
from ..models import PrayerTimeRecord, record_for, sort_records
from ..timeutils import date_key, is_date_key
from ..validation import ImportReport, RecordValidator, prepare_import
from .auth import AnonymousAuth
from .cache import SnapshotCache
from .store import ConnectivityCallback, RemoteStore, Subscription

logger = logging.getLogger(__name__)

RecordsCallback = Callable[[list[PrayerTimeRecord]], None]
RecordCallback = Callable[[PrayerTimeRecord | None], None]

DEFAULT_COLLECTION = "prayerTimes"


def decode_collection(data: Any) -> list[PrayerTimeRecord]:
    """Turn a raw ``prayerTimes`` subtree into records sorted by date.

    Children whose key is not a calendar date (``jumaah`` for instance) are
    skipped, as are values that are not documents.
    """
    if not isinstance(data, Mapping):
        return []
    records = []
    for key, value in data.items():
        if not is_date_key(str(key)) or not isinstance(value, Mapping):
            continue
        record = PrayerTimeRecord.from_dict(value, str(key))
        record.d_date = str(key)
        records.append(record)
    return sort_records(records)


def _encode(records: Iterable[PrayerTimeRecord]) -> list[dict[str, object]]:
    return [record.to_dict() for record in records]


def _decode_cached(payload: Any) -> list[PrayerTimeRecord]:
    if isinstance(payload, Mapping):
        return decode_collection(payload)
    if not isinstance(payload, list):
        return []
    records = [PrayerTimeRecord.from_dict(item) for item in payload if isinstance(item, Mapping)]
    return sort_records(record for record in records if is_date_key(record.d_date))


class ScheduleSyncClient:
    """Reads and writes the prayer schedule, keeping the local cache in step."""

    def __init__(
        self,
        store: RemoteStore,
        cache: SnapshotCache,
        auth: AnonymousAuth | None = None,
        refresh_executor: Executor | None = None,
        collection: str = DEFAULT_COLLECTION,
    ) -> None:
        self.store = store
        self.cache = cache
        self.auth = auth
        self.collection = collection.strip("/")
        self._refresh_executor = refresh_executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="sync")
        self._refresh_executor_owned = refresh_executor is None
        self._refresh_future: Future | None = None

    def _path(self, day: date | str) -> str:
        key = day if isinstance(day, str) else date_key(day)
        return f"{self.collection}/{key}"

    def get_all(self) -> list[PrayerTimeRecord]:
        snapshot = self.cache.read()
        if snapshot is not None:
            self._ensure_refresh()
            return _decode_cached(snapshot.payload)
        try:
            return self._fetch_all()
        except NetworkError:
            stale = self.cache.read(ignore_expiry=True)
            if stale is None:
                raise
            logger.warning("Serving prayer times cached at %s", stale.written_at.isoformat())
            return _decode_cached(stale.payload)

    def _fetch_all(self) -> list[PrayerTimeRecord]:
        records = decode_collection(self.store.get(self.collection))
        self.cache.write(_encode(records))
        return records

    def _ensure_refresh(self) -> None:
        if self._refresh_future and not self._refresh_future.done():
            return

        def _refresh() -> None:
            try:
                self._fetch_all()
            except NetworkError as exc:
                logger.warning("Background refresh of prayer times failed: %s", exc)
            except Exception:
                logger.exception("Background refresh of prayer times crashed")

        self._refresh_future = self._refresh_executor.submit(_refresh)

    def _stale_records(self) -> list[PrayerTimeRecord] | None:
        snapshot = self.cache.read(ignore_expiry=True)
        if snapshot is None:
            return None
        return _decode_cached(snapshot.payload)

    def get_by_date(self, day: date) -> PrayerTimeRecord | None:
        key = date_key(day)
        try:
            data = self.store.get(self._path(key))
        except NetworkError:
            cached = self._stale_records()
            if cached is None:
                raise
            return record_for(cached, day)
        if not isinstance(data, Mapping):
            return None
        record = PrayerTimeRecord.from_dict(data, key)
        record.d_date = key
        return record

    def get_by_range(self, start: date, end: date) -> list[PrayerTimeRecord]:
        first, last = date_key(start), date_key(end)
        try:
            data = self.store.query_range(self.collection, first, last)
        except NetworkError:
            cached = self._stale_records()
            if cached is None:
                raise
            return [record for record in cached if first <= record.d_date <= last]
        return [record for record in decode_collection(data) if first <= record.d_date <= last]

    def get_by_month(self, year: int, month: int) -> list[PrayerTimeRecord]:
        last_day = calendar.monthrange(year, month)[1]
        return self.get_by_range(date(year, month, 1), date(year, month, last_day))

    def _auth_token(self) -> str | None:
        if self.auth is None:
            return None
        return self.auth.id_token()

    def set_all(self, records: Iterable[Mapping[str, object] | PrayerTimeRecord]) -> ImportReport:
        report = prepare_import(records)
        token = self._auth_token()
        current = self.store.get(self.collection)
        payload: dict[str, Any] = {}
        if isinstance(current, Mapping):
            # Keep sibling documents such as the Jumaah timetable.
            payload.update({key: value for key, value in current.items() if not is_date_key(str(key))})
        payload.update({record.d_date: record.to_dict() for record in report.records})
        self.store.set(self.collection, payload, auth_token=token)
        self.cache.write(_encode(report.records))
        logger.info(
            "Uploaded %d prayer time records (%d duplicates, %d rejected)",
            report.accepted,
            len(report.duplicates),
            len(report.rejected),
        )
        return report

    def update_one(self, day: date, partial: Mapping[str, object]) -> PrayerTimeRecord:
        key = date_key(day)
        token = self._auth_token()
        current = self.store.get(self._path(key))
        if not isinstance(current, Mapping):
            raise RecordNotFoundError(key)
        merged = {**current, **partial, "d_date": key}
        record, warnings = RecordValidator.validate(merged)
        for warning in warnings:
            logger.warning(warning)
        self.store.set(self._path(key), record.to_dict(), auth_token=token)
        self.cache.invalidate()
        return record

    def batch_update(self, updates: Mapping[date | str, Mapping[str, object]]) -> list[PrayerTimeRecord]:
        records: list[PrayerTimeRecord] = []
        for day, values in updates.items():
            key = day if isinstance(day, str) else date_key(day)
            record, warnings = RecordValidator.validate({**values, "d_date": key})
            for warning in warnings:
                logger.warning(warning)
            records.append(record)
        if not records:
            return []
        token = self._auth_token()
        self.store.update(self.collection, {record.d_date: record.to_dict() for record in records}, auth_token=token)
        self.cache.invalidate()
        return sort_records(records)

    def delete_date(self, day: date) -> None:
        token = self._auth_token()
        self.store.delete(self._path(day), auth_token=token)
        self.cache.invalidate()

    def subscribe_all(self, callback: RecordsCallback) -> Subscription:
        def _on_change(data: Any) -> None:
            records = decode_collection(data)
            self.cache.write(_encode(records))
            callback(records)

        return self.store.subscribe(self.collection, _on_change)

    def subscribe_date(self, day: date, callback: RecordCallback) -> Subscription:
        key = date_key(day)

        def _on_change(data: Any) -> None:
            if not isinstance(data, Mapping):
                callback(None)
                return
            record = PrayerTimeRecord.from_dict(data, key)
            record.d_date = key
            callback(record)

        return self.store.subscribe(self._path(key), _on_change)

    def subscribe_connectivity(self, callback: ConnectivityCallback) -> Subscription:
        return self.store.subscribe_connectivity(callback)

    def is_connected(self) -> bool:
        return self.store.is_connected()

    def wait_for_refresh(self) -> None:
        future = self._refresh_future
        if future is not None:
            future.result()

    def close(self) -> None:
        if self._refresh_executor_owned and isinstance(self._refresh_executor, ThreadPoolExecutor):
            self._refresh_executor.shutdown(wait=False, cancel_futures=False)
