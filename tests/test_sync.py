from __future__ import annotations

import copy
from datetime import date, datetime, timedelta, timezone
import unittest

from mosquetime.errors import NetworkError, RecordNotFoundError, RecordValidationError
from mosquetime.services.cache import SnapshotCache
from mosquetime.services.storage import MemoryStorage
from mosquetime.services.store import Subscription
from mosquetime.services.sync import ScheduleSyncClient, decode_collection


def _doc(d_date: str, fajr: str = "05:00:00") -> dict[str, object]:
    return {
        "d_date": d_date,
        "fajr_begins": fajr,
        "fajr_jamah": "05:30:00",
        "sunrise": "06:30:00",
        "zuhr_begins": "12:15:00",
        "asr_mithl_1": "15:20:00",
        "maghrib_begins": "18:42:00",
        "isha_begins": "20:05:00",
        "is_ramadan": 0,
        "hijri_date": "",
    }


class FakeStore:
    def __init__(self, tree: dict | None = None) -> None:
        self.tree: dict = tree or {}
        self.online = True
        self.reads: list[str] = []
        self.writes: list[tuple[str, str, object, str | None]] = []
        self.listeners: dict[str, list] = {}

    def _node(self, path: str):
        node = self.tree
        for part in path.strip("/").split("/"):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    def _check(self) -> None:
        if not self.online:
            raise NetworkError("offline")

    def get(self, path):
        self._check()
        self.reads.append(path)
        return self._node(path)

    def query_range(self, path, start, end):
        self._check()
        self.reads.append(f"{path}?{start}..{end}")
        node = self._node(path) or {}
        return {key: value for key, value in node.items() if start <= key <= end}

    def set(self, path, value, auth_token=None):
        self._check()
        self.writes.append(("set", path, copy.deepcopy(value), auth_token))
        parts = path.strip("/").split("/")
        node = self.tree
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = copy.deepcopy(value)

    def update(self, path, values, auth_token=None):
        self._check()
        self.writes.append(("update", path, copy.deepcopy(values), auth_token))
        node = self.tree.setdefault(path, {})
        node.update(copy.deepcopy(values))

    def delete(self, path, auth_token=None):
        self._check()
        self.writes.append(("delete", path, None, auth_token))
        parts = path.strip("/").split("/")
        node = self.tree
        for part in parts[:-1]:
            node = node.get(part, {})
        node.pop(parts[-1], None)

    def subscribe(self, path, callback):
        self.listeners.setdefault(path, []).append(callback)
        return Subscription(lambda: self.listeners[path].remove(callback))

    def emit(self, path, value) -> None:
        for callback in list(self.listeners.get(path, [])):
            callback(copy.deepcopy(value))

    def subscribe_connectivity(self, callback):
        callback(self.online)
        return Subscription()

    def is_connected(self):
        return self.online


class DummyAuth:
    def __init__(self) -> None:
        self.calls = 0

    def id_token(self) -> str:
        self.calls += 1
        return "anon-token"


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class ImmediateFuture:
    def __init__(self, value) -> None:
        self._value = value

    def result(self):  # pragma: no cover - trivial container
        return self._value

    def done(self) -> bool:
        return True


class ImmediateExecutor:
    def __init__(self) -> None:
        self.submitted = 0

    def submit(self, func, *args, **kwargs):
        self.submitted += 1
        return ImmediateFuture(func(*args, **kwargs))

    def shutdown(self, wait=False, cancel_futures=False):  # pragma: no cover - noop
        return None


T0 = datetime(2024, 3, 11, 8, 0, tzinfo=timezone.utc)


class ScheduleSyncClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = FakeStore({
            "prayerTimes": {
                "2024-03-12": _doc("2024-03-12"),
                "2024-03-11": _doc("2024-03-11"),
                "jumaah": {"khutbah_begins": "13:00", "prayer_begins": "13:30"},
            }
        })
        self.clock = MutableClock(T0)
        self.storage = MemoryStorage()
        self.cache = SnapshotCache(self.storage, "prayer_times_cache", timedelta(hours=24), self.clock)
        self.executor = ImmediateExecutor()
        self.auth = DummyAuth()
        self.client = ScheduleSyncClient(self.store, self.cache, self.auth, refresh_executor=self.executor)

    def test_miss_reads_network_and_fills_cache(self) -> None:
        records = self.client.get_all()

        self.assertEqual([record.d_date for record in records], ["2024-03-11", "2024-03-12"])
        self.assertEqual(self.store.reads, ["prayerTimes"])
        snapshot = self.cache.read()
        self.assertIsNotNone(snapshot)
        assert snapshot is not None
        self.assertEqual(len(snapshot.payload), 2)
        self.assertEqual(self.executor.submitted, 0)

    def test_fresh_hit_returns_cache_and_refreshes_in_background(self) -> None:
        self.client.get_all()
        self.store.tree["prayerTimes"]["2024-03-11"]["fajr_begins"] = "05:05:00"
        self.clock.now = T0 + timedelta(hours=1)

        records = self.client.get_all()

        self.assertEqual(records[0].fajr_begins, "05:00:00")
        self.assertEqual(self.executor.submitted, 1)
        self.assertEqual(len(self.store.reads), 2)
        self.assertEqual(self.client.get_all()[0].fajr_begins, "05:05:00")

    def test_background_refresh_failure_is_logged(self) -> None:
        self.client.get_all()
        self.store.online = False
        with self.assertLogs("mosquetime.services.sync", level="WARNING"):
            records = self.client.get_all()
        self.assertEqual(len(records), 2)

    def test_unexpected_background_refresh_error_is_logged(self) -> None:
        self.client.get_all()

        def broken_get(path):
            raise RuntimeError("decoder exploded")

        self.store.get = broken_get
        with self.assertLogs("mosquetime.services.sync", level="ERROR") as logs:
            records = self.client.get_all()
        self.assertEqual(len(records), 2)
        self.assertIn("crashed", logs.output[0])

    def test_stale_cache_serves_when_offline(self) -> None:
        self.client.get_all()
        self.clock.now = T0 + timedelta(days=10)
        self.store.online = False

        records = self.client.get_all()

        self.assertEqual([record.d_date for record in records], ["2024-03-11", "2024-03-12"])

    def test_offline_without_cache_raises(self) -> None:
        self.store.online = False
        with self.assertRaises(NetworkError):
            self.client.get_all()

    def test_get_by_date(self) -> None:
        record = self.client.get_by_date(date(2024, 3, 11))
        self.assertIsNotNone(record)
        assert record is not None
        self.assertEqual(record.maghrib_begins, "18:42:00")
        self.assertIsNone(self.client.get_by_date(date(2024, 4, 1)))

    def test_get_by_date_falls_back_to_stale_cache(self) -> None:
        self.client.get_all()
        self.clock.now = T0 + timedelta(days=3)
        self.store.online = False

        record = self.client.get_by_date(date(2024, 3, 12))
        self.assertIsNotNone(record)
        self.assertIsNone(self.client.get_by_date(date(2024, 3, 20)))

    def test_get_by_date_offline_without_cache_raises(self) -> None:
        self.store.online = False
        with self.assertRaises(NetworkError):
            self.client.get_by_date(date(2024, 3, 11))

    def test_get_by_range_and_month(self) -> None:
        records = self.client.get_by_range(date(2024, 3, 12), date(2024, 3, 31))
        self.assertEqual([record.d_date for record in records], ["2024-03-12"])
        self.assertEqual(len(self.client.get_by_month(2024, 3)), 2)
        self.assertIn("prayerTimes?2024-03-01..2024-03-31", self.store.reads)

        self.store.online = False
        self.client.cache.write([_doc("2024-03-11"), _doc("2024-04-01")])
        self.assertEqual([record.d_date for record in self.client.get_by_month(2024, 4)], ["2024-04-01"])

    def test_set_all_deduplicates_and_keeps_siblings(self) -> None:
        report = self.client.set_all([
            _doc("2024-05-01", fajr="04:10"),
            _doc("2024-05-01", fajr="04:11"),
            {"d_date": "garbage"},
        ])

        self.assertEqual(report.accepted, 1)
        self.assertEqual(report.duplicates, ["2024-05-01"])
        self.assertEqual(len(report.rejected), 1)
        kind, path, payload, token = self.store.writes[-1]
        self.assertEqual((kind, path, token), ("set", "prayerTimes", "anon-token"))
        self.assertEqual(set(payload), {"2024-05-01", "jumaah"})
        self.assertEqual(payload["2024-05-01"]["fajr_begins"], "04:11:00")
        cached = self.cache.read()
        assert cached is not None
        self.assertEqual([item["d_date"] for item in cached.payload], ["2024-05-01"])

    def test_set_all_without_valid_records_writes_nothing(self) -> None:
        with self.assertRaises(RecordValidationError):
            self.client.set_all([{"d_date": "2024-05-01"}])
        self.assertEqual(self.store.writes, [])

    def test_update_one_merges_and_invalidates_cache(self) -> None:
        self.client.get_all()
        record = self.client.update_one(date(2024, 3, 11), {"fajr_jamah": "05:45"})

        self.assertEqual(record.fajr_jamah, "05:45:00")
        self.assertEqual(record.maghrib_begins, "18:42:00")
        self.assertEqual(self.store.tree["prayerTimes"]["2024-03-11"]["fajr_jamah"], "05:45:00")
        self.assertIsNone(self.cache.read(ignore_expiry=True))
        self.assertEqual(self.auth.calls, 1)

    def test_update_one_missing_date(self) -> None:
        with self.assertRaises(RecordNotFoundError) as ctx:
            self.client.update_one(date(2024, 1, 1), {"fajr_jamah": "05:45"})
        self.assertIn("2024-01-01", str(ctx.exception))

    def test_batch_update_and_delete(self) -> None:
        records = self.client.batch_update({date(2024, 3, 13): _doc("ignored"), "2024-03-14": _doc("ignored")})
        self.assertEqual([record.d_date for record in records], ["2024-03-13", "2024-03-14"])
        self.assertIn("2024-03-14", self.store.tree["prayerTimes"])

        self.client.delete_date(date(2024, 3, 14))
        self.assertNotIn("2024-03-14", self.store.tree["prayerTimes"])
        self.assertEqual(self.store.writes[-1][0], "delete")

    def test_subscribe_all_delivers_full_sorted_set(self) -> None:
        deliveries: list[list[str]] = []
        unsubscribe = self.client.subscribe_all(lambda records: deliveries.append([r.d_date for r in records]))

        self.store.emit("prayerTimes", {"2024-03-02": _doc("2024-03-02"), "2024-03-01": _doc("2024-03-01"), "jumaah": {}})
        self.store.emit("prayerTimes", None)
        unsubscribe()
        self.store.emit("prayerTimes", {"2024-03-03": _doc("2024-03-03")})

        self.assertEqual(deliveries, [["2024-03-01", "2024-03-02"], []])
        self.assertIsNotNone(self.cache.read())

    def test_subscribe_date(self) -> None:
        seen: list[object] = []
        self.client.subscribe_date(date(2024, 3, 11), seen.append)
        self.store.emit("prayerTimes/2024-03-11", _doc("2024-03-11"))
        self.store.emit("prayerTimes/2024-03-11", None)
        self.assertEqual(seen[0].d_date, "2024-03-11")
        self.assertIsNone(seen[1])

    def test_connectivity_passthrough(self) -> None:
        states: list[bool] = []
        self.client.subscribe_connectivity(states.append)
        self.assertEqual(states, [True])
        self.assertTrue(self.client.is_connected())


class DecodeCollectionTests(unittest.TestCase):
    def test_skips_non_date_children(self) -> None:
        records = decode_collection({"jumaah": {"a": 1}, "2024-03-11": {"fajr_begins": "05:00"}, "2024-03-12": "x"})
        self.assertEqual([record.d_date for record in records], ["2024-03-11"])
        self.assertEqual(decode_collection(None), [])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
