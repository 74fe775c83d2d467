from __future__ import annotations

from datetime import datetime, timedelta, timezone
from threading import Event
import unittest

from mosquetime.errors import SchedulingError
from mosquetime.services.alarms import AlarmRequest, TimerAlarmFacility


def _request(identifier: str, seconds: float, now: datetime) -> AlarmRequest:
    return AlarmRequest(identifier, now + timedelta(seconds=seconds), "Fajr Jamah", "Fajr jamah is starting now")


class TimerAlarmFacilityTests(unittest.TestCase):
    def setUp(self) -> None:
        self.now = datetime.now(timezone.utc)
        self.facility = TimerAlarmFacility(clock=lambda: self.now, max_pending=2)

    def tearDown(self) -> None:
        self.facility.cancel_all()

    def test_pending_is_ordered_and_cancellable(self) -> None:
        self.facility.schedule(_request("isha_prayer_begin_2024-03-11", 7200, self.now))
        self.facility.schedule(_request("fajr_jamah_time_2024-03-11", 3600, self.now))

        self.assertEqual(
            [request.identifier for request in self.facility.pending()],
            ["fajr_jamah_time_2024-03-11", "isha_prayer_begin_2024-03-11"],
        )
        self.facility.cancel("fajr_jamah_time_2024-03-11")
        self.facility.cancel("unknown")
        self.assertEqual(len(self.facility.pending()), 1)
        self.facility.cancel_all()
        self.assertEqual(self.facility.pending(), [])

    def test_same_identifier_replaces(self) -> None:
        self.facility.schedule(_request("fajr_jamah_time_2024-03-11", 3600, self.now))
        self.facility.schedule(_request("fajr_jamah_time_2024-03-11", 4000, self.now))
        pending = self.facility.pending()
        self.assertEqual(len(pending), 1)
        self.assertEqual(pending[0].fires_at, self.now + timedelta(seconds=4000))

    def test_limit_and_past_instants_raise(self) -> None:
        self.facility.schedule(_request("a", 60, self.now))
        self.facility.schedule(_request("b", 60, self.now))
        with self.assertRaises(SchedulingError):
            self.facility.schedule(_request("c", 60, self.now))
        with self.assertRaises(SchedulingError):
            self.facility.schedule(_request("a", -1, self.now))

    def test_fires_handler(self) -> None:
        fired = Event()
        received: list[AlarmRequest] = []

        def on_fire(request: AlarmRequest) -> None:
            received.append(request)
            fired.set()

        facility = TimerAlarmFacility(on_fire)
        facility.schedule(AlarmRequest("soon", datetime.now(timezone.utc) + timedelta(milliseconds=50), "t", "b"))
        self.assertTrue(fired.wait(5))
        self.assertEqual(received[0].identifier, "soon")
        self.assertEqual(facility.pending(), [])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
