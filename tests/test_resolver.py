from __future__ import annotations

from datetime import date, datetime, timezone
import unittest

from mosquetime.models import EventDefinition, PrayerTimeRecord
from mosquetime.resolver import occurs_on, resolve_event_times

DAY = date(2024, 3, 11)  # a Monday


def _record(**overrides: str) -> PrayerTimeRecord:
    values = {
        "d_date": "2024-03-11",
        "fajr_begins": "05:00:00",
        "sunrise": "06:30:00",
        "zuhr_begins": "12:15:00",
        "asr_mithl_1": "15:20:00",
        "maghrib_begins": "18:42",
        "isha_begins": "20:05:00",
    }
    values.update(overrides)
    return PrayerTimeRecord.from_dict(values)


def _relative(**overrides: object) -> EventDefinition:
    values: dict[str, object] = {
        "header": "Tafsir circle",
        "eventType": "recurring",
        "eventDays": ["Monday"],
        "timeType": "relative",
        "relativePrayer": "maghrib",
        "relativeMinutes": "10",
        "relativePosition": "after",
        "durationType": "fixed",
        "eventDuration": "30",
    }
    values.update(overrides)
    return EventDefinition.from_dict("evt-1", values)


class RelativeResolutionTests(unittest.TestCase):
    def test_offset_after_anchor_with_fixed_duration(self) -> None:
        times = resolve_event_times(_relative(), _record(), DAY)
        self.assertEqual(times.start, datetime(2024, 3, 11, 18, 52))
        self.assertEqual(times.end, datetime(2024, 3, 11, 19, 22))

    def test_missing_anchor_is_soft(self) -> None:
        times = resolve_event_times(_relative(), _record(maghrib_begins=""), DAY)
        self.assertIsNone(times.start)
        self.assertIsNone(times.end)

    def test_missing_record_offset_or_unknown_anchor(self) -> None:
        for event, record in (
            (_relative(), None),
            (_relative(relativeMinutes=""), _record()),
            (_relative(relativePrayer="tahajjud"), _record()),
            (_relative(), _record(maghrib_begins="late")),
        ):
            with self.subTest(event=event.relative_prayer, record=record is not None):
                times = resolve_event_times(event, record, DAY)
                self.assertEqual((times.start, times.end), (None, None))

    def test_before_anchor(self) -> None:
        times = resolve_event_times(
            _relative(relativePrayer="fajr", relativePosition="before", relativeMinutes="15", durationType="none"),
            _record(),
            DAY,
            timezone.utc,
        )
        self.assertEqual(times.start, datetime(2024, 3, 11, 4, 45, tzinfo=timezone.utc))
        self.assertIsNone(times.end)

    def test_until_second_anchor(self) -> None:
        times = resolve_event_times(
            _relative(durationType="until", durationUntilPrayer="isha"),
            _record(),
            DAY,
        )
        self.assertEqual(times.end, datetime(2024, 3, 11, 20, 5))

        missing = resolve_event_times(
            _relative(durationType="until", durationUntilPrayer="isha"),
            _record(isha_begins=""),
            DAY,
        )
        self.assertIsNotNone(missing.start)
        self.assertIsNone(missing.end)

    def test_until_anchor_earlier_than_start_collapses(self) -> None:
        times = resolve_event_times(
            _relative(durationType="until", durationUntilPrayer="asr"),
            _record(),
            DAY,
        )
        self.assertEqual(times.start, datetime(2024, 3, 11, 18, 52))
        self.assertEqual(times.end, times.start)

    def test_offset_past_midnight_moves_to_next_date(self) -> None:
        times = resolve_event_times(
            _relative(relativePrayer="isha", relativeMinutes="240", eventDuration="60"),
            _record(),
            DAY,
        )
        self.assertEqual(times.start, datetime(2024, 3, 12, 0, 5))
        self.assertEqual(times.end, datetime(2024, 3, 12, 1, 5))

    def test_fixed_duration_crossing_midnight_is_kept(self) -> None:
        times = resolve_event_times(_relative(relativePrayer="isha"), _record(isha_begins="23:40"), DAY)
        assert times.start is not None and times.end is not None
        self.assertEqual(times.start, datetime(2024, 3, 11, 23, 50))
        self.assertEqual(times.end, datetime(2024, 3, 12, 0, 20))
        self.assertEqual((times.end - times.start).total_seconds(), 1800)

    def test_offset_before_midnight_moves_to_previous_date(self) -> None:
        times = resolve_event_times(
            _relative(relativePrayer="fajr", relativePosition="before", relativeMinutes="20", durationType="none"),
            _record(fajr_begins="00:10"),
            DAY,
        )
        self.assertEqual(times.start, datetime(2024, 3, 10, 23, 50))

    def test_sunrise_and_alias_anchors(self) -> None:
        sunrise = resolve_event_times(_relative(relativePrayer="sunrise", durationType="none"), _record(), DAY)
        self.assertEqual(sunrise.start, datetime(2024, 3, 11, 6, 40))
        dhuhr = resolve_event_times(_relative(relativePrayer="Dhuhr", durationType="none"), _record(), DAY)
        self.assertEqual(dhuhr.start, datetime(2024, 3, 11, 12, 25))


class FixedResolutionTests(unittest.TestCase):
    def _fixed(self, start: str, end: str) -> EventDefinition:
        return EventDefinition.from_dict(
            "evt-2",
            {"header": "Quran class", "eventType": "onetime", "eventDate": "2024-03-11", "timeType": "fixed", "startTime": start, "endTime": end},
        )

    def test_fixed_times_ignore_record(self) -> None:
        times = resolve_event_times(self._fixed("19:30", "21:00"), None, DAY)
        self.assertEqual(times.start, datetime(2024, 3, 11, 19, 30))
        self.assertEqual(times.end, datetime(2024, 3, 11, 21, 0))

    def test_malformed_fixed_times(self) -> None:
        times = resolve_event_times(self._fixed("soon", ""), None, DAY)
        self.assertEqual((times.start, times.end), (None, None))

    def test_fixed_end_before_start_collapses(self) -> None:
        times = resolve_event_times(self._fixed("21:00", "19:30"), None, DAY)
        self.assertEqual(times.end, times.start)


class OccurrenceTests(unittest.TestCase):
    def test_recurring_matches_weekday_case_insensitively(self) -> None:
        event = _relative(eventDays=["monday", "Friday"])
        self.assertTrue(occurs_on(event, DAY))
        self.assertTrue(occurs_on(event, date(2024, 3, 15)))
        self.assertFalse(occurs_on(event, date(2024, 3, 12)))

    def test_onetime_matches_exact_date(self) -> None:
        event = EventDefinition.from_dict("evt-3", {"header": "Iftar", "eventType": "onetime", "eventDate": "2024-03-11"})
        self.assertTrue(occurs_on(event, DAY))
        self.assertFalse(occurs_on(event, date(2025, 3, 11)))

    def test_recurring_without_days_never_occurs(self) -> None:
        self.assertFalse(occurs_on(_relative(eventDays=[]), DAY))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
