from __future__ import annotations

import unittest

from mosquetime.errors import RecordValidationError
from mosquetime.models import PrayerTimeRecord
from mosquetime.validation import RecordValidator, prepare_import


def _row(d_date: str, **overrides: str) -> dict[str, str]:
    row = {
        "d_date": d_date,
        "fajr_begins": "05:00",
        "sunrise": "06:30",
        "zuhr_begins": "12:15",
        "asr_mithl_1": "15:20",
        "maghrib_begins": "18:42",
        "isha_begins": "20:05",
    }
    row.update(overrides)
    return row


class RecordValidatorTests(unittest.TestCase):
    def test_normalizes_times(self) -> None:
        record, warnings = RecordValidator.validate(_row("2024-03-11", fajr_jamah="5:30"))
        self.assertEqual(record.fajr_begins, "05:00:00")
        self.assertEqual(record.fajr_jamah, "05:30:00")
        self.assertEqual(record.asr_jamah, "")
        self.assertEqual(warnings, [])

    def test_rejects_bad_date_and_time(self) -> None:
        with self.assertRaises(RecordValidationError) as ctx:
            RecordValidator.validate(_row("11/03/2024", zuhr_begins="25:00"))
        self.assertEqual(len(ctx.exception.issues), 2)

    def test_rejects_record_without_prayer_times(self) -> None:
        with self.assertRaises(RecordValidationError):
            RecordValidator.validate({"d_date": "2024-03-11", "sunrise": "06:30"})

    def test_out_of_order_times_warn(self) -> None:
        _, warnings = RecordValidator.validate(_row("2024-03-11", maghrib_begins="14:00"))
        self.assertTrue(any("asr_mithl_1" in warning for warning in warnings))

    def test_accepts_record_instances(self) -> None:
        record, _ = RecordValidator.validate(PrayerTimeRecord.from_dict(_row("2024-03-11")))
        self.assertEqual(record.maghrib_begins, "18:42:00")


class PrepareImportTests(unittest.TestCase):
    def test_duplicate_dates_keep_last_and_are_reported(self) -> None:
        report = prepare_import([
            _row("2024-03-12"),
            _row("2024-03-11", fajr_begins="05:01"),
            _row("2024-03-11", fajr_begins="05:02"),
        ])

        self.assertEqual([record.d_date for record in report.records], ["2024-03-11", "2024-03-12"])
        self.assertEqual(report.records[0].fajr_begins, "05:02:00")
        self.assertEqual(report.duplicates, ["2024-03-11"])
        self.assertTrue(any("Duplicate date 2024-03-11" in warning for warning in report.warnings))

    def test_invalid_records_are_dropped(self) -> None:
        report = prepare_import([_row("2024-03-11"), _row("not-a-date")])
        self.assertEqual(report.accepted, 1)
        self.assertEqual(len(report.rejected), 1)

    def test_nothing_usable_raises(self) -> None:
        with self.assertRaises(RecordValidationError):
            prepare_import([_row("bad")])
        with self.assertRaises(RecordValidationError):
            prepare_import([])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
