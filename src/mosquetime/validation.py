from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Iterable, Mapping

from .errors import RecordValidationError
from .models import PRAYERS, TIME_FIELDS, PrayerTimeRecord, sort_records
from .timeutils import normalize_clock, parse_date_key

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ImportReport:
    records: list[PrayerTimeRecord] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def accepted(self) -> int:
        return len(self.records)


class RecordValidator:
    _BEGIN_ORDER = ("fajr_begins", "sunrise", "zuhr_begins", "asr_mithl_1", "maghrib_begins", "isha_begins")

    @classmethod
    def validate(cls, raw: Mapping[str, object] | PrayerTimeRecord) -> tuple[PrayerTimeRecord, list[str]]:
        """Check and normalize one record.

        Returns the normalized record with a list of non-fatal warnings.
        Raises ``RecordValidationError`` when the record must be dropped.
        """
        if isinstance(raw, PrayerTimeRecord):
            record = PrayerTimeRecord.from_dict(raw.to_dict())
        elif isinstance(raw, Mapping):
            record = PrayerTimeRecord.from_dict(raw)
        else:
            raise RecordValidationError([f"Record is not a mapping: {raw!r}"])
        issues: list[str] = []
        warnings: list[str] = []
        cls._validate_date(record, issues)
        label = record.d_date or "unknown date"
        cls._normalize_times(record, label, issues)
        cls._validate_has_times(record, label, issues)
        if issues:
            raise RecordValidationError(issues)
        cls._warn_order(record, label, warnings)
        return record, warnings

    @classmethod
    def _validate_date(cls, record: PrayerTimeRecord, issues: list[str]) -> None:
        try:
            parse_date_key(record.d_date)
        except ValueError:
            issues.append(f"Invalid date format ({record.d_date!r}). Expected YYYY-MM-DD")

    @classmethod
    def _normalize_times(cls, record: PrayerTimeRecord, label: str, issues: list[str]) -> None:
        for name in TIME_FIELDS:
            value = getattr(record, name)
            try:
                setattr(record, name, normalize_clock(value))
            except ValueError:
                issues.append(f"{label}: invalid time for '{name}' ({value!r})")

    @classmethod
    def _validate_has_times(cls, record: PrayerTimeRecord, label: str, issues: list[str]) -> None:
        if issues:
            return
        if not any(record.begins(prayer) for prayer in PRAYERS):
            issues.append(f"{label}: no prayer begin times")

    @classmethod
    def _warn_order(cls, record: PrayerTimeRecord, label: str, warnings: list[str]) -> None:
        known = [(name, getattr(record, name)) for name in cls._BEGIN_ORDER if getattr(record, name)]
        for (first, first_value), (second, second_value) in zip(known, known[1:]):
            # Isha may legitimately fall after midnight.
            if second == "isha_begins":
                continue
            if first_value >= second_value:
                warnings.append(f"{label}: '{first}' is not before '{second}'")


def prepare_import(raw_records: Iterable[Mapping[str, object] | PrayerTimeRecord]) -> ImportReport:
    """Validate, normalize and deduplicate records for a bulk write.

    Invalid records are dropped. When two records share a date key the later
    one wins. Raises ``RecordValidationError`` if nothing usable remains.
    """
    report = ImportReport()
    by_date: dict[str, PrayerTimeRecord] = {}
    issues: list[str] = []
    for index, raw in enumerate(raw_records):
        try:
            record, warnings = RecordValidator.validate(raw)
        except RecordValidationError as exc:
            report.rejected.append(f"Record {index + 1}: " + "; ".join(exc.issues))
            issues.extend(exc.issues)
            continue
        report.warnings.extend(warnings)
        if record.d_date in by_date and record.d_date not in report.duplicates:
            report.duplicates.append(record.d_date)
        by_date[record.d_date] = record
    for date_key in report.duplicates:
        report.warnings.append(f"Duplicate date {date_key}: kept the last occurrence")
    if not by_date:
        raise RecordValidationError(issues or ["No valid prayer time records"])
    if report.rejected:
        logger.warning("Dropped %d invalid prayer time records", len(report.rejected))
    report.records = sort_records(by_date.values())
    return report
