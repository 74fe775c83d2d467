"""CSV import and export of prayer time tables.

Yearly files carry one row per date with a ``d_date`` column. Monthly files
use the same columns but may give only the day of the month in ``d_date`` (or
in a ``day`` column); they are placed into a year and month on merge.
"""
from __future__ import annotations

import csv
from datetime import date
import io
import logging
from typing import Iterable, Mapping

from .errors import RecordValidationError
from .models import TIME_FIELDS, PrayerTimeRecord, sort_records
from .timeutils import date_key, is_date_key

logger = logging.getLogger(__name__)

CSV_COLUMNS = ("d_date",) + TIME_FIELDS + ("is_ramadan", "hijri_date")


def _rows(text: str) -> list[dict[str, str]]:
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    if not reader.fieldnames:
        return []
    rows = []
    for row in reader:
        cleaned = {
            (key or "").strip().lower(): (value or "").strip()
            for key, value in row.items()
            if key is not None
        }
        if any(cleaned.values()):
            rows.append(cleaned)
    return rows


def parse_yearly_csv(text: str) -> list[dict[str, str]]:
    """Rows of a full-year table, ready for ``ScheduleSyncClient.set_all``."""
    rows = _rows(text)
    if rows and "d_date" not in rows[0]:
        raise RecordValidationError(["CSV is missing the 'd_date' column"])
    return rows


def parse_monthly_csv(text: str) -> list[dict[str, str]]:
    rows = _rows(text)
    if rows and "d_date" not in rows[0] and "day" not in rows[0]:
        raise RecordValidationError(["CSV needs a 'd_date' or 'day' column"])
    return rows


def _day_of_month(row: Mapping[str, str]) -> int | None:
    value = row.get("d_date") or row.get("day") or ""
    if is_date_key(value):
        return date.fromisoformat(value).day
    try:
        return int(value)
    except ValueError:
        return None


def merge_monthly_into_yearly(
    existing: Iterable[PrayerTimeRecord],
    monthly_rows: Iterable[Mapping[str, str]],
    year: int,
    month: int,
) -> list[PrayerTimeRecord]:
    """Replace the given month of ``existing`` with the monthly rows.

    Rows whose day cannot be placed in the month are skipped with a warning.
    Records of other months are kept as they are.
    """
    prefix = f"{year:04d}-{month:02d}-"
    merged = {record.d_date: record for record in existing if not record.d_date.startswith(prefix)}
    for row in monthly_rows:
        day = _day_of_month(row)
        try:
            key = date_key(date(year, month, day)) if day is not None else None
        except ValueError:
            key = None
        if key is None:
            logger.warning("Skipping monthly row with unusable date %r", row.get("d_date") or row.get("day"))
            continue
        values = {name: value for name, value in row.items() if name != "day"}
        values["d_date"] = key
        merged[key] = PrayerTimeRecord.from_dict(values)
    return sort_records(merged.values())


def generate_csv(records: Iterable[PrayerTimeRecord]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for record in sort_records(records):
        writer.writerow(record.to_dict())
    return buffer.getvalue()
