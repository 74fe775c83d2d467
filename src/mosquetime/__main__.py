from __future__ import annotations

import argparse
from pathlib import Path
import sys
import time

from .app import MosqueTimeApp
from .config import ConfigManager
from .models import PRAYER_DISPLAY_NAMES, PRAYERS
from .timeutils import format_hhmm, safe_parse_clock


def _print_today(app: MosqueTimeApp) -> int:
    record, current, upcoming = app.today()
    if app.model.error:
        print(app.model.error, file=sys.stderr)
        return 1
    if record is None:
        print("No prayer times for today")
        return 1
    print(f"{record.d_date} {record.hijri_date}".rstrip())
    for prayer in PRAYERS:
        begins = record.begins(prayer)
        jamah = record.jamah(prayer)
        marker = "*" if prayer == current else " "
        print(
            f"{marker} {PRAYER_DISPLAY_NAMES[prayer]:<8}"
            f" {format_hhmm(begins) if begins else '--:--'}"
            f"  {format_hhmm(jamah) if jamah else '--:--'}"
        )
    sunrise = safe_parse_clock(record.sunrise)
    if sunrise:
        print(f"  Sunrise  {format_hhmm(sunrise)}")
    if upcoming:
        print(f"Next: {PRAYER_DISPLAY_NAMES.get(upcoming, upcoming)}")
    return 0


def _export_csv(app: MosqueTimeApp, path: Path) -> int:
    if app.model.error:
        print(app.model.error, file=sys.stderr)
        return 1
    print(f"Wrote {app.export_csv(path)} records to {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mosquetime")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.toml")
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("today", help="Show today's prayer times")
    commands.add_parser("schedule", help="List the notifications the next pass arms")
    commands.add_parser("watch", help="Follow live updates and keep notifications armed")
    import_parser = commands.add_parser("import-csv", help="Upload a yearly CSV timetable")
    import_parser.add_argument("path", type=Path)
    export_parser = commands.add_parser("export-csv", help="Write the schedule as CSV")
    export_parser.add_argument("path", type=Path)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    manager = ConfigManager(args.config)
    config = manager.load()
    for error in manager.errors():
        print(f"config: {error}", file=sys.stderr)
    app = MosqueTimeApp(config)
    try:
        command = args.command or "today"
        if command == "import-csv":
            report = app.import_csv(args.path)
            for warning in report.warnings:
                print(f"warning: {warning}", file=sys.stderr)
            print(f"Uploaded {report.accepted} records")
            return 0
        app.refresh()
        if command == "today":
            return _print_today(app)
        if command == "export-csv":
            return _export_csv(app, args.path)
        if command == "schedule":
            for trigger in app.scheduler.scheduled_triggers():
                print(f"{trigger.fires_at:%Y-%m-%d %H:%M}  {trigger.title}")
            return 0
        app.start()
        try:
            while True:
                time.sleep(60)
        except KeyboardInterrupt:
            return 0
    finally:
        app.close()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
