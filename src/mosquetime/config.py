from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from pathlib import Path
import tomllib
from typing import Any, Callable

from .services.cache import utc_now


def _default_config_root() -> Path:
    return Path.home() / ".config" / "mosquetime"


def _default_cache_dir() -> Path:
    return Path.home() / ".cache" / "mosquetime"


@dataclass(slots=True)
class StoreSettings:
    database_url: str = ""
    api_key: str = ""
    prayer_times_path: str = "prayerTimes"
    events_path: str = "events"
    mosque_details_path: str = "mosqueDetails"
    timeout: float = 10.0
    reconnect_delay: float = 5.0


@dataclass(slots=True)
class CacheSettings:
    directory: Path = field(default_factory=_default_cache_dir)
    schedule_ttl_hours: float = 24
    mosque_details_ttl_days: float = 7

    @property
    def schedule_ttl(self) -> timedelta:
        return timedelta(hours=self.schedule_ttl_hours)

    @property
    def mosque_details_ttl(self) -> timedelta:
        return timedelta(days=self.mosque_details_ttl_days)


@dataclass(slots=True)
class NotificationSettings:
    horizon_days: int = 7
    timezone: str = ""
    max_pending: int = 64


@dataclass(slots=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(slots=True)
class HarnessSettings:
    """Test hooks. ``now`` freezes the clock every service reads."""

    now: datetime | None = None

    def clock(self) -> Callable[[], datetime]:
        frozen = self.now
        if frozen is None:
            return utc_now
        if frozen.tzinfo is None:
            frozen = frozen.astimezone()
        return lambda: frozen


@dataclass(slots=True)
class MosqueTimeConfig:
    store: StoreSettings
    cache: CacheSettings
    notifications: NotificationSettings
    logging: LoggingSettings
    harness: HarnessSettings

    @classmethod
    def default(cls) -> "MosqueTimeConfig":
        return cls(
            store=StoreSettings(),
            cache=CacheSettings(),
            notifications=NotificationSettings(),
            logging=LoggingSettings(),
            harness=HarnessSettings(),
        )

    def to_dict(self) -> dict:
        return {
            "store": {
                "database_url": self.store.database_url,
                "api_key": self.store.api_key,
                "prayer_times_path": self.store.prayer_times_path,
                "events_path": self.store.events_path,
                "mosque_details_path": self.store.mosque_details_path,
                "timeout": self.store.timeout,
                "reconnect_delay": self.store.reconnect_delay,
            },
            "cache": {
                "directory": str(self.cache.directory),
                "schedule_ttl_hours": self.cache.schedule_ttl_hours,
                "mosque_details_ttl_days": self.cache.mosque_details_ttl_days,
            },
            "notifications": {
                "horizon_days": self.notifications.horizon_days,
                "timezone": self.notifications.timezone,
                "max_pending": self.notifications.max_pending,
            },
            "logging": {"level": self.logging.level},
            "harness": {"now": self.harness.now.isoformat() if self.harness.now else ""},
        }


def configure_logging(settings: LoggingSettings) -> None:
    level = logging.getLevelName(settings.level.strip().upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class ConfigManager:
    """TOML configuration loader.

    Invalid values are reported through ``errors()`` and replaced by their
    defaults.
    """

    def __init__(self, config_path: Path | None = None) -> None:
        self.config_path = config_path or (_default_config_root() / "config.toml")
        self._errors: list[str] = []

    def errors(self) -> list[str]:
        return list(self._errors)

    def load(self) -> MosqueTimeConfig:
        self._errors.clear()
        if not self.config_path.exists():
            config = MosqueTimeConfig.default()
            self._write(config)
            return config

        try:
            with self.config_path.open("rb") as handle:
                raw = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:
            self._errors.append(f"Invalid configuration file: {exc}")
            return MosqueTimeConfig.default()

        defaults = MosqueTimeConfig.default()
        store_cfg = raw.get("store", {})
        cache_cfg = raw.get("cache", {})
        notifications_cfg = raw.get("notifications", {})
        logging_cfg = raw.get("logging", {})
        harness_cfg = raw.get("harness", {})

        def _number(section: dict, key: str, default: float, cast=float, minimum: float = 0) -> Any:
            value = section.get(key, default)
            try:
                number = cast(value)
            except (TypeError, ValueError):
                self._errors.append(f"Invalid {key}: {value!r}")
                return default
            if number < minimum:
                self._errors.append(f"Invalid {key}: {value!r}")
                return default
            return number

        now = None
        now_value = str(harness_cfg.get("now", "") or "").strip()
        if now_value:
            try:
                now = datetime.fromisoformat(now_value)
            except ValueError as exc:
                self._errors.append(f"Invalid harness.now: {exc}")

        directory_value = cache_cfg.get("directory") or str(defaults.cache.directory)

        return MosqueTimeConfig(
            store=StoreSettings(
                database_url=str(store_cfg.get("database_url", "")),
                api_key=str(store_cfg.get("api_key", "")),
                prayer_times_path=str(store_cfg.get("prayer_times_path", "prayerTimes")),
                events_path=str(store_cfg.get("events_path", "events")),
                mosque_details_path=str(store_cfg.get("mosque_details_path", "mosqueDetails")),
                timeout=_number(store_cfg, "timeout", defaults.store.timeout, minimum=0.1),
                reconnect_delay=_number(store_cfg, "reconnect_delay", defaults.store.reconnect_delay),
            ),
            cache=CacheSettings(
                directory=Path(directory_value).expanduser(),
                schedule_ttl_hours=_number(cache_cfg, "schedule_ttl_hours", defaults.cache.schedule_ttl_hours),
                mosque_details_ttl_days=_number(
                    cache_cfg, "mosque_details_ttl_days", defaults.cache.mosque_details_ttl_days
                ),
            ),
            notifications=NotificationSettings(
                horizon_days=_number(notifications_cfg, "horizon_days", defaults.notifications.horizon_days, int, 1),
                timezone=str(notifications_cfg.get("timezone", "")),
                max_pending=_number(notifications_cfg, "max_pending", defaults.notifications.max_pending, int, 1),
            ),
            logging=LoggingSettings(level=str(logging_cfg.get("level", "INFO"))),
            harness=HarnessSettings(now=now),
        )

    def _write(self, config: MosqueTimeConfig) -> None:
        data = config.to_dict()
        lines: list[str] = []
        for section, values in data.items():
            if lines:
                lines.append("")
            lines.append(f"[{section}]")
            for key, value in values.items():
                lines.append(f"{key} = {_toml_value(value)}")
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    def save(self, config: MosqueTimeConfig) -> None:
        self._write(config)
