from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Mapping

from ..errors import NetworkError
from .cache import SnapshotCache
from .store import RemoteStore, Subscription

logger = logging.getLogger(__name__)

MOSQUE_DETAILS_PATH = "mosqueDetails"
JUMAAH_PATH = "prayerTimes/jumaah"


def _text(value: object | None) -> str:
    return "" if value is None else str(value).strip()


@dataclass(slots=True)
class DonationAccount:
    name: str = ""
    account_number: str = ""
    sort_code: str = ""


@dataclass(slots=True)
class MosqueDetails:
    donation_account: DonationAccount | None = None
    android_url: str = ""
    android_qr: str = ""
    ios_url: str = ""
    ios_qr: str = ""
    website_url: str = ""
    website_qr: str = ""
    services: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "MosqueDetails":
        account = payload.get("donation_account")
        services = payload.get("services")
        return cls(
            donation_account=DonationAccount(
                name=_text(account.get("name")),
                account_number=_text(account.get("account_number")),
                sort_code=_text(account.get("sort_code")),
            )
            if isinstance(account, Mapping)
            else None,
            android_url=_text(payload.get("android_url")),
            android_qr=_text(payload.get("android_qr")),
            ios_url=_text(payload.get("ios_url")),
            ios_qr=_text(payload.get("ios_qr")),
            website_url=_text(payload.get("website_url")),
            website_qr=_text(payload.get("website_qr")),
            services={str(key): _text(value) for key, value in services.items()} if isinstance(services, Mapping) else {},
        )


@dataclass(slots=True)
class JumaahTimes:
    khutbah_begins: str = ""
    prayer_begins: str = ""

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "JumaahTimes":
        return cls(
            khutbah_begins=_text(payload.get("khutbah_begins")),
            prayer_begins=_text(payload.get("prayer_begins")),
        )


class MosqueDetailsService:
    """Mosque metadata and the Friday timetable, cached for a week."""

    def __init__(
        self,
        store: RemoteStore,
        details_cache: SnapshotCache,
        jumaah_cache: SnapshotCache,
        details_path: str = MOSQUE_DETAILS_PATH,
        jumaah_path: str = JUMAAH_PATH,
    ) -> None:
        self.store = store
        self.details_path = details_path.strip("/")
        self.jumaah_path = jumaah_path.strip("/")
        self.details_cache = details_cache
        self.jumaah_cache = jumaah_cache

    def get_mosque_details(self) -> MosqueDetails | None:
        snapshot = self.details_cache.read()
        if snapshot is not None and isinstance(snapshot.payload, Mapping) and snapshot.payload.get("services"):
            return MosqueDetails.from_dict(snapshot.payload)
        try:
            data = self.store.get(self.details_path)
            if not isinstance(data, Mapping):
                return None
            data = dict(data)
            if not data.get("services"):
                services = self.store.get(f"{self.details_path}/services")
                if isinstance(services, Mapping):
                    data["services"] = services
        except NetworkError as exc:
            logger.warning("Could not fetch mosque details: %s", exc)
            return self._stale(self.details_cache, MosqueDetails)
        self.details_cache.write(data)
        return MosqueDetails.from_dict(data)

    def get_jumaah_times(self) -> JumaahTimes | None:
        snapshot = self.jumaah_cache.read()
        if snapshot is not None and isinstance(snapshot.payload, Mapping):
            return JumaahTimes.from_dict(snapshot.payload)
        try:
            data = self.store.get(self.jumaah_path)
        except NetworkError as exc:
            logger.warning("Could not fetch Jumaah times: %s", exc)
            return self._stale(self.jumaah_cache, JumaahTimes)
        if not isinstance(data, Mapping):
            return None
        self.jumaah_cache.write(data)
        return JumaahTimes.from_dict(data)

    def _stale(self, cache: SnapshotCache, kind):
        snapshot = cache.read(ignore_expiry=True)
        if snapshot is None or not isinstance(snapshot.payload, Mapping):
            return None
        return kind.from_dict(snapshot.payload)

    def subscribe_mosque_details(self, callback: Callable[[MosqueDetails | None], None]) -> Subscription:
        return self._subscribe(self.details_path, self.details_cache, MosqueDetails, callback)

    def subscribe_jumaah_times(self, callback: Callable[[JumaahTimes | None], None]) -> Subscription:
        return self._subscribe(self.jumaah_path, self.jumaah_cache, JumaahTimes, callback)

    def _subscribe(self, path: str, cache: SnapshotCache, kind, callback) -> Subscription:
        def _on_change(data: Any) -> None:
            if not isinstance(data, Mapping):
                callback(None)
                return
            cache.write(data)
            callback(kind.from_dict(data))

        return self.store.subscribe(path, _on_change)
