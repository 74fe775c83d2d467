from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import json
import logging
from threading import Lock
from typing import Any, Callable, Mapping

import httpx  # type: ignore[import]

from ..errors import AuthenticationError, PersistenceError
from .cache import utc_now
from .storage import KeyValueStorage

logger = logging.getLogger(__name__)

SIGN_UP_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signUp"
REFRESH_URL = "https://securetoken.googleapis.com/v1/token"
IDENTITY_KEY = "anonymous_identity"
EXPIRY_MARGIN = timedelta(minutes=1)


@dataclass(slots=True)
class Identity:
    uid: str
    id_token: str
    refresh_token: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at - EXPIRY_MARGIN

    def to_dict(self) -> dict[str, str]:
        return {
            "uid": self.uid,
            "idToken": self.id_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Identity":
        return cls(
            uid=str(payload["uid"]),
            id_token=str(payload["idToken"]),
            refresh_token=str(payload["refreshToken"]),
            expires_at=datetime.fromisoformat(str(payload["expiresAt"])),
        )


class AnonymousAuth:
    """Creates and keeps alive an anonymous identity used for store writes."""

    def __init__(
        self,
        api_key: str,
        storage: KeyValueStorage,
        *,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.api_key = api_key
        self.storage = storage
        self.clock = clock
        self._client = client or httpx.Client(timeout=timeout)
        self._owns_client = client is None
        self._identity: Identity | None = None
        self._lock = Lock()

    def current(self) -> Identity | None:
        with self._lock:
            return self._identity or self._load()

    def ensure_signed_in(self) -> Identity:
        if not self.api_key:
            raise AuthenticationError("An API key is required to sign in")
        with self._lock:
            identity = self._identity or self._load()
            if identity is None:
                identity = self._sign_up()
            elif identity.is_expired(self._now()):
                identity = self._refresh(identity)
            self._identity = identity
            self._persist(identity)
            return identity

    def id_token(self) -> str:
        return self.ensure_signed_in().id_token

    def _sign_up(self) -> Identity:
        payload = self._post(SIGN_UP_URL, json={"returnSecureToken": True})
        logger.info("Created anonymous identity %s", payload.get("localId"))
        return Identity(
            uid=str(payload["localId"]),
            id_token=str(payload["idToken"]),
            refresh_token=str(payload["refreshToken"]),
            expires_at=self._now() + timedelta(seconds=int(payload.get("expiresIn", 3600))),
        )

    def _refresh(self, identity: Identity) -> Identity:
        form = {"grant_type": "refresh_token", "refresh_token": identity.refresh_token}
        try:
            payload = self._post(REFRESH_URL, data=form)
        except AuthenticationError as exc:
            if isinstance(exc.__cause__, httpx.HTTPStatusError):
                logger.warning("Refresh token rejected, signing up again")
                return self._sign_up()
            raise
        return Identity(
            uid=str(payload.get("user_id", identity.uid)),
            id_token=str(payload["id_token"]),
            refresh_token=str(payload.get("refresh_token", identity.refresh_token)),
            expires_at=self._now() + timedelta(seconds=int(payload.get("expires_in", 3600))),
        )

    def _post(self, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.post(url, params={"key": self.api_key}, **kwargs)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Anonymous sign-in failed: {exc}") from exc
        except ValueError as exc:
            raise AuthenticationError("Anonymous sign-in returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise AuthenticationError("Anonymous sign-in returned an unexpected payload")
        return payload

    def _load(self) -> Identity | None:
        try:
            raw = self.storage.get_item(IDENTITY_KEY)
        except PersistenceError as exc:
            logger.warning("Could not read stored identity: %s", exc)
            return None
        if not raw:
            return None
        try:
            return Identity.from_dict(json.loads(raw))
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring unreadable stored identity")
            return None

    def _persist(self, identity: Identity) -> None:
        try:
            self.storage.set_item(IDENTITY_KEY, json.dumps(identity.to_dict()))
        except PersistenceError as exc:
            logger.warning("Could not store identity: %s", exc)

    def _now(self) -> datetime:
        now = self.clock()
        return now if now.tzinfo else now.astimezone()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
