from __future__ import annotations

import copy
import json
import logging
from threading import Event, Lock, Thread
from typing import Any, Callable, Iterable, Iterator, Protocol

import httpx  # type: ignore[import]

from ..errors import NetworkError

logger = logging.getLogger(__name__)

ValueCallback = Callable[[Any], None]
ConnectivityCallback = Callable[[bool], None]


class Subscription:
    """Handle returned by every ``subscribe_*`` call.

    Calling it (or ``unsubscribe``) detaches the listener. Repeated calls are
    no-ops.
    """

    def __init__(self, close: Callable[[], None] | None = None) -> None:
        self._close = close
        self._lock = Lock()
        self.closed = False

    def __call__(self) -> None:
        with self._lock:
            if self.closed:
                return
            self.closed = True
            close, self._close = self._close, None
        if close is not None:
            close()

    unsubscribe = __call__


class RemoteStore(Protocol):
    def get(self, path: str) -> Any:
        ...

    def query_range(self, path: str, start: str, end: str) -> dict[str, Any]:
        ...

    def set(self, path: str, value: Any, auth_token: str | None = None) -> None:
        ...

    def update(self, path: str, values: dict[str, Any], auth_token: str | None = None) -> None:
        ...

    def delete(self, path: str, auth_token: str | None = None) -> None:
        ...

    def subscribe(self, path: str, callback: ValueCallback) -> Subscription:
        ...

    def subscribe_connectivity(self, callback: ConnectivityCallback) -> Subscription:
        ...

    def is_connected(self) -> bool:
        ...


class FirebaseRestStore:
    """Realtime Database client over the REST and streaming endpoints.

    Connectivity is tracked from the outcome of requests and live streams:
    a transport failure marks the store offline, any answer from the server
    marks it online.
    """

    def __init__(
        self,
        database_url: str,
        *,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
        reconnect_delay: float = 5.0,
    ) -> None:
        if not database_url:
            raise ValueError("database_url is required")
        self.database_url = database_url.rstrip("/")
        self.timeout = timeout
        self.reconnect_delay = reconnect_delay
        self._client = client or httpx.Client(timeout=timeout)
        self._owns_client = client is None
        self._lock = Lock()
        self._connected: bool | None = None
        self._connectivity_listeners: dict[int, ConnectivityCallback] = {}
        self._next_listener_id = 0
        self._streams: set[_EventStream] = set()

    def url(self, path: str) -> str:
        return f"{self.database_url}/{path.strip('/')}.json"

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        body: Any = None,
        auth_token: str | None = None,
    ) -> httpx.Response:
        query = dict(params or {})
        if auth_token:
            query["auth"] = auth_token
        kwargs: dict[str, Any] = {"params": query}
        if method in ("PUT", "PATCH"):
            kwargs["json"] = body
        try:
            response = self._client.request(method, self.url(path), **kwargs)
        except httpx.TransportError as exc:
            self._set_connected(False)
            raise NetworkError(f"{method} {path} failed: {exc}") from exc
        self._set_connected(True)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise NetworkError(f"{method} {path} returned {exc.response.status_code}") from exc
        return response

    def get(self, path: str) -> Any:
        response = self._request("GET", path)
        try:
            return response.json()
        except ValueError as exc:
            raise NetworkError(f"GET {path} returned invalid JSON") from exc

    def query_range(self, path: str, start: str, end: str) -> dict[str, Any]:
        params = {
            "orderBy": json.dumps("$key"),
            "startAt": json.dumps(start),
            "endAt": json.dumps(end),
        }
        response = self._request("GET", path, params=params)
        try:
            data = response.json()
        except ValueError as exc:
            raise NetworkError(f"GET {path} returned invalid JSON") from exc
        return data if isinstance(data, dict) else {}

    def set(self, path: str, value: Any, auth_token: str | None = None) -> None:
        self._request("PUT", path, body=value, auth_token=auth_token)

    def update(self, path: str, values: dict[str, Any], auth_token: str | None = None) -> None:
        self._request("PATCH", path, body=values, auth_token=auth_token)

    def delete(self, path: str, auth_token: str | None = None) -> None:
        self._request("DELETE", path, auth_token=auth_token)

    def subscribe(self, path: str, callback: ValueCallback) -> Subscription:
        stream = _EventStream(self, path, callback)
        with self._lock:
            self._streams.add(stream)

        def _close() -> None:
            stream.stop()
            with self._lock:
                self._streams.discard(stream)

        stream.start()
        return Subscription(_close)

    def subscribe_connectivity(self, callback: ConnectivityCallback) -> Subscription:
        with self._lock:
            listener_id = self._next_listener_id
            self._next_listener_id += 1
            self._connectivity_listeners[listener_id] = callback
            current = bool(self._connected)

        def _close() -> None:
            with self._lock:
                self._connectivity_listeners.pop(listener_id, None)

        callback(current)
        return Subscription(_close)

    def is_connected(self) -> bool:
        with self._lock:
            return bool(self._connected)

    def _set_connected(self, value: bool) -> None:
        with self._lock:
            if self._connected is value:
                return
            self._connected = value
            listeners = list(self._connectivity_listeners.values())
        logger.info("Remote store is %s", "online" if value else "offline")
        for listener in listeners:
            listener(value)

    def close(self) -> None:
        with self._lock:
            streams = list(self._streams)
            self._streams.clear()
        for stream in streams:
            stream.stop()
        if self._owns_client:
            self._client.close()


class _EventStream:
    def __init__(self, store: FirebaseRestStore, path: str, callback: ValueCallback) -> None:
        self.store = store
        self.path = path
        self.callback = callback
        self._stop = Event()
        self._response: httpx.Response | None = None
        self._tree: Any = None
        self._thread = Thread(target=self._run, name=f"stream:{path}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        response = self._response
        if response is not None:
            response.close()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self._consume()
            except (httpx.HTTPError, httpx.StreamError, OSError, ValueError) as exc:
                if self._stop.is_set():
                    break
                logger.warning("Live updates for %s dropped: %s", self.path, exc)
                if isinstance(exc, httpx.TransportError):
                    self.store._set_connected(False)
            if self._stop.wait(self.store.reconnect_delay):
                break

    def _consume(self) -> None:
        timeout = httpx.Timeout(self.store.timeout, read=None)
        headers = {"Accept": "text/event-stream"}
        with self.store._client.stream("GET", self.store.url(self.path), headers=headers, timeout=timeout) as response:
            self._response = response
            response.raise_for_status()
            self.store._set_connected(True)
            self._tree = None
            for event, data in iter_sse(response.iter_lines()):
                if self._stop.is_set():
                    return
                if event in ("put", "patch"):
                    message = json.loads(data)
                    self._tree = apply_event(self._tree, event, message.get("path", "/"), message.get("data"))
                    self._deliver()
                elif event in ("cancel", "auth_revoked"):
                    logger.warning("Live updates for %s ended by server: %s", self.path, event)
                    return

    def _deliver(self) -> None:
        try:
            self.callback(copy.deepcopy(self._tree))
        except Exception:
            logger.exception("Subscriber for %s failed", self.path)


def iter_sse(lines: Iterable[str]) -> Iterator[tuple[str, str]]:
    """Group raw server-sent-event lines into ``(event, data)`` pairs."""
    event: str | None = None
    data: list[str] = []
    for line in lines:
        line = line.rstrip("\r\n")
        if not line:
            if event is not None or data:
                yield event or "message", "\n".join(data)
            event, data = None, []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
    if event is not None or data:
        yield event or "message", "\n".join(data)


def apply_event(tree: Any, event: str, path: str, data: Any) -> Any:
    """Apply a streamed ``put`` or ``patch`` to the local copy of a subtree."""
    parts = [part for part in path.split("/") if part]
    if event == "patch" and isinstance(data, dict):
        for key, value in data.items():
            tree = _set_at(tree, parts + [part for part in key.split("/") if part], value)
        return tree
    return _set_at(tree, parts, data)


def _set_at(tree: Any, parts: list[str], value: Any) -> Any:
    if not parts:
        return value
    base = dict(tree) if isinstance(tree, dict) else {}
    head, rest = parts[0], parts[1:]
    child = _set_at(base.get(head), rest, value)
    if child is None:
        base.pop(head, None)
    else:
        base[head] = child
    return base or None
