from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
import logging
from pathlib import Path
import re
from threading import Lock
from typing import Protocol

from ..errors import PersistenceError

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> str | None:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


class JsonFileStorage:
    """Durable string key-value storage, one file per key under ``root``.

    Reads are served from an in-memory mirror once a key has been loaded.
    With ``background_writes`` the files are flushed on a single worker
    thread; ``wait_for_io`` blocks until queued writes have landed.
    """

    def __init__(self, root: Path, background_writes: bool = True) -> None:
        self.root = root
        self._lock = Lock()
        self._mirror: dict[str, str | None] = {}
        self._executor: ThreadPoolExecutor | None = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="storage") if background_writes else None
        )
        self._pending: Future | None = None

    def _path(self, key: str) -> Path:
        return self.root / f"{_UNSAFE.sub('_', key)}.json"

    def get_item(self, key: str) -> str | None:
        with self._lock:
            if key in self._mirror:
                return self._mirror[key]
        path = self._path(key)
        try:
            value = path.read_text(encoding="utf-8") if path.exists() else None
        except OSError as exc:
            raise PersistenceError(f"Could not read {path}: {exc}") from exc
        with self._lock:
            self._mirror.setdefault(key, value)
            return self._mirror[key]

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._mirror[key] = value
        self._submit(self._write, key, value)

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._mirror[key] = None
        self._submit(self._delete, key)

    def _submit(self, func, key: str, *args) -> None:
        executor = self._executor
        if executor is None:
            func(key, *args)
            return
        self._pending = executor.submit(self._run_logged, func, key, *args)

    def _run_logged(self, func, key: str, *args) -> None:
        try:
            func(key, *args)
        except PersistenceError as exc:
            logger.warning("Background write for %s failed: %s", key, exc)

    def _write(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(value, encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Could not write {path}: {exc}") from exc

    def _delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Could not remove {path}: {exc}") from exc

    def wait_for_io(self) -> None:
        pending = self._pending
        if pending is not None:
            pending.result()
            self._pending = None

    def close(self) -> None:
        executor = self._executor
        if executor is None:
            return
        self.wait_for_io()
        executor.shutdown(wait=True, cancel_futures=False)
        self._executor = None


class MemoryStorage:
    """Volatile storage with the same contract, for previews and tests."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})
        self._lock = Lock()

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)
