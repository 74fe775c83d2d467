"""
Local alarm facility: one in-process timer per armed identifier.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from threading import Lock, Timer
from typing import Callable, Protocol

from ..errors import SchedulingError
from .cache import utc_now

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING = 64


@dataclass(slots=True, frozen=True)
class AlarmRequest:
    identifier: str
    fires_at: datetime
    title: str
    body: str
    metadata: dict[str, str] = field(default_factory=dict, compare=False)


class AlarmFacility(Protocol):
    def schedule(self, request: AlarmRequest) -> None:
        ...

    def cancel(self, identifier: str) -> None:
        ...

    def cancel_all(self) -> None:
        ...

    def pending(self) -> list[AlarmRequest]:
        ...


def log_alarm(request: AlarmRequest) -> None:
    logger.info("%s: %s", request.title, request.body)


class TimerAlarmFacility:
    """Arms ``threading.Timer`` instances and calls ``on_fire`` when they elapse.

    Scheduling an identifier that is already armed replaces the earlier alarm.
    """

    def __init__(
        self,
        on_fire: Callable[[AlarmRequest], None] = log_alarm,
        *,
        max_pending: int = DEFAULT_MAX_PENDING,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.on_fire = on_fire
        self.max_pending = max_pending
        self.clock = clock
        self._lock = Lock()
        self._timers: dict[str, tuple[Timer, AlarmRequest]] = {}

    def schedule(self, request: AlarmRequest) -> None:
        now = self.clock()
        if now.tzinfo is None:
            now = now.astimezone()
        delay = (request.fires_at - now).total_seconds()
        if delay <= 0:
            raise SchedulingError(f"Alarm {request.identifier} is not in the future")
        with self._lock:
            previous = self._timers.pop(request.identifier, None)
            if previous is not None:
                previous[0].cancel()
            if len(self._timers) >= self.max_pending:
                raise SchedulingError(f"Pending alarm limit of {self.max_pending} reached")
            timer = Timer(delay, self._fire, args=(request,))
            timer.daemon = True
            self._timers[request.identifier] = (timer, request)
        timer.start()
        logger.debug("Armed %s for %s", request.identifier, request.fires_at.isoformat())

    def _fire(self, request: AlarmRequest) -> None:
        with self._lock:
            current = self._timers.get(request.identifier)
            if current is None or current[1] is not request:
                return
            del self._timers[request.identifier]
        try:
            self.on_fire(request)
        except Exception:
            logger.exception("Alarm handler for %s failed", request.identifier)

    def cancel(self, identifier: str) -> None:
        with self._lock:
            entry = self._timers.pop(identifier, None)
        if entry is not None:
            entry[0].cancel()

    def cancel_all(self) -> None:
        with self._lock:
            entries = list(self._timers.values())
            self._timers.clear()
        for timer, _ in entries:
            timer.cancel()

    def pending(self) -> list[AlarmRequest]:
        with self._lock:
            requests = [request for _, request in self._timers.values()]
        return sorted(requests, key=lambda request: request.fires_at)
