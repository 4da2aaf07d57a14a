from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class RepeatingJob(Protocol):
    def cancel(self) -> None: ...

    @property
    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    def call_every(
        self, interval_seconds: float, fn: Callable[[], None], *, name: str
    ) -> RepeatingJob: ...


class ThreadJob:
    """Runs `fn` every `interval_seconds` on a daemon thread until cancelled.

    The first call happens one interval after the job is armed. A slow call
    delays the next one instead of overlapping it.
    """

    def __init__(self, interval_seconds: float, fn: Callable[[], None], *, name: str) -> None:
        self._interval = interval_seconds
        self._fn = fn
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name=name, daemon=True)
        self._thread.start()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def cancel(self, *, join_timeout: float = 2.0) -> None:
        self._stop.set()
        if self._thread is not threading.current_thread() and self._thread.is_alive():
            self._thread.join(timeout=join_timeout)

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._fn()
            except Exception:
                logger.exception("Scheduled job %s failed", self._thread.name)


class ThreadScheduler:
    def call_every(
        self, interval_seconds: float, fn: Callable[[], None], *, name: str
    ) -> ThreadJob:
        return ThreadJob(interval_seconds, fn, name=name)
