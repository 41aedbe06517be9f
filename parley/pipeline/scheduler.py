from __future__ import annotations

import itertools
import logging
import threading
from typing import Callable, Dict, Protocol


class Scheduler(Protocol):
    def call_later(self, delay: float, fn: Callable[[], None]) -> int:
        ...

    def cancel(self, handle: int) -> bool:
        ...

    def cancel_all(self) -> int:
        ...


class DelayedTaskScheduler:
    """
    One ``threading.Timer`` per delayed task. Every handle is tracked until it
    fires or is cancelled, so ``cancel_all`` on teardown leaves nothing behind.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._timers: Dict[int, threading.Timer] = {}
        self._ids = itertools.count(1)
        self._closed = False

    def call_later(self, delay: float, fn: Callable[[], None]) -> int:
        with self._lock:
            if self._closed:
                raise RuntimeError("scheduler is closed")
            handle = next(self._ids)

            def _fire() -> None:
                with self._lock:
                    if self._timers.pop(handle, None) is None:
                        return
                try:
                    fn()
                except Exception:
                    self._logger.exception("scheduled_task_failed", extra={"handle": handle})

            timer = threading.Timer(max(0.0, float(delay)), _fire)
            timer.daemon = True
            timer.name = f"parley-delay-{handle}"
            self._timers[handle] = timer
        timer.start()
        return handle

    def cancel(self, handle: int) -> bool:
        with self._lock:
            timer = self._timers.pop(handle, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def cancel_all(self) -> int:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        return len(timers)

    def close(self) -> None:
        with self._lock:
            self._closed = True
        self.cancel_all()

    def reopen(self) -> None:
        with self._lock:
            self._closed = False

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._timers)
