from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

Listener = Callable[["Event"], None]


@dataclass(frozen=True)
class Event:
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)


class EventBus:
    """
    Explicit observer registry. Listeners run synchronously on the publishing
    thread; a listener that raises is logged and does not stop the others.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._listeners: List[Tuple[Optional[frozenset[str]], Listener]] = []

    def subscribe(self, listener: Listener, *names: str) -> Callable[[], None]:
        """Register ``listener`` for ``names`` (all events when none given). Returns an unsubscribe callable."""
        entry = (frozenset(names) if names else None, listener)
        with self._lock:
            self._listeners.append(entry)

        def _unsubscribe() -> None:
            with self._lock:
                try:
                    self._listeners.remove(entry)
                except ValueError:
                    pass

        return _unsubscribe

    def publish(self, name: str, **payload: Any) -> Event:
        event = Event(name=name, payload=payload)
        with self._lock:
            listeners = [fn for names, fn in self._listeners if names is None or name in names]
        for fn in listeners:
            try:
                fn(event)
            except Exception:
                self._logger.exception("event_listener_failed", extra={"event_name": name})
        return event

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)


class EventChannel:
    """
    Thread-safe handoff from pipeline threads -> host thread.
    Pipeline pushes Events. Host polls (non-blocking).
    """
    def __init__(self, maxsize: int = 100):
        self.q: "queue.Queue[Event]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def push(self, event: Event) -> None:
        try:
            self.q.put_nowait(event)
        except queue.Full:
            # drop oldest to keep the host responsive
            try:
                _ = self.q.get_nowait()
            except queue.Empty:
                return
            self.dropped += 1
            try:
                self.q.put_nowait(event)
            except queue.Full:
                return

    def pop(self) -> Optional[Event]:
        try:
            return self.q.get_nowait()
        except queue.Empty:
            return None

    def drain(self, max_items: int) -> List[Event]:
        out: List[Event] = []
        while len(out) < max_items:
            event = self.pop()
            if event is None:
                break
            out.append(event)
        return out

    def attach(self, bus: EventBus, *names: str) -> Callable[[], None]:
        return bus.subscribe(self.push, *names)
