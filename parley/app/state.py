from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum


class SessionState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    LISTENING = "listening"
    TRANSLATING = "translating"
    SYNTHESIZING = "synthesizing"
    PAUSED = "paused"
    ERROR = "error"


_BUSY = (SessionState.TRANSLATING, SessionState.SYNTHESIZING)


@dataclass
class SessionStateTracker:
    state: SessionState = SessionState.STOPPED
    last_error: str | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def set_starting(self) -> None:
        with self._lock:
            self.state = SessionState.STARTING
            self.last_error = None

    def set_listening(self) -> None:
        with self._lock:
            if self.state in (SessionState.STARTING, *_BUSY):
                self.state = SessionState.LISTENING

    def set_translating(self) -> None:
        with self._lock:
            if self.state in (SessionState.LISTENING, SessionState.SYNTHESIZING):
                self.state = SessionState.TRANSLATING

    def set_synthesizing(self) -> None:
        with self._lock:
            if self.state == SessionState.TRANSLATING:
                self.state = SessionState.SYNTHESIZING

    def set_paused(self) -> None:
        with self._lock:
            if self.state in (SessionState.LISTENING, SessionState.STARTING, *_BUSY):
                self.state = SessionState.PAUSED

    def set_resumed(self) -> None:
        with self._lock:
            if self.state == SessionState.PAUSED:
                self.state = SessionState.LISTENING

    def set_stopped(self) -> None:
        with self._lock:
            self.state = SessionState.STOPPED

    def set_error(self, detail: str) -> None:
        with self._lock:
            self.state = SessionState.ERROR
            self.last_error = detail

    @property
    def is_active(self) -> bool:
        return self.state not in (SessionState.STOPPED, SessionState.ERROR)
