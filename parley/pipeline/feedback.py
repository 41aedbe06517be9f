"""Admission control for the translate -> synthesize cycle.

The session hears its own synthesized speech through the microphone. The
guard refuses text that looks like that echo, text it has just handled, and
any request arriving while a cycle is already running.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Iterator, List, Optional

_QUOTES = re.compile("[\"'“”‘’«»]")
_SPACES = re.compile(r"\s+")


class SkipReason(str, Enum):
    BUSY = "busy"
    TOO_SHORT = "too_short"
    COOLDOWN = "cooldown"
    TOO_SOON = "too_soon"
    REPEAT_INPUT = "repeat_input"
    RECENT = "recent"
    ECHO = "echo"


@dataclass(frozen=True)
class FeedbackConfig:
    min_text_length: int = 5
    translation_cooldown: float = 10.0
    min_processing_interval: float = 3.0
    history_size: int = 5

    def __post_init__(self) -> None:
        if self.min_text_length < 0:
            raise ValueError("min_text_length must be >= 0")
        if self.translation_cooldown < 0 or self.min_processing_interval < 0:
            raise ValueError("cooldowns must be >= 0")
        if self.history_size < 1:
            raise ValueError("history_size must be >= 1")


def normalize_text(text: str) -> str:
    lowered = _QUOTES.sub("", (text or "").lower())
    return _SPACES.sub(" ", lowered).strip()


class RecentTexts:
    """Fixed-size ring of recently processed texts (oldest evicted first)."""

    def __init__(self, size: int = 5) -> None:
        self._items: Deque[str] = deque(maxlen=size)

    def push(self, text: str) -> None:
        self._items.append(text)

    def __contains__(self, text: object) -> bool:
        return text in self._items

    def __len__(self) -> int:
        return len(self._items)

    def items(self) -> List[str]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()


@dataclass
class FeedbackState:
    last_translated_text: str = ""
    last_input_text: str = ""
    last_translation_time: Optional[float] = None
    last_processing_time: Optional[float] = None
    is_processing_translation: bool = False


def is_echo(text: str, last_translated_text: str) -> bool:
    """True when ``text`` equals or contains (either way) the last translation, ignoring case and quotes."""
    a = normalize_text(text)
    b = normalize_text(last_translated_text)
    if not a or not b:
        return False
    return a == b or a in b or b in a


class FeedbackGuard:
    def __init__(
        self,
        config: FeedbackConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config or FeedbackConfig()
        self.state = FeedbackState()
        self.recent = RecentTexts(self.config.history_size)
        self._clock = clock
        self._lock = threading.Lock()
        self._epoch = 0
        self._logger = logger or logging.getLogger(__name__)

    def _check_locked(self, text: str) -> Optional[SkipReason]:
        cfg = self.config
        st = self.state
        now = self._clock()
        stripped = (text or "").strip()

        if st.is_processing_translation:
            return SkipReason.BUSY
        if len(stripped) < cfg.min_text_length:
            return SkipReason.TOO_SHORT
        if st.last_translation_time is not None and now - st.last_translation_time < cfg.translation_cooldown:
            return SkipReason.COOLDOWN
        if st.last_processing_time is not None and now - st.last_processing_time < cfg.min_processing_interval:
            return SkipReason.TOO_SOON
        if stripped == st.last_input_text:
            return SkipReason.REPEAT_INPUT
        if stripped in self.recent:
            return SkipReason.RECENT
        if is_echo(stripped, st.last_translated_text):
            return SkipReason.ECHO
        return None

    def check(self, text: str) -> Optional[SkipReason]:
        """Return the first failing admission rule, or None when ``text`` may be processed."""
        with self._lock:
            return self._check_locked(text)

    def _acquire(self, text: str) -> tuple[Optional[SkipReason], int]:
        with self._lock:
            reason = self._check_locked(text)
            if reason is None:
                self.state.is_processing_translation = True
            epoch = self._epoch
        if reason is not None:
            self._logger.info("feedback_skip", extra={"reason": reason.value, "chars": len(text or "")})
        return reason, epoch

    def begin(self, text: str) -> Optional[SkipReason]:
        """Check and, on admission, mark a cycle as running. Returns the skip reason otherwise."""
        reason, _ = self._acquire(text)
        return reason

    def complete(self, text: str, translated_text: str) -> None:
        """Record a finished cycle: both texts, both timestamps, and the input in the recent ring."""
        stripped = (text or "").strip()
        with self._lock:
            now = self._clock()
            self.state.last_input_text = stripped
            self.state.last_translated_text = (translated_text or "").strip()
            self.state.last_translation_time = now
            self.state.last_processing_time = now
            self.recent.push(stripped)

    def release(self, epoch: Optional[int] = None) -> None:
        """Clear the busy flag. A cycle begun before the last ``reset()`` passes its epoch and releases nothing."""
        with self._lock:
            if epoch is None or epoch == self._epoch:
                self.state.is_processing_translation = False

    @contextmanager
    def cycle(self, text: str) -> Iterator[Optional[SkipReason]]:
        """
        with guard.cycle(text) as skipped:
            if skipped is None:
                ... translate and synthesize ...

        The busy flag is released on exit whatever happens inside the block,
        unless ``reset()`` ran meanwhile and a newer cycle may own it.
        """
        reason, epoch = self._acquire(text)
        try:
            yield reason
        finally:
            if reason is None:
                self.release(epoch)

    def reset(self) -> None:
        with self._lock:
            self._epoch += 1
            self.state = FeedbackState()
            self.recent.clear()

    @property
    def is_busy(self) -> bool:
        return self.state.is_processing_translation
