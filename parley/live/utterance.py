from __future__ import annotations

from typing import List, Optional

import numpy as np

from parley.contracts import AudioSegment, VoiceActivity

_EPS = 1e-9


def merge_segments(parts: List[AudioSegment]) -> AudioSegment:
    first = parts[0]
    samples = np.concatenate([np.asarray(p.samples, dtype=np.float32) for p in parts], axis=0)
    return AudioSegment(
        id=first.id,
        samples=samples,
        sample_rate=first.sample_rate,
        channel_count=first.channel_count,
        timestamp=first.timestamp,
    )


class UtteranceAssembler:
    """
    Groups capture segments into utterances using the detector's debounced state.

    Segments are collected while a segment is active or the detector is in
    speech. The utterance is emitted when the detector confirms the end of
    speech, or early once it reaches ``max_utter_sec``. Active blips the
    detector never confirmed as speech are discarded at the next inactive
    segment, and utterances shorter than ``min_utter_sec`` are dropped.
    """

    def __init__(
        self,
        *,
        min_utter_sec: float = 0.6,
        max_utter_sec: float | None = 15.0,
        debug: bool = False,
    ) -> None:
        if min_utter_sec < 0:
            raise ValueError("min_utter_sec must be >= 0")
        if max_utter_sec is not None and max_utter_sec <= 0:
            raise ValueError("max_utter_sec must be > 0 when set")
        self.min_utter_sec = float(min_utter_sec)
        self.max_utter_sec = float(max_utter_sec) if max_utter_sec is not None else None
        self.debug = debug
        self._parts: List[AudioSegment] = []
        self._duration = 0.0
        self._confirmed = False
        self._was_in_speech = False
        self.dropped_short = 0

    @property
    def pending_sec(self) -> float:
        return self._duration

    def _take(self, reason: str) -> Optional[AudioSegment]:
        parts, duration = self._parts, self._duration
        self._parts = []
        self._duration = 0.0
        self._confirmed = False
        if not parts:
            return None
        if duration + _EPS < self.min_utter_sec:
            self.dropped_short += 1
            if self.debug:
                print(f"[debug] utterance skipped reason={reason} dur={duration:.2f}s")
            return None
        if self.debug:
            print(f"[debug] utterance ready reason={reason} t0={parts[0].timestamp:.2f}s dur={duration:.2f}s")
        return merge_segments(parts)

    def push(self, segment: AudioSegment, activity: VoiceActivity, in_speech: bool) -> Optional[AudioSegment]:
        """Feed one analyzed segment; returns a finished utterance or None."""
        was_in_speech = self._was_in_speech
        self._was_in_speech = in_speech

        if activity.is_active or in_speech:
            self._parts.append(segment)
            self._duration += segment.duration_sec
            if in_speech:
                self._confirmed = True
            if self.max_utter_sec is not None and self._duration + _EPS >= self.max_utter_sec:
                return self._take("max_utter_sec")
            return None

        if was_in_speech and self._parts:
            return self._take("silence")
        if self._parts and not self._confirmed:
            self._parts = []
            self._duration = 0.0
        return None

    def flush(self) -> Optional[AudioSegment]:
        """Emit whatever confirmed speech is pending (stream end)."""
        if not self._confirmed:
            self.reset()
            return None
        return self._take("stream_end")

    def reset(self) -> None:
        self._parts = []
        self._duration = 0.0
        self._confirmed = False
        self._was_in_speech = False
