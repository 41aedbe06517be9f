from __future__ import annotations

from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Deque

import numpy as np

from parley.contracts import AudioSegment, VoiceActivity
from parley.pipeline.events import EventBus

_EPS = 1e-9
OPTIMAL_SPEECH_ZCR = 0.25
MAX_SPEECH_ZCR = 0.5
HISTORY_SIZE = 10


class VoiceState(str, Enum):
    SILENCE = "silence"
    SPEECH = "speech"


@dataclass(frozen=True)
class VadConfig:
    volume_threshold: float = 0.01
    energy_threshold: float = 0.001
    zero_crossing_threshold: float = 0.1
    min_speech_duration: float = 0.3
    min_silence_duration: float = 0.5

    def __post_init__(self) -> None:
        if self.volume_threshold <= 0 or self.energy_threshold <= 0:
            raise ValueError("volume_threshold and energy_threshold must be > 0")
        if self.min_speech_duration < 0 or self.min_silence_duration < 0:
            raise ValueError("min_speech_duration and min_silence_duration must be >= 0")


@dataclass(frozen=True)
class VadSnapshot:
    state: VoiceState
    speech_run: float
    silence_run: float
    average_confidence: float


def _mono(samples: np.ndarray) -> np.ndarray:
    data = np.asarray(samples, dtype=np.float32)
    if data.ndim > 1:
        data = data.mean(axis=1)
    return data


def volume(data: np.ndarray) -> float:
    if data.size == 0:
        return 0.0
    return float(np.mean(np.abs(data)))


def energy(data: np.ndarray) -> float:
    if data.size == 0:
        return 0.0
    return float(np.mean(data * data))


def zero_crossing_rate(data: np.ndarray) -> float:
    if data.size == 0:
        return 0.0
    signs = data >= 0
    crossings = int(np.count_nonzero(signs[1:] != signs[:-1]))
    return crossings / float(data.size)


class VoiceActivityDetector:
    """
    Feature-based speech/silence classifier with debounced state changes.

    Each segment is scored on mean absolute volume, mean energy and zero
    crossing rate; two of three checks passing marks it active. The detector
    only flips state after ``min_speech_duration`` of continuous active audio
    (or ``min_silence_duration`` of inactive audio), so short noise bursts and
    breathing pauses do not toggle it.
    """

    def __init__(self, config: VadConfig | None = None, events: EventBus | None = None) -> None:
        self.config = config or VadConfig()
        self.events = events
        self.state = VoiceState.SILENCE
        self._speech_run = 0.0
        self._silence_run = 0.0
        self._history: Deque[VoiceActivity] = deque(maxlen=HISTORY_SIZE)

    @property
    def in_speech(self) -> bool:
        return self.state == VoiceState.SPEECH

    def _checks(self, vol: float, en: float, zcr: float) -> tuple[bool, bool, bool]:
        cfg = self.config
        return (
            vol > cfg.volume_threshold,
            en > cfg.energy_threshold,
            cfg.zero_crossing_threshold < zcr < MAX_SPEECH_ZCR,
        )

    def is_active(self, vol: float, en: float, zcr: float) -> bool:
        return sum(self._checks(vol, en, zcr)) >= 2

    def confidence(self, vol: float, en: float, zcr: float) -> float:
        cfg = self.config
        vol_ok, en_ok, zcr_ok = self._checks(vol, en, zcr)
        score = 0.0
        if vol_ok:
            score += min(0.4, (vol / cfg.volume_threshold) * 0.2)
        if en_ok:
            score += min(0.3, (en / cfg.energy_threshold) * 0.15)
        if zcr_ok:
            score += max(0.0, 0.3 - abs(zcr - OPTIMAL_SPEECH_ZCR) * 2)
        return max(0.0, min(1.0, score))

    def analyze(self, segment: AudioSegment) -> VoiceActivity:
        data = _mono(segment.samples)
        vol = volume(data)
        en = energy(data)
        zcr = zero_crossing_rate(data)
        activity = VoiceActivity(
            is_active=self.is_active(vol, en, zcr),
            confidence=self.confidence(vol, en, zcr),
            volume=vol,
            energy=en,
            zero_crossing_rate=zcr,
            timestamp=float(segment.timestamp),
        )
        self._history.append(activity)
        self._advance(activity, segment)
        return activity

    def _advance(self, activity: VoiceActivity, segment: AudioSegment) -> None:
        duration = segment.duration_sec
        if activity.is_active:
            self._speech_run += duration
            self._silence_run = 0.0
            if self.state == VoiceState.SILENCE and self._speech_run + _EPS >= self.config.min_speech_duration:
                self.state = VoiceState.SPEECH
                self._emit("voiceStarted", timestamp=activity.timestamp, confidence=activity.confidence, segment=segment)
        else:
            self._silence_run += duration
            self._speech_run = 0.0
            if self.state == VoiceState.SPEECH and self._silence_run + _EPS >= self.config.min_silence_duration:
                self.state = VoiceState.SILENCE
                self._emit("voiceEnded", timestamp=activity.timestamp, confidence=activity.confidence, segment=segment)
        self._emit("activityUpdate", activity=activity)

    def _emit(self, name: str, **payload) -> None:
        if self.events is not None:
            self.events.publish(name, **payload)

    def average_confidence(self) -> float:
        if not self._history:
            return 0.0
        return sum(a.confidence for a in self._history) / len(self._history)

    def history(self) -> list[VoiceActivity]:
        return list(self._history)

    def current_state(self) -> VadSnapshot:
        return VadSnapshot(
            state=self.state,
            speech_run=self._speech_run,
            silence_run=self._silence_run,
            average_confidence=self.average_confidence(),
        )

    def update_config(self, **changes) -> None:
        self.config = replace(self.config, **changes)

    def reset(self) -> None:
        self.state = VoiceState.SILENCE
        self._speech_run = 0.0
        self._silence_run = 0.0
        self._history.clear()
